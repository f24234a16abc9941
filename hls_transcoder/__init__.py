"""
HLS Transcoder

Queue-driven dispatcher and per-video transcode worker producing
adaptive-bitrate HLS renditions.
"""
__version__ = "1.0.0"

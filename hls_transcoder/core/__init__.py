"""
Core configuration, logging, client factories and errors.
"""

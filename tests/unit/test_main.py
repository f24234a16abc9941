"""
Unit tests for the process entry points.
"""
from types import SimpleNamespace

import pytest

from hls_transcoder import main

SOURCE_BUCKET = "uploads"
SOURCE_KEY = "incoming/holiday clip.mp4"
OUTPUT_BUCKET = "renditions"


@pytest.fixture
def worker_env(monkeypatch, settings, object_store, make_encoder):
    """Patch client construction so run_worker uses the in-memory fakes."""
    env = SimpleNamespace(
        encoder_options={},
        encoders=[],
        settings=settings.model_copy(update={"BUCKET_NAME": SOURCE_BUCKET, "KEY": SOURCE_KEY}),
    )

    def build_encoder(_settings):
        encoder = make_encoder(**env.encoder_options)
        env.encoders.append(encoder)
        return encoder

    monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(main, "get_minio_client", lambda _settings: object_store)
    monkeypatch.setattr(main, "FFmpegEncoder", build_encoder)

    return env


@pytest.mark.unit
class TestRunWorker:
    def test_success_exits_zero(self, worker_env, object_store):
        assert main.run_worker(worker_env.settings) == 0

        manifests = [k for k in object_store.keys(OUTPUT_BUCKET) if k.endswith("/master.m3u8")]
        assert len(manifests) == 1

    def test_failed_job_exits_one(self, worker_env, object_store):
        worker_env.encoder_options = {"fail_profiles": {"720p"}}

        assert main.run_worker(worker_env.settings) == 1
        assert object_store.keys(OUTPUT_BUCKET) == []

    def test_missing_source_exits_one(self, worker_env):
        settings = worker_env.settings.model_copy(update={"KEY": "incoming/nope.mp4"})

        assert main.run_worker(settings) == 1

    @pytest.mark.parametrize("update", [{"BUCKET_NAME": ""}, {"KEY": ""}, {"OUTPUT_BUCKET": ""}])
    def test_missing_configuration_exits_two(self, worker_env, update):
        settings = worker_env.settings.model_copy(update=update)

        assert main.run_worker(settings) == 2
        assert worker_env.encoders == []


@pytest.mark.unit
class TestRunDispatcher:
    def test_requires_queue_url(self, monkeypatch, settings):
        monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)
        settings = settings.model_copy(update={"SQS_QUEUE_URL": ""})

        with pytest.raises(SystemExit) as exc_info:
            main.run_dispatcher(settings)

        assert exc_info.value.code == 2

    def test_runs_loop_with_stop_event(self, monkeypatch, settings, sqs_client, ecs_client):
        calls = {}

        class RecordingLoop:
            def __init__(self, sqs, ecs, loop_settings):
                calls["clients"] = (sqs, ecs)
                calls["settings"] = loop_settings

            def run(self, stop_event):
                calls["stop_event"] = stop_event

        monkeypatch.setattr(main, "setup_logging", lambda *args, **kwargs: None)
        monkeypatch.setattr(main, "get_sqs_client", lambda _settings: sqs_client)
        monkeypatch.setattr(main, "get_ecs_client", lambda _settings: ecs_client)
        monkeypatch.setattr(main, "DispatchLoop", RecordingLoop)
        monkeypatch.setattr(main.signal, "signal", lambda *args: None)

        main.run_dispatcher(settings)

        assert calls["clients"] == (sqs_client, ecs_client)
        assert calls["settings"] is settings
        assert not calls["stop_event"].is_set()

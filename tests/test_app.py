"""Tests for application wiring: container, lifespan, errors and event routes."""

import io
import json
import logging
import time

import pytest
from fastapi.testclient import TestClient

from filevault.core.config import Settings
from filevault.core.exceptions import FileVaultError, PayloadTooLarge, UnsupportedMediaType
from filevault.main import create_app
from filevault.messaging.memory import MemoryQueue
from filevault.models.progress import UploadStatus
from filevault.services.container import ServiceContainer
from filevault.storage.local import LocalBlobStore
from filevault.storage.progress_store import MemoryProgressStore


class RecordingConnection:
    def __init__(self):
        self.events = []
        self.closed = False

    def send(self, event):
        self.events.append(event)

    def close(self):
        self.closed = True


def test_exception_status_codes():
    assert UnsupportedMediaType("x").status_code == 415
    assert PayloadTooLarge("x").status_code == 400
    assert FileVaultError("x").status_code == 500
    assert FileVaultError("x", status_code=503).status_code == 503


def test_container_from_settings(tmp_path):
    settings = Settings(
        LOCAL_STORAGE_PATH=str(tmp_path),
        PROGRESS_CONSUMER_ENABLED=True,
        LIFECYCLE_CONSUMER_ENABLED=True,
    )

    container = ServiceContainer.from_settings(settings)

    assert isinstance(container.blob_store, LocalBlobStore)
    assert isinstance(container.progress_store, MemoryProgressStore)
    assert isinstance(container.queue, MemoryQueue)
    assert [c.kind for c in container.consumers] == ["progress", "file", "folder"]
    assert container.consumers[0].queue_name == "progress-events"


def test_container_without_consumers(tmp_path):
    settings = Settings(LOCAL_STORAGE_PATH=str(tmp_path), PROGRESS_CONSUMER_ENABLED=False)
    assert ServiceContainer.from_settings(settings).consumers == []


def test_container_rejects_unknown_backend():
    with pytest.raises(ValueError):
        ServiceContainer.from_settings(Settings(PROGRESS_STORE_BACKEND="etcd"))


def test_client_errors_are_logged_as_warnings(client, caplog):
    with caplog.at_level(logging.WARNING, logger="filevault.core.middleware"):
        client.get("/upload/missing/progress", headers={"x-upload-id": "missing"})

    [record] = [r for r in caplog.records if r.name == "filevault.core.middleware"]
    assert record.levelno == logging.WARNING
    assert record.http_status == 404
    assert record.request_upload_id == "missing"


def test_queue_mediated_progress_reaches_subscribers(settings, services):
    """Upload events go through the queue and the consumer to local subscribers."""
    settings.PROGRESS_CONSUMER_ENABLED = True
    settings.QUEUE_WAIT_SECONDS = 1
    services.configure_consumers()
    connection = RecordingConnection()
    services.registry.subscribe("e2e", connection)

    with TestClient(create_app(services)) as client:
        files = {"file": ("a.pdf", io.BytesIO(b"%PDF" * 1000), "application/pdf")}
        response = client.post("/upload", files=files, data={"uploadId": "e2e"})
        assert response.status_code == 201

        deadline = time.monotonic() + 5
        while not connection.closed and time.monotonic() < deadline:
            time.sleep(0.02)

    assert connection.closed
    assert connection.events[-1]["event"] == "UPLOAD_COMPLETED"
    assert "e2e" not in services.registry
    assert services.queue.depth(settings.progress_queue) == 0


@pytest.mark.asyncio
async def test_start_and_shutdown(settings, services):
    settings.PROGRESS_CONSUMER_ENABLED = True
    settings.QUEUE_WAIT_SECONDS = 1
    services.configure_consumers()

    await services.start()
    assert all(c._task is not None for c in services.consumers)
    await services.shutdown()

    assert all(not c.running for c in services.consumers)


def test_poll_mode_event_stream_ends_on_terminal_record(settings, services):
    settings.PROGRESS_STREAM_MODE = "poll"
    settings.SSE_POLL_INTERVAL_SECONDS = 0.01
    client = TestClient(create_app(services))
    files = {"file": ("a.pdf", io.BytesIO(b"%PDF"), "application/pdf")}
    client.post("/upload", files=files, data={"uploadId": "polled"})

    with client.stream("GET", "/events/upload/polled") as response:
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        lines = [line for line in response.iter_lines() if line.startswith(("data:", "event:"))]

    assert lines[0] == "event: connected"
    payloads = [json.loads(line[len("data:"):]) for line in lines if line.startswith("data:")]
    assert payloads[-1]["event"] == "UPLOAD_COMPLETED"
    assert payloads[-1]["status"] == UploadStatus.COMPLETED.value


def test_settings_derived_values():
    settings = Settings(
        MAX_UPLOAD_MB=2,
        S3_PART_SIZE_MB=1,
        ALLOWED_UPLOAD_MIME_TYPES="image/png, text/csv,",
        QUEUE_BACKEND="sqs",
        SQS_PROGRESS_EVENTS_URL="https://sqs/progress",
    )

    assert settings.max_upload_bytes == 2 * 1024 * 1024
    assert settings.s3_part_size == 5 * 1024 * 1024
    assert settings.allowed_mime_types == ["image/png", "text/csv"]
    assert settings.progress_queue == "https://sqs/progress"
    assert settings.file_events_queue == ""

"""Pytest configuration and shared fixtures."""

import pytest
from fastapi.testclient import TestClient

from filevault.core.config import Settings
from filevault.main import create_app
from filevault.messaging.memory import MemoryQueue
from filevault.services.container import ServiceContainer
from filevault.storage.local import LocalBlobStore
from filevault.storage.progress_store import MemoryProgressStore


@pytest.fixture
def settings(tmp_path):
    """Settings for a single-process deployment writing to ``tmp_path``."""
    return Settings(
        ENV="test",
        STORAGE_BACKEND="local",
        LOCAL_STORAGE_PATH=str(tmp_path / "uploads"),
        PUBLIC_BASE_URL="http://files.test",
        PROGRESS_STORE_BACKEND="memory",
        QUEUE_BACKEND="memory",
        MAX_UPLOAD_MB=20,
        PROGRESS_THROTTLE_MS=0,
        PROGRESS_CONSUMER_ENABLED=False,
    )


@pytest.fixture
def services(settings):
    return ServiceContainer(
        settings=settings,
        blob_store=LocalBlobStore(settings.LOCAL_STORAGE_PATH, settings.PUBLIC_BASE_URL),
        progress_store=MemoryProgressStore(ttl_seconds=settings.PROGRESS_TTL_SECONDS),
        queue=MemoryQueue(),
    )


@pytest.fixture
def client(services):
    """Test client; lifespan is not run, so no consumers are started."""
    return TestClient(create_app(services))


@pytest.fixture
def progress_events(services):
    """Return the progress payloads published for an upload, oldest first."""

    def _events(upload_id: str):
        bodies = services.queue.bodies(services.settings.progress_queue)
        return [b for b in bodies if b.get("uploadId") == upload_id]

    return _events

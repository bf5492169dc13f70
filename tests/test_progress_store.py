"""Tests for progress records and stores."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from filevault.core.exceptions import ProgressStoreError
from filevault.models.progress import UploadProgress, UploadStatus, compute_progress, merge_progress
from filevault.storage.progress_store import MemoryProgressStore, RedisProgressStore

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestMergeProgress:
    def test_creates_record_with_defaults(self):
        record = merge_progress(None, "u1", {"file_name": "a.pdf", "file_size": 200}, 3600, now=T0)

        assert record.upload_id == "u1"
        assert record.status is UploadStatus.UPLOADING
        assert record.uploaded_bytes == 0
        assert record.progress == 0.0
        assert record.updated_at == T0
        assert record.expires_at == T0 + timedelta(hours=1)

    def test_progress_is_derived_from_bytes(self):
        record = merge_progress(None, "u1", {"file_size": 200, "uploaded_bytes": 50}, 60, now=T0)
        assert record.progress == 25.0

    def test_unknown_size_reports_zero(self):
        assert compute_progress(500, None) == 0.0
        assert compute_progress(500, 0) == 0.0

    def test_uploaded_bytes_never_decrease(self):
        first = merge_progress(None, "u1", {"file_size": 100, "uploaded_bytes": 80}, 60, now=T0)
        second = merge_progress(first, "u1", {"uploaded_bytes": 40}, 60, now=T0)

        assert second.uploaded_bytes == 80
        assert second.progress == 80.0

    def test_terminal_status_is_not_overwritten(self):
        done = merge_progress(None, "u1", {"status": UploadStatus.COMPLETED, "uploaded_bytes": 10}, 60)
        stale = merge_progress(done, "u1", {"status": UploadStatus.UPLOADING, "uploaded_bytes": 5}, 60)

        assert stale.status is UploadStatus.COMPLETED
        assert stale.progress == 100.0

    def test_failed_then_completed_keeps_failed(self):
        failed = merge_progress(None, "u1", {"status": UploadStatus.FAILED}, 60)
        later = merge_progress(failed, "u1", {"status": UploadStatus.COMPLETED}, 60)
        assert later.status is UploadStatus.FAILED

    def test_missing_metadata_does_not_erase_known_values(self):
        first = merge_progress(None, "u1", {"file_name": "a.pdf", "file_size": 10}, 60)
        second = merge_progress(first, "u1", {"file_name": None, "file_size": None}, 60)

        assert second.file_name == "a.pdf"
        assert second.file_size == 10


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestMemoryProgressStore:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self):
        store = MemoryProgressStore()

        await store.upsert("u1", file_name="a.pdf")
        await store.upsert("u1", uploaded_bytes=10)

        assert len(store) == 1
        record = await store.get("u1")
        assert record.file_name == "a.pdf"
        assert record.uploaded_bytes == 10

    @pytest.mark.asyncio
    async def test_expired_records_are_dropped(self):
        clock = FakeClock(T0)
        store = MemoryProgressStore(ttl_seconds=60, clock=clock)
        await store.upsert("u1")

        clock.now = T0 + timedelta(seconds=59)
        assert await store.get("u1") is not None

        clock.now = T0 + timedelta(seconds=61)
        assert await store.get("u1") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_write_refreshes_ttl(self):
        clock = FakeClock(T0)
        store = MemoryProgressStore(ttl_seconds=60, clock=clock)
        await store.upsert("u1")

        clock.now = T0 + timedelta(seconds=50)
        await store.upsert("u1", uploaded_bytes=1)

        clock.now = T0 + timedelta(seconds=100)
        assert await store.get("u1") is not None

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        clock = FakeClock(T0)
        store = MemoryProgressStore(ttl_seconds=10, clock=clock)
        await store.upsert("old")
        clock.now = T0 + timedelta(seconds=8)
        await store.upsert("new")

        clock.now = T0 + timedelta(seconds=12)
        assert store.purge_expired() == 1
        assert await store.get("new") is not None

    @pytest.mark.asyncio
    async def test_writes_sweep_expired_records(self):
        clock = FakeClock(T0)
        store = MemoryProgressStore(ttl_seconds=1, clock=clock)
        for n in range(100):
            await store.upsert(f"done-{n}", status=UploadStatus.COMPLETED)

        clock.now = T0 + timedelta(hours=5)
        await store.upsert("fresh")

        assert len(store) == 1
        assert await store.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_sweep_runs_at_most_once_per_interval(self):
        clock = FakeClock(T0)
        store = MemoryProgressStore(ttl_seconds=1, clock=clock, purge_interval_seconds=60)
        await store.upsert("a")

        clock.now = T0 + timedelta(seconds=30)
        await store.upsert("b")
        assert len(store) == 2

        clock.now = T0 + timedelta(seconds=61)
        await store.upsert("c")
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_delete(self):
        store = MemoryProgressStore()
        await store.upsert("u1")
        await store.delete("u1")
        await store.delete("u1")

        assert await store.get("u1") is None


def make_redis_client(stored=None):
    """Mock redis.asyncio client whose pipeline returns ``stored`` for GET."""
    pipe = MagicMock()
    pipe.watch = AsyncMock()
    pipe.get = AsyncMock(return_value=stored)
    pipe.execute = AsyncMock(return_value=[True])
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)

    client = MagicMock()
    client.pipeline.return_value = pipe
    client.get = AsyncMock(return_value=stored)
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    return client, pipe


class TestRedisProgressStore:
    @pytest.mark.asyncio
    async def test_upsert_writes_json_with_ttl(self):
        client, pipe = make_redis_client()
        store = RedisProgressStore(client, ttl_seconds=3600)

        record = await store.upsert("u1", file_name="a.pdf", file_size=100, uploaded_bytes=20)

        assert record.progress == 20.0
        pipe.watch.assert_awaited_once_with("upload-progress:u1")
        pipe.multi.assert_called_once()
        key, value = pipe.set.call_args.args
        assert key == "upload-progress:u1"
        assert pipe.set.call_args.kwargs == {"ex": 3600}
        assert UploadProgress.model_validate_json(value).uploaded_bytes == 20

    @pytest.mark.asyncio
    async def test_upsert_merges_with_existing_terminal_record(self):
        existing = UploadProgress(upload_id="u1", status=UploadStatus.COMPLETED, uploaded_bytes=100)
        client, pipe = make_redis_client(existing.model_dump_json())
        store = RedisProgressStore(client)

        record = await store.upsert("u1", status=UploadStatus.UPLOADING, uploaded_bytes=50)

        assert record.status is UploadStatus.COMPLETED
        assert record.uploaded_bytes == 100

    @pytest.mark.asyncio
    async def test_get_decodes_record(self):
        existing = UploadProgress(upload_id="u1", file_name="a.pdf")
        client, _ = make_redis_client(existing.model_dump_json())
        store = RedisProgressStore(client)

        record = await store.get("u1")

        assert record.file_name == "a.pdf"
        client.get.assert_awaited_once_with("upload-progress:u1")

    @pytest.mark.asyncio
    async def test_get_missing_and_unreadable(self):
        client, _ = make_redis_client(None)
        assert await RedisProgressStore(client).get("u1") is None

        client, _ = make_redis_client("not json")
        assert await RedisProgressStore(client).get("u1") is None

    @pytest.mark.asyncio
    async def test_redis_errors_are_wrapped(self):
        client, _ = make_redis_client()
        client.get.side_effect = RedisConnectionError("down")
        store = RedisProgressStore(client)

        with pytest.raises(ProgressStoreError):
            await store.get("u1")

    @pytest.mark.asyncio
    async def test_delete_and_close(self):
        client, _ = make_redis_client()
        store = RedisProgressStore(client)

        await store.delete("u1")
        await store.close()

        client.delete.assert_awaited_once_with("upload-progress:u1")
        client.aclose.assert_awaited_once()

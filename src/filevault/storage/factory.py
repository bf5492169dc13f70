"""Backend factories for blob and progress storage."""

from filevault.core.config import Settings
from filevault.storage.base import BlobStore
from filevault.storage.progress_store import MemoryProgressStore, ProgressStore, RedisProgressStore


def get_blob_store(settings: Settings) -> BlobStore:
    """Build the blob store selected by STORAGE_BACKEND.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = settings.STORAGE_BACKEND
    if backend == "local":
        from filevault.storage.local import LocalBlobStore

        return LocalBlobStore(settings.LOCAL_STORAGE_PATH, settings.PUBLIC_BASE_URL)
    if backend == "gcs":
        from filevault.storage.gcs import GCSBlobStore

        return GCSBlobStore(settings.GCS_BUCKET_NAME, settings.GCP_PROJECT_ID)
    if backend == "s3":
        from filevault.storage.s3 import S3BlobStore, create_s3_client

        client = create_s3_client(
            settings.S3_REGION,
            settings.S3_ENDPOINT_URL,
            settings.S3_ACCESS_KEY_ID,
            settings.S3_SECRET_ACCESS_KEY,
        )
        return S3BlobStore(
            client,
            settings.S3_BUCKET,
            part_size=settings.s3_part_size,
            public_base_url=settings.S3_PUBLIC_BASE_URL,
            region=settings.S3_REGION,
        )
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def get_progress_store(settings: Settings) -> ProgressStore:
    """Build the progress store selected by PROGRESS_STORE_BACKEND."""
    backend = settings.PROGRESS_STORE_BACKEND
    if backend == "memory":
        return MemoryProgressStore(
            ttl_seconds=settings.PROGRESS_TTL_SECONDS,
            purge_interval_seconds=settings.PROGRESS_PURGE_INTERVAL_SECONDS,
        )
    if backend == "redis":
        import redis.asyncio as redis

        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        return RedisProgressStore(client, ttl_seconds=settings.PROGRESS_TTL_SECONDS)
    raise ValueError(f"Unknown PROGRESS_STORE_BACKEND: {backend}")

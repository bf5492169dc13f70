"""Configuration management for FileVault."""

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_MIME_TYPES = ",".join(
    [
        # Images
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/bmp",
        "image/webp",
        "image/tiff",
        # Documents
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
        "text/csv",
        # Video
        "video/mp4",
    ]
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "filevault"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Blob storage
    STORAGE_BACKEND: str = "local"  # "local", "gcs" or "s3"
    LOCAL_STORAGE_PATH: str = "data/uploads"
    PUBLIC_BASE_URL: str = ""

    GCP_PROJECT_ID: str = ""
    GCS_BUCKET_NAME: str = ""

    # S3 compatible storage (AWS S3, Cloudflare R2)
    S3_BUCKET: str = ""
    S3_REGION: str = "auto"
    S3_ENDPOINT_URL: str = ""
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_PUBLIC_BASE_URL: str = ""
    S3_PART_SIZE_MB: int = 8

    # Upload constraints
    MAX_UPLOAD_MB: int = 100
    ALLOWED_UPLOAD_MIME_TYPES: str = DEFAULT_ALLOWED_MIME_TYPES
    UPLOAD_CHUNK_SIZE_KB: int = 64
    UPLOAD_BUFFER_CHUNKS: int = 8

    # Progress tracking
    PROGRESS_STORE_BACKEND: str = "memory"  # "memory" or "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    PROGRESS_TTL_SECONDS: int = 3600
    PROGRESS_PURGE_INTERVAL_SECONDS: int = 60
    PROGRESS_THROTTLE_MS: int = 500

    # Message queue
    QUEUE_BACKEND: str = "memory"  # "memory" or "sqs"
    AWS_REGION: str = "us-east-1"
    SQS_ACCESS_KEY_ID: str = ""
    SQS_SECRET_ACCESS_KEY: str = ""
    SQS_PROGRESS_EVENTS_URL: str = ""
    SQS_FILE_EVENTS_URL: str = ""
    SQS_FOLDER_EVENTS_URL: str = ""
    QUEUE_MAX_MESSAGES: int = 10
    QUEUE_WAIT_SECONDS: int = 20
    QUEUE_VISIBILITY_TIMEOUT: int = 60
    QUEUE_ERROR_BACKOFF_SECONDS: float = 2.0
    MEMORY_QUEUE_MAX_DEPTH: int = 1000

    # Consumers and event streams
    PROGRESS_CONSUMER_ENABLED: bool = True
    LIFECYCLE_CONSUMER_ENABLED: bool = False
    PROGRESS_STREAM_MODE: str = "queue"  # "queue" or "poll"
    SSE_POLL_INTERVAL_SECONDS: float = 1.0
    SSE_HEARTBEAT_SECONDS: float = 10.0
    SSE_RECORD_WAIT_SECONDS: float = 15.0

    @property
    def allowed_mime_types(self) -> list[str]:
        """Parse ALLOWED_UPLOAD_MIME_TYPES into a list."""
        return [mt.strip() for mt in self.ALLOWED_UPLOAD_MIME_TYPES.split(",") if mt.strip()]

    @property
    def max_upload_bytes(self) -> int:
        """Convert MAX_UPLOAD_MB to bytes."""
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def upload_chunk_size(self) -> int:
        return self.UPLOAD_CHUNK_SIZE_KB * 1024

    @property
    def s3_part_size(self) -> int:
        """Multipart part size in bytes; S3 rejects parts under 5 MB."""
        return max(self.S3_PART_SIZE_MB, 5) * 1024 * 1024

    @property
    def progress_queue(self) -> str:
        """Queue address for upload progress events."""
        if self.QUEUE_BACKEND == "sqs":
            return self.SQS_PROGRESS_EVENTS_URL
        return "progress-events"

    @property
    def file_events_queue(self) -> str:
        if self.QUEUE_BACKEND == "sqs":
            return self.SQS_FILE_EVENTS_URL
        return "file-events"

    @property
    def folder_events_queue(self) -> str:
        if self.QUEUE_BACKEND == "sqs":
            return self.SQS_FOLDER_EVENTS_URL
        return "folder-events"


# Singleton settings instance
settings = Settings()

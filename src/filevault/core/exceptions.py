"""Custom exceptions for FileVault."""


class FileVaultError(Exception):
    """Base exception for errors surfaced to HTTP callers."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class MissingUploadId(FileVaultError):
    """Raised when no upload id was supplied by field, header or query."""

    status_code = 400


class UnsupportedMediaType(FileVaultError):
    """Raised when the file part's MIME type is not allow-listed."""

    status_code = 415


class PayloadTooLarge(FileVaultError):
    """Raised when an upload exceeds the configured size limit."""

    status_code = 400


class MalformedMultipart(FileVaultError):
    """Raised when the request body is not a usable multipart form."""

    status_code = 400


class UploadBackendFailure(FileVaultError):
    """Raised when the blob store rejects or fails an upload."""

    status_code = 500


class UploadAborted(FileVaultError):
    """Raised when the client disconnects mid-upload."""

    status_code = 499


class NotFound(FileVaultError):
    status_code = 404


class StorageError(Exception):
    """Exception raised when blob store operations fail."""
    pass


class QueueError(Exception):
    """Exception raised when message queue operations fail."""
    pass


class ProgressStoreError(Exception):
    """Exception raised when progress store operations fail."""
    pass

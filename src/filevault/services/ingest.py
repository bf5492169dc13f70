"""Streaming multipart upload ingestion.

The request body is parsed incrementally. The file part's bytes are handed
to the blob store through a small bounded queue while the progress reporter
counts them, so memory stays bounded by the queue depth and reading from the
network waits whenever the blob store falls behind.
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Tuple

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect, Request

from filevault.core.background import best_effort
from filevault.core.config import Settings
from filevault.core.exceptions import (
    FileVaultError,
    MalformedMultipart,
    MissingUploadId,
    PayloadTooLarge,
    UnsupportedMediaType,
    UploadAborted,
    UploadBackendFailure,
)
from filevault.core.logging import upload_id_context
from filevault.messaging.base import MessageQueue
from filevault.models.events import EventType, FileEvent
from filevault.models.files import ROOT_FOLDER_ID, FileRecord, UploadResponse
from filevault.services.progress import ProgressReporter
from filevault.storage.base import BlobStore, StoredObject
from filevault.storage.file_store import FileStore
from filevault.storage.progress_store import ProgressStore

logger = logging.getLogger(__name__)

MAX_FIELD_BYTES = 64 * 1024


class UploadState(str, Enum):
    AWAITING_STREAM = "awaiting_stream"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    FAILED = "failed"


class _Part(Enum):
    BEGIN = 1
    HEADER_FIELD = 2
    HEADER_VALUE = 3
    HEADER_END = 4
    HEADERS_FINISHED = 5
    DATA = 6
    END = 7


def parse_size(value: Optional[str]) -> Optional[int]:
    """Parse a byte count, ignoring anything that is not a non-negative int."""
    if value is None:
        return None
    try:
        size = int(str(value).strip())
    except ValueError:
        return None
    return size if size >= 0 else None


class UploadSession:
    """State of one multipart upload request."""

    def __init__(self, pipeline: "UploadIngestPipeline", request: Request):
        self.pipeline = pipeline
        self.settings = pipeline.settings
        self.request = request
        self.state = UploadState.AWAITING_STREAM

        self.fields: Dict[str, str] = {}
        self.reporter: Optional[ProgressReporter] = None
        self.upload_id: Optional[str] = None
        self.folder_id = ROOT_FOLDER_ID
        self.file_name = ""
        self.content_type = ""
        self.received_bytes = 0
        self.stored: Optional[StoredObject] = None

        self._messages: List[Tuple[_Part, bytes]] = []
        self._header_field = b""
        self._header_value = b""
        self._part_headers: Dict[bytes, bytes] = {}
        self._part_name = ""
        self._part_is_file = False
        self._field_buffer = bytearray()
        self._file_seen = False
        self._size_declared = False
        self._chunks: Optional[asyncio.Queue] = None
        self._upload_task: Optional[asyncio.Task] = None

    # Parser callbacks only record what happened; the async work is done in
    # _drain() so blob writes can apply backpressure to the read loop.

    def _on_part_begin(self) -> None:
        self._messages.append((_Part.BEGIN, b""))

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._messages.append((_Part.HEADER_FIELD, data[start:end]))

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._messages.append((_Part.HEADER_VALUE, data[start:end]))

    def _on_header_end(self) -> None:
        self._messages.append((_Part.HEADER_END, b""))

    def _on_headers_finished(self) -> None:
        self._messages.append((_Part.HEADERS_FINISHED, b""))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._messages.append((_Part.DATA, data[start:end]))

    def _on_part_end(self) -> None:
        self._messages.append((_Part.END, b""))

    def _boundary(self) -> bytes:
        content_type, params = parse_options_header(self.request.headers.get("content-type", ""))
        if content_type != b"multipart/form-data":
            raise MalformedMultipart("Request must be multipart/form-data")
        boundary = params.get(b"boundary")
        if not boundary:
            raise MalformedMultipart("Multipart boundary missing from Content-Type")
        return boundary

    async def run(self) -> UploadResponse:
        parser = MultipartParser(
            self._boundary(),
            {
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
            },
        )

        try:
            async for chunk in self.request.stream():
                parser.write(chunk)
                await self._drain()
            parser.finalize()
            await self._drain()

            if not self._file_seen:
                raise MalformedMultipart("No file part found in upload")
            if self.stored is None:
                raise MalformedMultipart("Multipart body ended before the file part was complete")

            return await self._finish()
        except MultipartParseError as e:
            await self._fail(f"malformed multipart: {e}")
            raise MalformedMultipart(f"Malformed multipart body: {e}") from e
        except ClientDisconnect as e:
            await self._fail("client disconnected")
            raise UploadAborted("Client disconnected during upload") from e
        except FileVaultError as e:
            await self._fail(e.message)
            raise
        except asyncio.CancelledError:
            await self._fail("request cancelled")
            raise
        except Exception as e:
            logger.error(f"Unexpected upload failure: {e}", exc_info=True)
            await self._fail(str(e))
            raise UploadBackendFailure(f"Upload failed: {e}") from e
        finally:
            await self._cancel_upload()
            if self.reporter is not None:
                await self.reporter.close()

    async def _drain(self) -> None:
        messages, self._messages = self._messages, []
        for kind, data in messages:
            if kind is _Part.BEGIN:
                self._header_field = b""
                self._header_value = b""
                self._part_headers = {}
                self._field_buffer = bytearray()
            elif kind is _Part.HEADER_FIELD:
                self._header_field += data
            elif kind is _Part.HEADER_VALUE:
                self._header_value += data
            elif kind is _Part.HEADER_END:
                self._part_headers[self._header_field.lower()] = self._header_value
                self._header_field = b""
                self._header_value = b""
            elif kind is _Part.HEADERS_FINISHED:
                await self._start_part()
            elif kind is _Part.DATA:
                if self._part_is_file:
                    await self._write_file_data(data)
                else:
                    self._field_buffer.extend(data)
                    if len(self._field_buffer) > MAX_FIELD_BYTES:
                        raise MalformedMultipart(f"Form field {self._part_name!r} is too large")
            elif kind is _Part.END:
                if self._part_is_file:
                    await self._end_file()
                else:
                    self.fields[self._part_name] = self._field_buffer.decode("utf-8", errors="replace")

    async def _start_part(self) -> None:
        disposition = self._part_headers.get(b"content-disposition")
        if disposition is None:
            raise MalformedMultipart("Part is missing its Content-Disposition header")
        _, options = parse_options_header(disposition)
        self._part_name = options.get(b"name", b"").decode("utf-8", errors="replace")
        filename = options.get(b"filename")
        self._part_is_file = filename is not None
        if self._part_is_file:
            content_type = self._part_headers.get(b"content-type", b"application/octet-stream")
            await self._begin_file(
                filename.decode("utf-8", errors="replace") or "unnamed",
                content_type.decode("latin-1").split(";")[0].strip().lower(),
            )

    def _resolve_upload_id(self) -> Optional[str]:
        return (
            self.fields.get("uploadId")
            or self.request.headers.get("x-upload-id")
            or self.request.query_params.get("uploadId")
        )

    def _resolve_file_size(self) -> Tuple[Optional[int], bool]:
        """Return the total size and whether the client declared it explicitly.

        Content-Length covers the whole multipart body, so it is only good
        enough for a progress estimate.
        """
        for value in (self.fields.get("fileSize"), self.request.headers.get("x-file-size")):
            size = parse_size(value)
            if size is not None:
                return size, True
        return parse_size(self.request.headers.get("content-length")), False

    def _resolve_folder_id(self) -> str:
        return (
            self.fields.get("folderId")
            or self.request.headers.get("x-folder-id")
            or self.request.query_params.get("folderId")
            or ROOT_FOLDER_ID
        )

    async def _begin_file(self, file_name: str, content_type: str) -> None:
        if self._file_seen:
            raise MalformedMultipart("Only one file may be uploaded per request")
        self._file_seen = True

        upload_id = self._resolve_upload_id()
        if not upload_id:
            raise MissingUploadId("uploadId is required (form field, x-upload-id header or query)")
        self.upload_id = upload_id
        upload_id_context.set(upload_id)

        self.file_name = file_name
        self.content_type = content_type
        self.folder_id = self._resolve_folder_id()
        file_size, self._size_declared = self._resolve_file_size()

        self.reporter = self.pipeline.new_reporter(upload_id)
        self.reporter.file_name = file_name
        self.reporter.file_size = file_size
        self.state = UploadState.RECEIVING

        if content_type not in self.settings.allowed_mime_types:
            raise UnsupportedMediaType(f"File type {content_type} is not supported")
        if self._size_declared and file_size > self.settings.max_upload_bytes:
            raise PayloadTooLarge(
                f"File size exceeds maximum allowed size of {self.settings.MAX_UPLOAD_MB}MB"
            )

        await self.reporter.start(file_name, file_size)

        key = self.pipeline.blob_store.build_key(upload_id, file_name, self.folder_id)
        self._chunks = asyncio.Queue(maxsize=max(self.settings.UPLOAD_BUFFER_CHUNKS, 1))
        self._upload_task = asyncio.create_task(
            self.pipeline.blob_store.put_stream(key, self._iter_chunks(), content_type)
        )
        logger.info(
            f"Upload started: upload_id={upload_id}, file={file_name}, type={content_type}",
            extra={"folder_id": self.folder_id, "declared_size": file_size},
        )

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                return
            yield chunk

    async def _write_file_data(self, data: bytes) -> None:
        chunk_size = self.settings.upload_chunk_size
        for offset in range(0, len(data), chunk_size):
            piece = data[offset : offset + chunk_size]
            self.received_bytes += len(piece)
            if self.received_bytes > self.settings.max_upload_bytes:
                raise PayloadTooLarge(
                    f"File size exceeds maximum allowed size of {self.settings.MAX_UPLOAD_MB}MB"
                )
            await self._forward(piece)
            self.reporter.advance(len(piece))

    async def _forward(self, chunk: Optional[bytes]) -> None:
        """Hand a chunk (or the end-of-stream marker) to the blob writer."""
        if self._upload_task.done():
            raise self._backend_failure()
        if not self._chunks.full():
            self._chunks.put_nowait(chunk)
            return

        put = asyncio.ensure_future(self._chunks.put(chunk))
        done, _ = await asyncio.wait({put, self._upload_task}, return_when=asyncio.FIRST_COMPLETED)
        if put not in done:
            put.cancel()
            raise self._backend_failure()

    def _backend_failure(self) -> UploadBackendFailure:
        exc = None if self._upload_task.cancelled() else self._upload_task.exception()
        if exc is None:
            return UploadBackendFailure("Blob store stopped reading before the upload finished")
        logger.error(f"Blob store upload failed: {exc}", exc_info=exc)
        return UploadBackendFailure(f"Upload to storage failed: {exc}")

    async def _end_file(self) -> None:
        await self._forward(None)
        try:
            self.stored = await self._upload_task
        except Exception as e:
            raise self._backend_failure() from e

    async def _finish(self) -> UploadResponse:
        total = self.stored.bytes_written
        if not self._size_declared:
            # Content-Length estimate included the multipart framing
            self.reporter.file_size = total
        await self.reporter.complete(total)
        self.state = UploadState.COMPLETED

        record = self.pipeline.file_store.create(
            FileRecord(
                id=str(uuid.uuid4()),
                name=self.file_name,
                original_name=self.file_name,
                mime_type=self.content_type,
                file_size=total,
                storage_key=self.stored.storage_key,
                url=self.stored.public_url,
                folder_id=self.folder_id,
                upload_id=self.upload_id,
            )
        )
        await self.pipeline.publish_file_event(EventType.FILE_CREATED, record)

        logger.info(
            f"Upload completed: upload_id={self.upload_id}, file_id={record.id}, "
            f"backend={self.pipeline.blob_store.get_backend_name()}, size={total}"
        )
        return UploadResponse(upload_id=self.upload_id, file=record)

    async def _fail(self, reason: str) -> None:
        self.state = UploadState.FAILED
        await self._cancel_upload()
        if self.stored is not None:
            # The object landed but the request as a whole was rejected
            await best_effort(
                self.pipeline.blob_store.delete(self.stored.storage_key),
                "orphaned blob cleanup",
                storage_key=self.stored.storage_key,
            )
        if self.reporter is not None:
            await self.reporter.fail(reason)

    async def _cancel_upload(self) -> None:
        task = self._upload_task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Cancelled blob upload raised: {e}")


class UploadIngestPipeline:
    """Entry point for streaming uploads."""

    def __init__(
        self,
        settings: Settings,
        blob_store: BlobStore,
        progress_store: ProgressStore,
        queue: MessageQueue,
        file_store: FileStore,
    ):
        self.settings = settings
        self.blob_store = blob_store
        self.progress_store = progress_store
        self.queue = queue
        self.file_store = file_store

    def new_reporter(self, upload_id: str) -> ProgressReporter:
        return ProgressReporter(
            upload_id,
            self.progress_store,
            self.queue,
            self.settings.progress_queue,
            throttle_ms=self.settings.PROGRESS_THROTTLE_MS,
        )

    async def ingest(self, request: Request) -> UploadResponse:
        """Stream a multipart upload into the blob store.

        Raises:
            FileVaultError: One of the upload error taxonomy; progress has
                already been marked failed when an upload id was known
        """
        return await UploadSession(self, request).run()

    async def publish_file_event(self, event: EventType, record: FileRecord) -> None:
        message = FileEvent(
            event=event,
            file_id=record.id,
            folder_id=record.folder_id,
            name=record.name,
            mime_type=record.mime_type,
            file_size=record.file_size,
        )
        await best_effort(
            self.queue.publish(self.settings.file_events_queue, message.to_wire()),
            "file event publish",
            file_id=record.id,
        )

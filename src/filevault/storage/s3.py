"""S3-compatible blob store (AWS S3, Cloudflare R2)."""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from filevault.core.exceptions import StorageError
from filevault.storage.base import BlobStore, StoredObject

logger = logging.getLogger(__name__)


def create_s3_client(
    region: str,
    endpoint_url: str = "",
    access_key_id: str = "",
    secret_access_key: str = "",
) -> Any:
    """Create an S3 client.

    Args:
        region: Region name ("auto" for R2)
        endpoint_url: Custom endpoint, e.g. the R2 account endpoint
        access_key_id: Explicit key id, falls back to the default chain
        secret_access_key: Explicit secret

    Returns:
        Configured S3 client
    """
    kwargs: Dict[str, Any] = {"region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    if access_key_id and secret_access_key:
        kwargs["aws_access_key_id"] = access_key_id
        kwargs["aws_secret_access_key"] = secret_access_key
    return boto3.client("s3", **kwargs)


class S3BlobStore(BlobStore):
    """S3 blob store streaming through the multipart upload API.

    At most one part is buffered in memory. Payloads smaller than a single
    part are sent with one ``put_object`` call.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        part_size: int = 8 * 1024 * 1024,
        public_base_url: str = "",
        region: str = "",
    ):
        if not bucket:
            raise ValueError("S3_BUCKET not configured")
        self.client = client
        self.bucket = bucket
        self.part_size = part_size
        self.public_base_url = public_base_url.rstrip("/")
        self.region = region

    async def put_stream(
        self, key: str, chunks: AsyncIterator[bytes], content_type: str
    ) -> StoredObject:
        buffer = bytearray()
        written = 0
        multipart_id: Optional[str] = None
        parts: List[Dict[str, Any]] = []

        try:
            async for chunk in chunks:
                buffer.extend(chunk)
                written += len(chunk)
                while len(buffer) >= self.part_size:
                    if multipart_id is None:
                        multipart_id = await self._create_multipart(key, content_type)
                    part = bytes(buffer[: self.part_size])
                    del buffer[: self.part_size]
                    parts.append(await self._upload_part(key, multipart_id, len(parts) + 1, part))

            if multipart_id is None:
                await asyncio.to_thread(
                    self.client.put_object,
                    Bucket=self.bucket,
                    Key=key,
                    Body=bytes(buffer),
                    ContentType=content_type,
                )
            else:
                if buffer:
                    parts.append(await self._upload_part(key, multipart_id, len(parts) + 1, bytes(buffer)))
                await asyncio.to_thread(
                    self.client.complete_multipart_upload,
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=multipart_id,
                    MultipartUpload={"Parts": parts},
                )
        except BaseException as e:
            if multipart_id is not None:
                await self._abort_multipart(key, multipart_id)
            if isinstance(e, (BotoCoreError, ClientError)):
                raise StorageError(f"S3 upload failed for {key}: {e}") from e
            raise

        logger.debug(f"S3 upload finished: key={key}, bytes={written}, parts={len(parts)}")
        return StoredObject(
            storage_key=key,
            public_url=self.public_url(key),
            bytes_written=written,
        )

    async def _create_multipart(self, key: str, content_type: str) -> str:
        response = await asyncio.to_thread(
            self.client.create_multipart_upload,
            Bucket=self.bucket,
            Key=key,
            ContentType=content_type,
        )
        return response["UploadId"]

    async def _upload_part(
        self, key: str, multipart_id: str, part_number: int, body: bytes
    ) -> Dict[str, Any]:
        response = await asyncio.to_thread(
            self.client.upload_part,
            Bucket=self.bucket,
            Key=key,
            UploadId=multipart_id,
            PartNumber=part_number,
            Body=body,
        )
        return {"ETag": response["ETag"], "PartNumber": part_number}

    async def _abort_multipart(self, key: str, multipart_id: str) -> None:
        # Shielded so a cancelled upload still releases its stored parts
        try:
            await asyncio.shield(
                asyncio.to_thread(
                    self.client.abort_multipart_upload,
                    Bucket=self.bucket,
                    Key=key,
                    UploadId=multipart_id,
                )
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to abort multipart upload {multipart_id} for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"S3 head failed for {key}: {e}") from e

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def get_backend_name(self) -> str:
        return "s3"

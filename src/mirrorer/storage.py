"""Storage backends for mirrored files: the local mirror and the S3 bucket."""

import base64
import hashlib
import os
import uuid
import aiofiles
import aiofiles.os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from mirrorer.paths import generate_file_path

logger = structlog.get_logger()

chmod = aiofiles.os.wrap(os.chmod)

NOT_FOUND_CODES = frozenset({"404", "NotFound", "NoSuchKey"})


def redirect_html_body(redirect_url: str) -> bytes:
    """Build the meta-refresh page stored in place of a redirect."""
    return (
        "<!DOCTYPE html><html lang=en><head>"
        f'<meta http-equiv=refresh content="1; url={redirect_url}">'
        "<title>Redirecting</title></head><body>"
        f'<p>Redirecting you to <a href="{redirect_url}">{redirect_url}</a>.</p>'
        "</body></html>"
    ).encode("utf-8")


class LocalFileStorage:
    """Writes responses into the local mirror directory."""

    def __init__(self, root: str = "."):
        """
        Initialize local file storage.

        Args:
            root: Directory the mirror is written under
        """
        self.root = Path(root)
        logger.info("local_storage_init", root=str(self.root))

    def full_path(self, relative_path: str) -> Path:
        """Resolve a path returned by save() against the mirror root."""
        return self.root / relative_path

    async def save(self, url: str, content_type: str, body: bytes) -> str:
        """
        Write a response body to its place in the mirror.

        The body goes to a temporary file next to the target which is then
        renamed over it, so readers never see a partial file.

        Args:
            url: URL the body was fetched from
            content_type: Content-Type of the response
            body: Raw response body

        Returns:
            Path of the file relative to the mirror root

        Raises:
            UnknownContentType: If no extension can be chosen
            OSError: If the file cannot be written
        """
        relative_path = generate_file_path(url, content_type)
        target = self.full_path(relative_path)

        await aiofiles.os.makedirs(target.parent, mode=0o755, exist_ok=True)

        tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp_path, mode="wb") as f:
                await f.write(body)
            await chmod(tmp_path, 0o644)
            await aiofiles.os.replace(tmp_path, target)
        except BaseException:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.unlink(tmp_path)
            raise

        logger.debug("local_storage_write", path=relative_path, bytes=len(body))
        return relative_path


class UploadError(Exception):
    """A file could not be uploaded to the remote store."""


class FileNotFound(UploadError):
    """The local file to upload does not exist."""


class RemoteMetadataFailed(UploadError):
    """Reading the remote object's metadata failed."""


class RemoteWriteFailed(UploadError):
    """Writing the remote object failed."""


class BlobUploader(ABC):
    """Uploads mirrored files to a remote object store."""

    @abstractmethod
    async def upload_file(self, file_path: str | Path, destination_key: str, content_type: str) -> bool:
        """
        Upload the file at file_path to destination_key.

        Args:
            file_path: Local file to upload
            destination_key: Key of the remote object
            content_type: Content-Type to store with the object

        Returns:
            True if the object was written, False if it was already up to date

        Raises:
            UploadError: If the upload fails
        """
        pass


class S3Uploader(BlobUploader):
    """AWS S3 uploader that skips objects whose size and type already match."""

    def __init__(self, client: Any, bucket: str):
        """
        Initialize S3 uploader.

        Args:
            client: An open aioboto3 S3 client
            bucket: Destination bucket
        """
        self.client = client
        self.bucket = bucket

    async def upload_file(self, file_path: str | Path, destination_key: str, content_type: str) -> bool:
        try:
            local_size = (await aiofiles.os.stat(file_path)).st_size
        except FileNotFoundError as e:
            raise FileNotFound(f"file {file_path} does not exist") from e

        try:
            remote = await self.client.head_object(Bucket=self.bucket, Key=destination_key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") not in NOT_FOUND_CODES:
                raise RemoteMetadataFailed(f"failed to get object metadata: {e}") from e
            remote = None
        except BotoCoreError as e:
            raise RemoteMetadataFailed(f"failed to get object metadata: {e}") from e

        if remote is not None:
            same_size = remote.get("ContentLength") == local_size
            same_type = remote.get("ContentType") == content_type
            if same_size and same_type:
                logger.debug("upload_skipped", key=destination_key)
                return False
            if not same_type:
                logger.info(
                    "content_type_changed",
                    key=destination_key,
                    remote=remote.get("ContentType"),
                    local=content_type,
                )

        async with aiofiles.open(file_path, mode="rb") as f:
            body = await f.read()

        checksum = base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")

        try:
            await self.client.put_object(
                Bucket=self.bucket,
                Key=destination_key,
                Body=body,
                ChecksumAlgorithm="SHA1",
                ChecksumSHA1=checksum,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise RemoteWriteFailed(f"failed to write object: {e}") from e

        logger.info("file_uploaded", bucket=self.bucket, key=destination_key, bytes=len(body))
        return True

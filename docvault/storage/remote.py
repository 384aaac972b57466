"""S3-compatible object-storage backend.

Clients upload straight to the provider with a pre-signed URL; this backend
only issues those URLs, stamps an access policy on finished objects and turns
them into FileRecords. boto3 is synchronous, so every provider call runs in a
worker thread under a timeout.
"""
import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import unquote, urlparse
from uuid import uuid4

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from docvault.core.config import Settings, settings
from docvault.core.exceptions import (
    EmptyUploadError,
    FileNotFoundInStorageError,
    InvalidUploadError,
    PayloadTooLargeError,
    ProviderUnavailableError,
)
from docvault.core.logging import get_logger
from docvault.core.models import FileRecord, StorageBackendKind, UploadTarget
from docvault.ingest.validator import infer_mime_type
from docvault.storage.base import StorageBackend

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = get_logger(__name__)

T = TypeVar("T")

REMOTE_PATH_PREFIX = "/objects/"

CANNED_ACLS = {"public": "public-read", "private": "private"}

_MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}


class S3Storage(StorageBackend):
    """Object-storage backend built on boto3.

    Example:
        storage = S3Storage.from_settings(settings)

        target = await storage.generate_upload_target()
        # client PUTs the document to target.upload_url
        record = await storage.complete_upload(target.upload_url, "report.pdf", 2048)
    """

    kind = StorageBackendKind.REMOTE
    locator_prefix = REMOTE_PATH_PREFIX

    def __init__(
        self,
        bucket: str,
        client: "S3Client | None" = None,
        key_prefix: str = "uploads",
        owner: str = "system",
        visibility: str = "public",
        presign_expiry_seconds: int = 900,
        timeout_seconds: float = 10.0,
        max_retries: int = 2,
        max_upload_bytes: int | None = None,
    ) -> None:
        if not bucket:
            raise ProviderUnavailableError("Object storage bucket is not configured")

        self.bucket = bucket
        self.client = client or boto3.client("s3")
        self.key_prefix = key_prefix.strip("/")
        self.owner = owner
        self.visibility = visibility
        self.presign_expiry_seconds = presign_expiry_seconds
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes

    @classmethod
    def from_settings(cls, config: Settings) -> "S3Storage":
        """Build a client and backend from application settings."""
        client = boto3.client(
            "s3",
            region_name=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
            config=Config(
                connect_timeout=config.provider_timeout_seconds,
                read_timeout=config.provider_timeout_seconds,
                retries={"max_attempts": 1},
            ),
        )
        return cls(
            bucket=config.s3_bucket_name,
            client=client,
            key_prefix=config.s3_key_prefix,
            owner=config.s3_default_owner,
            visibility=config.s3_default_visibility,
            presign_expiry_seconds=config.presign_expiry_seconds,
            timeout_seconds=config.provider_timeout_seconds,
            max_retries=config.provider_max_retries,
            max_upload_bytes=config.max_upload_bytes,
        )

    async def _call(self, fn: Callable[..., T], **kwargs: Any) -> T:
        """Run a blocking boto3 call in a thread, bounded by the timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, **kwargs),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderUnavailableError("Object storage did not respond in time") from e
        except BotoCoreError as e:
            logger.warning(
                "Object storage call failed",
                operation=getattr(fn, "__name__", "unknown"),
                error=str(e),
            )
            raise ProviderUnavailableError("Object storage unreachable") from e

    async def _check_bucket(self) -> None:
        """Check the bucket is reachable, retrying transient failures."""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderUnavailableError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=0.2, max=2),
            reraise=True,
        ):
            with attempt:
                try:
                    await self._call(self.client.head_bucket, Bucket=self.bucket)
                except ClientError as e:
                    raise ProviderUnavailableError(
                        "Object storage bucket is not accessible",
                        details={"code": _error_code(e)},
                    ) from e

    async def generate_upload_target(self) -> UploadTarget:
        """Issue a time-boxed pre-signed PUT URL for a new object.

        Raises:
            ProviderUnavailableError: If the bucket cannot be reached
        """
        await self._check_bucket()

        file_id = uuid4().hex
        key = f"{self.key_prefix}/{file_id}" if self.key_prefix else file_id
        try:
            url = await self._call(
                self.client.generate_presigned_url,
                ClientMethod="put_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presign_expiry_seconds,
            )
        except ClientError as e:
            raise ProviderUnavailableError("Could not sign upload URL") from e

        logger.debug("Issued pre-signed upload URL", key=key)
        return UploadTarget(
            upload_url=url,
            backend=self.kind,
            file_id=file_id,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self.presign_expiry_seconds),
        )

    def object_key_from_url(self, upload_url: str) -> str:
        """Extract the object key from a pre-signed or plain object URL.

        Handles path-style (``/<bucket>/<key>``) and virtual-hosted
        (``<bucket>.host/<key>``) URLs.

        Raises:
            InvalidUploadError: If the URL does not name an object under
                this backend's key prefix
        """
        parsed = urlparse(upload_url)
        path = unquote(parsed.path).lstrip("/")
        host = parsed.hostname or ""

        if not host.startswith(f"{self.bucket}.") and path.startswith(f"{self.bucket}/"):
            path = path[len(self.bucket) + 1:]

        segments = path.split("/")
        in_prefix = not self.key_prefix or path.startswith(f"{self.key_prefix}/")
        if not path or not segments[-1] or ".." in segments or not in_prefix:
            raise InvalidUploadError("Upload URL does not reference an issued object")
        return path

    @staticmethod
    def derive_id(key: str) -> str:
        """Stable record id for an object: its trailing key segment."""
        return key.rsplit("/", 1)[-1]

    async def complete_upload(
        self,
        upload_url: str,
        declared_name: str,
        declared_size: int,
    ) -> FileRecord:
        """Finalize an object the client has uploaded directly.

        The provider's own ContentLength is recorded as the size; the
        declared size is only compared against it.

        Args:
            upload_url: URL the client uploaded to
            declared_name: Client filename (untrusted)
            declared_size: Client-reported byte count (untrusted)

        Returns:
            Record for the object, not yet in the ledger

        Raises:
            InvalidUploadError: If the URL is not one of ours
            FileNotFoundInStorageError: If no object exists at the key
            PayloadTooLargeError: If the object exceeds the size ceiling
            EmptyUploadError: If the object is empty
            ProviderUnavailableError: If the provider cannot be reached
        """
        key = self.object_key_from_url(upload_url)
        size = await self._object_size(key)

        if size != declared_size:
            logger.warning(
                "Declared size differs from stored object",
                key=key,
                declared_size=declared_size,
                stored_size=size,
            )
        if size == 0:
            raise EmptyUploadError("Uploaded object contains no data")
        if size > self.max_upload_bytes:
            await self._delete(key)
            raise PayloadTooLargeError(
                f"Upload exceeds {self.max_upload_bytes} byte limit",
                details={"size": size, "max_bytes": self.max_upload_bytes},
            )

        await self._set_access_policy(key)

        record = FileRecord(
            id=self.derive_id(key),
            name=declared_name,
            size=size,
            storage_path=f"{REMOTE_PATH_PREFIX}{key}",
            mime_type=infer_mime_type(declared_name),
            uploaded_at=datetime.now(timezone.utc),
            backend=self.kind,
        )
        logger.info("Object upload completed", file_id=record.id, key=key, size=size)
        return record

    async def _object_size(self, key: str) -> int:
        try:
            head = await self._call(self.client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_OBJECT_CODES:
                raise FileNotFoundInStorageError("Uploaded object not found") from e
            raise ProviderUnavailableError(
                "Could not inspect uploaded object",
                details={"code": _error_code(e)},
            ) from e
        return int(head["ContentLength"])

    async def _set_access_policy(self, key: str) -> None:
        """Apply owner and visibility to an object.

        Buckets with object ownership enforced reject ACLs; the tags still
        carry the policy there.
        """
        try:
            await self._call(
                self.client.put_object_tagging,
                Bucket=self.bucket,
                Key=key,
                Tagging={
                    "TagSet": [
                        {"Key": "owner", "Value": self.owner},
                        {"Key": "visibility", "Value": self.visibility},
                    ]
                },
            )
            await self._call(
                self.client.put_object_acl,
                Bucket=self.bucket,
                Key=key,
                ACL=CANNED_ACLS.get(self.visibility, "private"),
            )
        except ClientError as e:
            code = _error_code(e)
            if code == "AccessControlListNotSupported":
                logger.warning("Bucket does not support ACLs, relying on tags", key=key)
                return
            raise ProviderUnavailableError(
                "Could not set access policy on uploaded object",
                details={"code": code},
            ) from e

    async def discard_upload(self, upload_url: str) -> None:
        """Delete an object a client uploaded but completion then refused.

        URLs that do not name one of this backend's objects are ignored.
        """
        try:
            key = self.object_key_from_url(upload_url)
        except InvalidUploadError:
            return
        await self._delete(key)
        logger.info("Discarded refused upload", key=key)

    async def _delete(self, key: str) -> None:
        try:
            await self._call(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (ClientError, ProviderUnavailableError) as e:
            logger.warning("Failed to delete rejected object", key=key, error=str(e))

    async def download_url(self, locator: str) -> str:
        """Pre-signed GET URL for an ``/objects/...`` locator.

        Raises:
            FileNotFoundInStorageError: If the locator is not an object path
        """
        if not self.owns(locator) or len(locator) == len(REMOTE_PATH_PREFIX):
            raise FileNotFoundInStorageError("File not found")
        key = locator[len(REMOTE_PATH_PREFIX):]
        try:
            return await self._call(
                self.client.generate_presigned_url,
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.presign_expiry_seconds,
            )
        except ClientError as e:
            raise ProviderUnavailableError("Could not sign download URL") from e


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))

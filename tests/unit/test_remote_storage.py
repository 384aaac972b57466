"""Tests for the S3 object-storage backend, against moto."""
import time
from typing import Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from docvault.core.exceptions import (
    EmptyUploadError,
    FileNotFoundInStorageError,
    InvalidUploadError,
    PayloadTooLargeError,
    ProviderUnavailableError,
)
from docvault.core.models import StorageBackendKind
from docvault.storage.remote import REMOTE_PATH_PREFIX, S3Storage
from tests.helpers import MAX_TEST_UPLOAD_BYTES, TEST_BUCKET_NAME

ALL_USERS = "http://acs.amazonaws.com/groups/global/AllUsers"


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


async def upload_object(storage: S3Storage, s3_client: Any, body: bytes) -> tuple[str, str]:
    """Issue a target and put an object where the client would have."""
    target = await storage.generate_upload_target()
    key = storage.object_key_from_url(target.upload_url)
    s3_client.put_object(Bucket=TEST_BUCKET_NAME, Key=key, Body=body)
    return target.upload_url, key


class TestUploadTarget:
    """Issuing pre-signed upload URLs."""

    @pytest.mark.asyncio
    async def test_presigned_put(self, s3_storage: S3Storage) -> None:
        target = await s3_storage.generate_upload_target()

        assert target.backend == StorageBackendKind.REMOTE
        assert TEST_BUCKET_NAME in target.upload_url
        assert f"uploads/{target.file_id}" in target.upload_url
        assert "Signature" in target.upload_url or "X-Amz-Signature" in target.upload_url

    @pytest.mark.asyncio
    async def test_missing_bucket_is_unavailable(self, s3_client: Any) -> None:
        storage = S3Storage(bucket="no-such-bucket", client=s3_client, max_retries=0)

        with pytest.raises(ProviderUnavailableError):
            await storage.generate_upload_target()

    def test_empty_bucket_name_is_unavailable(self) -> None:
        with pytest.raises(ProviderUnavailableError):
            S3Storage(bucket="", client=MagicMock())

    @pytest.mark.asyncio
    async def test_unreachable_provider_retried_then_unavailable(self) -> None:
        client = MagicMock()
        client.head_bucket.side_effect = EndpointConnectionError(endpoint_url="http://s3")
        storage = S3Storage(bucket="b", client=client, max_retries=2)

        with pytest.raises(ProviderUnavailableError):
            await storage.generate_upload_target()

        assert client.head_bucket.call_count == 3
        client.generate_presigned_url.assert_not_called()

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self) -> None:
        client = MagicMock()
        client.head_bucket.side_effect = lambda **kwargs: time.sleep(0.5)
        storage = S3Storage(bucket="b", client=client, timeout_seconds=0.05, max_retries=0)

        with pytest.raises(ProviderUnavailableError):
            await storage.generate_upload_target()


class TestObjectKeyFromUrl:
    """Parsing upload URLs back into object keys."""

    @pytest.fixture
    def storage(self) -> S3Storage:
        return S3Storage(bucket="docs", client=MagicMock(), key_prefix="uploads")

    @pytest.mark.parametrize(
        "url",
        [
            "https://docs.s3.amazonaws.com/uploads/abc123?X-Amz-Signature=x",
            "https://s3.us-east-1.amazonaws.com/docs/uploads/abc123",
            "http://localhost:9000/docs/uploads/abc123?sig=1",
        ],
    )
    def test_accepted_styles(self, storage: S3Storage, url: str) -> None:
        assert storage.object_key_from_url(url) == "uploads/abc123"

    @pytest.mark.parametrize(
        "url",
        [
            "https://docs.s3.amazonaws.com/",
            "https://docs.s3.amazonaws.com/other/abc123",
            "https://docs.s3.amazonaws.com/uploads/",
            "https://docs.s3.amazonaws.com/uploads/../secrets/key",
            "https://docs.s3.amazonaws.com/uploads/%2E%2E/secrets",
            "not a url",
        ],
    )
    def test_rejected(self, storage: S3Storage, url: str) -> None:
        with pytest.raises(InvalidUploadError):
            storage.object_key_from_url(url)

    def test_derive_id(self) -> None:
        assert S3Storage.derive_id("uploads/abc123") == "abc123"
        assert S3Storage.derive_id("abc123") == "abc123"


class TestCompleteUpload:
    """Finalizing objects uploaded by clients."""

    @pytest.mark.asyncio
    async def test_record_from_stored_object(self, s3_storage: S3Storage, s3_client: Any) -> None:
        url, key = await upload_object(s3_storage, s3_client, b"%PDF-1.4 body")

        record = await s3_storage.complete_upload(url, "report.pdf", 13)

        assert record.id == key.rsplit("/", 1)[-1]
        assert record.name == "report.pdf"
        assert record.size == 13
        assert record.storage_path == f"{REMOTE_PATH_PREFIX}{key}"
        assert record.mime_type == "application/pdf"
        assert record.backend == StorageBackendKind.REMOTE

    @pytest.mark.asyncio
    async def test_stored_size_wins_over_declared(
        self, s3_storage: S3Storage, s3_client: Any
    ) -> None:
        url, _ = await upload_object(s3_storage, s3_client, b"0123456789")

        record = await s3_storage.complete_upload(url, "notes.txt", 999)

        assert record.size == 10

    @pytest.mark.asyncio
    async def test_access_policy_applied(self, s3_storage: S3Storage, s3_client: Any) -> None:
        url, key = await upload_object(s3_storage, s3_client, b"hello")

        await s3_storage.complete_upload(url, "notes.txt", 5)

        tags = s3_client.get_object_tagging(Bucket=TEST_BUCKET_NAME, Key=key)["TagSet"]
        assert {"Key": "owner", "Value": "system"} in tags
        assert {"Key": "visibility", "Value": "public"} in tags

        grants = s3_client.get_object_acl(Bucket=TEST_BUCKET_NAME, Key=key)["Grants"]
        assert any(
            g["Grantee"].get("URI") == ALL_USERS and g["Permission"] == "READ" for g in grants
        )

    @pytest.mark.asyncio
    async def test_same_object_gives_same_id(
        self, s3_storage: S3Storage, s3_client: Any
    ) -> None:
        url, _ = await upload_object(s3_storage, s3_client, b"hello")

        first = await s3_storage.complete_upload(url, "notes.txt", 5)
        second = await s3_storage.complete_upload(url, "notes.txt", 5)

        assert first.id == second.id
        assert first.storage_path == second.storage_path

    @pytest.mark.asyncio
    async def test_missing_object_not_found(self, s3_storage: S3Storage) -> None:
        target = await s3_storage.generate_upload_target()

        with pytest.raises(FileNotFoundInStorageError):
            await s3_storage.complete_upload(target.upload_url, "notes.txt", 5)

    @pytest.mark.asyncio
    async def test_empty_object_rejected(self, s3_storage: S3Storage, s3_client: Any) -> None:
        url, _ = await upload_object(s3_storage, s3_client, b"")

        with pytest.raises(EmptyUploadError):
            await s3_storage.complete_upload(url, "notes.txt", 0)

    @pytest.mark.asyncio
    async def test_oversized_object_rejected_and_deleted(
        self, s3_storage: S3Storage, s3_client: Any
    ) -> None:
        url, key = await upload_object(s3_storage, s3_client, b"x" * (MAX_TEST_UPLOAD_BYTES + 1))

        with pytest.raises(PayloadTooLargeError):
            await s3_storage.complete_upload(url, "big.pdf", 10)

        listing = s3_client.list_objects_v2(Bucket=TEST_BUCKET_NAME, Prefix=key)
        assert listing.get("KeyCount", 0) == 0

    @pytest.mark.asyncio
    async def test_foreign_url_rejected(self, s3_storage: S3Storage) -> None:
        with pytest.raises(InvalidUploadError):
            await s3_storage.complete_upload(
                "https://evil.example.com/elsewhere/abc", "notes.txt", 5
            )

    @pytest.mark.asyncio
    async def test_acl_not_supported_is_tolerated(self) -> None:
        client = MagicMock()
        client.head_object.return_value = {"ContentLength": 5}
        client.put_object_acl.side_effect = client_error(
            "AccessControlListNotSupported", "PutObjectAcl"
        )
        storage = S3Storage(bucket="docs", client=client, max_upload_bytes=100)

        record = await storage.complete_upload(
            "https://docs.s3.amazonaws.com/uploads/abc123", "notes.txt", 5
        )

        assert record.id == "abc123"
        client.put_object_tagging.assert_called_once()

    @pytest.mark.asyncio
    async def test_access_denied_is_unavailable(self) -> None:
        client = MagicMock()
        client.head_object.side_effect = client_error("403")
        storage = S3Storage(bucket="docs", client=client)

        with pytest.raises(ProviderUnavailableError):
            await storage.complete_upload(
                "https://docs.s3.amazonaws.com/uploads/abc123", "notes.txt", 5
            )


class TestDownloadUrl:
    """Pre-signed GET URLs for stored objects."""

    @pytest.mark.asyncio
    async def test_signs_get(self, s3_storage: S3Storage) -> None:
        url = await s3_storage.download_url("/objects/uploads/abc123")
        assert "uploads/abc123" in url

    @pytest.mark.asyncio
    @pytest.mark.parametrize("locator", ["/objects/", "/uploads/abc123"])
    async def test_rejects_non_object_locators(
        self, s3_storage: S3Storage, locator: str
    ) -> None:
        with pytest.raises(FileNotFoundInStorageError):
            await s3_storage.download_url(locator)

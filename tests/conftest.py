"""Pytest configuration and fixtures."""
from collections.abc import Generator
from pathlib import Path
from typing import Any

import boto3
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from docvault.api.main import create_app
from docvault.core.config import Settings, StorageStrategy
from docvault.ingest.validator import MimeValidator
from docvault.storage.ledger import MetadataLedger
from docvault.storage.local import LocalStorage
from docvault.storage.remote import S3Storage
from docvault.storage.router import StorageRouter
from docvault.storage.sessions import UploadSessionRegistry
from tests.helpers import MAX_TEST_UPLOAD_BYTES, TEST_BUCKET_NAME, TEST_REGION


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Test settings with local-only storage under a temp directory."""
    return Settings(
        environment="development",
        debug=True,
        storage_backend="local",
        storage_path=tmp_path / "data",
        s3_bucket_name="",
        public_base_url="http://testserver",
    )


@pytest.fixture
def ledger(test_settings: Settings) -> MetadataLedger:
    return MetadataLedger(test_settings.ledger_path)


@pytest.fixture
def local_storage(ledger: MetadataLedger, test_settings: Settings) -> LocalStorage:
    return LocalStorage(
        ledger,
        base_path=test_settings.uploads_dir,
        upload_url_base="http://testserver/api/v1/files/local-upload",
        target_ttl_seconds=600,
    )


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fake credentials so boto3 never reaches for real ones."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)


@pytest.fixture
def s3_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Moto-backed S3 client with the test bucket created."""
    with mock_aws():
        client = boto3.client("s3", region_name=TEST_REGION)
        client.create_bucket(Bucket=TEST_BUCKET_NAME)
        yield client


@pytest.fixture
def s3_storage(s3_client: Any) -> S3Storage:
    return S3Storage(
        bucket=TEST_BUCKET_NAME,
        client=s3_client,
        key_prefix="uploads",
        max_retries=0,
        max_upload_bytes=MAX_TEST_UPLOAD_BYTES,
    )


@pytest.fixture
def local_router(local_storage: LocalStorage) -> StorageRouter:
    """Router with no object storage configured."""
    return StorageRouter(
        local=local_storage,
        remote=None,
        strategy=StorageStrategy.LOCAL,
        validator=MimeValidator(),
        sessions=UploadSessionRegistry(),
        max_upload_bytes=MAX_TEST_UPLOAD_BYTES,
    )


@pytest.fixture
def remote_router(local_storage: LocalStorage, s3_storage: S3Storage) -> StorageRouter:
    """Router that prefers object storage."""
    return StorageRouter(
        local=local_storage,
        remote=s3_storage,
        strategy=StorageStrategy.REMOTE,
        validator=MimeValidator(),
        sessions=UploadSessionRegistry(),
        max_upload_bytes=MAX_TEST_UPLOAD_BYTES,
    )


@pytest.fixture
def client(test_settings: Settings) -> Generator[TestClient, None, None]:
    """Synchronous test client running the app lifespan."""
    with TestClient(create_app(test_settings)) as c:
        yield c

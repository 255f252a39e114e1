"""Tests for the S3 object storage provider."""
from __future__ import annotations

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from conftest import FakeS3Client
from lxrestore.config import StorageConfig
from lxrestore.errors import ObjectNotFound, TransferError
from lxrestore.providers.storage import ObjectStorage


class ErroringClient:
    """S3 client whose calls always raise *error*."""

    def __init__(self, error: Exception) -> None:
        self.error = error

    def head_object(self, **kwargs: object) -> None:
        raise self.error

    def get_object(self, **kwargs: object) -> None:
        raise self.error


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


def test_stat_returns_size_and_etag() -> None:
    """stat reports ContentLength and an unquoted ETag."""
    client = FakeS3Client({("lxrestore", "u2/b.tar.gz"): b"x" * 42})
    storage = ObjectStorage(client)

    stat = storage.stat("lxrestore", "u2/b.tar.gz")

    assert stat.size_bytes == 42
    assert stat.etag == "0123abcd"
    assert client.calls == [("head_object", "lxrestore", "u2/b.tar.gz")]


def test_stat_missing_object_raises_not_found() -> None:
    """A 404 from head_object means the backup does not exist."""
    storage = ObjectStorage(FakeS3Client())

    with pytest.raises(ObjectNotFound, match="lxrestore/u2/missing.tar.gz"):
        storage.stat("lxrestore", "u2/missing.tar.gz")


def test_open_missing_object_raises_not_found() -> None:
    """NoSuchKey from get_object maps to ObjectNotFound."""
    storage = ObjectStorage(FakeS3Client())

    with pytest.raises(ObjectNotFound):
        storage.open_stream("lxrestore", "u2/missing.tar.gz")


def test_open_stream_returns_body() -> None:
    """open_stream hands back the streaming body."""
    client = FakeS3Client({("lxrestore", "u2/b.tar.gz"): b"payload"})

    body = ObjectStorage(client).open_stream("lxrestore", "u2/b.tar.gz")

    assert body.read(-1) == b"payload"
    assert body is client.bodies[0]


@pytest.mark.parametrize("code", ["403", "AccessDenied", "InternalError"])
def test_other_client_errors_raise_transfer_error(code: str) -> None:
    """Client errors other than missing objects are transfer failures."""
    storage = ObjectStorage(ErroringClient(_client_error(code)))

    with pytest.raises(TransferError):
        storage.stat("lxrestore", "u2/b.tar.gz")


def test_missing_bucket_is_not_found() -> None:
    """A missing bucket also means the backup cannot be located."""
    storage = ObjectStorage(ErroringClient(_client_error("NoSuchBucket")))

    with pytest.raises(ObjectNotFound):
        storage.open_stream("nope", "u2/b.tar.gz")


def test_connection_errors_raise_transfer_error() -> None:
    """botocore transport errors become TransferError."""
    error = EndpointConnectionError(endpoint_url="http://minio.local:9000")
    storage = ObjectStorage(ErroringClient(error))

    with pytest.raises(TransferError, match="minio.local"):
        storage.stat("lxrestore", "u2/b.tar.gz")
    with pytest.raises(TransferError):
        storage.open_stream("lxrestore", "u2/b.tar.gz")


def test_from_config_builds_s3_client(monkeypatch: pytest.MonkeyPatch) -> None:
    """from_config passes endpoint, region and addressing style to boto3."""
    captured: dict[str, object] = {}

    def fake_client(service: str, **kwargs: object) -> object:
        captured["service"] = service
        captured.update(kwargs)
        return object()

    monkeypatch.setattr("lxrestore.providers.storage.boto3.client", fake_client)
    config = StorageConfig(
        bucket="lxrestore",
        endpoint_url="http://minio.local:9000",
        region="eu-west-1",
        addressing_style="path",
    )

    ObjectStorage.from_config(config)

    assert captured["service"] == "s3"
    assert captured["endpoint_url"] == "http://minio.local:9000"
    assert captured["region_name"] == "eu-west-1"
    assert captured["config"].s3 == {"addressing_style": "path"}  # type: ignore[attr-defined]

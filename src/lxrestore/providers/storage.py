"""Object storage provider backed by an S3-compatible (MinIO) endpoint."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, BinaryIO

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..config import StorageConfig
from ..errors import ObjectNotFound, TransferError

_MISSING_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


@dataclass(frozen=True)
class ObjectStat:
    """Metadata returned by :meth:`ObjectStorage.stat`."""

    bucket: str
    key: str
    size_bytes: int
    etag: str | None = None


def _error_code(exc: ClientError) -> str:
    error = exc.response.get("Error", {}) if isinstance(exc.response, dict) else {}
    return str(error.get("Code", ""))


class ObjectStorage:
    """Stat and stream backup objects through a boto3 S3 client."""

    def __init__(self, client: Any) -> None:
        """Wrap an already configured S3 *client*."""
        self._client = client

    @classmethod
    def from_config(cls, config: StorageConfig) -> ObjectStorage:
        """Build a provider for the endpoint described by *config*.

        Credentials are resolved by boto3's default chain (environment,
        shared credentials file, instance profile).
        """
        client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            region_name=config.region,
            config=BotoConfig(s3={"addressing_style": config.addressing_style}),
        )
        return cls(client)

    def stat(self, bucket: str, key: str) -> ObjectStat:
        """Return the size (and etag) of ``bucket/key``."""
        try:
            response = self._client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            raise self._translate(exc, bucket, key, "stat") from exc
        except BotoCoreError as exc:
            raise TransferError(f"Failed to stat {bucket}/{key}: {exc}") from exc
        size = int(response.get("ContentLength", 0))
        etag = response.get("ETag")
        return ObjectStat(
            bucket=bucket,
            key=key,
            size_bytes=size,
            etag=str(etag).strip('"') if etag else None,
        )

    def open_stream(self, bucket: str, key: str) -> BinaryIO:
        """Return a readable streaming body for ``bucket/key``.

        The caller owns the returned stream and must close it.
        """
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            raise self._translate(exc, bucket, key, "open") from exc
        except BotoCoreError as exc:
            raise TransferError(f"Failed to open {bucket}/{key}: {exc}") from exc
        return response["Body"]

    @staticmethod
    def _translate(exc: ClientError, bucket: str, key: str, action: str) -> Exception:
        code = _error_code(exc)
        if code in _MISSING_CODES:
            return ObjectNotFound(f"Backup object {bucket}/{key} not found.")
        return TransferError(f"Failed to {action} {bucket}/{key}: {exc}")


__all__ = ["ObjectStat", "ObjectStorage"]

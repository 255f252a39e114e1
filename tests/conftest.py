"""Pytest configuration helpers and shared fakes for the test suite."""

from __future__ import annotations

import io
import os
from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from rich.console import Console

from lxrestore.errors import ExternalToolError, InstanceCheckFailed
from lxrestore.providers.storage import ObjectStorage
from lxrestore.restore import RestoreContext


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeBody:
    """Streaming body stand-in that can fail or end early."""

    def __init__(self, data: bytes, *, fail_after: int | None = None) -> None:
        """Serve *data*, raising once *fail_after* bytes were read."""
        self._buffer = io.BytesIO(data)
        self._fail_after = fail_after
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        """Return the next chunk."""
        if self._fail_after is not None and self._buffer.tell() >= self._fail_after:
            raise OSError("connection reset by peer")
        return self._buffer.read(size)

    def close(self) -> None:
        """Record that the caller released the stream."""
        self.closed = True


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self, objects: dict[tuple[str, str], bytes] | None = None) -> None:
        """Serve *objects* keyed by ``(bucket, key)``."""
        self.objects = dict(objects or {})
        self.calls: list[tuple[str, str, str]] = []
        self.bodies: list[FakeBody] = []
        self.advertised_sizes: dict[tuple[str, str], int] = {}
        self.fail_after: dict[tuple[str, str], int] = {}

    def head_object(self, *, Bucket: str, Key: str) -> dict[str, object]:  # noqa: N803
        """Return metadata for the object."""
        self.calls.append(("head_object", Bucket, Key))
        data = self._lookup(Bucket, Key, "HeadObject", code="404")
        size = self.advertised_sizes.get((Bucket, Key), len(data))
        return {"ContentLength": size, "ETag": '"0123abcd"'}

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, object]:  # noqa: N803
        """Return a streaming body for the object."""
        self.calls.append(("get_object", Bucket, Key))
        data = self._lookup(Bucket, Key, "GetObject", code="NoSuchKey")
        body = FakeBody(data, fail_after=self.fail_after.get((Bucket, Key)))
        self.bodies.append(body)
        return {"Body": body}

    def _lookup(self, bucket: str, key: str, operation: str, *, code: str) -> bytes:
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise ClientError(
                {"Error": {"Code": code, "Message": "Not Found"}},
                operation,
            ) from None


class FakeLxc:
    """Records lxc calls instead of running the binary."""

    def __init__(
        self,
        *,
        existing: tuple[str, ...] = (),
        failures: dict[str, str] | None = None,
    ) -> None:
        """Treat *existing* instances as present and fail the named operations."""
        self.existing = set(existing)
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str]] = []
        self.archive_present_on_import: bool | None = None

    def check_instance(self, instance: str) -> None:
        """Fail when *instance* already exists."""
        self.calls.append(("check", instance))
        if instance in self.existing:
            raise InstanceCheckFailed(f"Instance '{instance}' already exists.")

    def import_archive(self, archive_path: Path) -> None:
        """Record the import and optionally fail."""
        self.calls.append(("import", str(archive_path)))
        self.archive_present_on_import = archive_path.exists()
        if "import" in self.failures:
            raise ExternalToolError("import", self.failures["import"])

    def start(self, instance: str) -> None:
        """Record the start and optionally fail."""
        self.calls.append(("start", instance))
        if "start" in self.failures:
            raise ExternalToolError("start", self.failures["start"])


def quiet_console() -> Console:
    """Return a console that renders into memory."""
    return Console(file=io.StringIO(), width=100, force_terminal=False)


@pytest.fixture
def s3_client() -> FakeS3Client:
    """Return an empty fake S3 client."""
    return FakeS3Client()


@pytest.fixture
def lxc() -> FakeLxc:
    """Return a fake lxc provider that succeeds."""
    return FakeLxc()


@pytest.fixture
def restore_context(tmp_path: Path, s3_client: FakeS3Client, lxc: FakeLxc) -> RestoreContext:
    """Return a restore context wired to the fakes."""
    return RestoreContext(
        bucket="lxrestore",
        staging_root=tmp_path / "staging",
        storage=ObjectStorage(s3_client),
        lxc=lxc,  # type: ignore[arg-type]
        console=quiet_console(),
        chunk_size=64 * 1024,
    )

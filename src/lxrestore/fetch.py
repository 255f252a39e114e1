"""Resolve backup objects and stream them to local storage."""
from __future__ import annotations

import posixpath
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from botocore.exceptions import BotoCoreError

from .config import DEFAULT_CHUNK_SIZE
from .errors import LocalWriteError, TransferError
from .progress import ProgressState
from .providers.storage import ObjectStorage

ProgressCallback = Callable[[ProgressState], None]


@dataclass(frozen=True)
class RemoteObjectHandle:
    """Location (and, once resolved, size and etag) of a backup object."""

    bucket: str
    key: str
    size_bytes: int | None = None
    etag: str | None = None

    @classmethod
    def for_backup(cls, bucket: str, instance: str, backup: str) -> RemoteObjectHandle:
        """Return the handle for *backup* stored under the *instance* prefix."""
        return cls(bucket=bucket, key=posixpath.join(instance, backup))

    @property
    def display_name(self) -> str:
        """Return ``bucket/key`` for messages."""
        return f"{self.bucket}/{self.key}"


class ObjectFetcher:
    """Copy a remote backup object into a local archive file."""

    def __init__(self, storage: ObjectStorage, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        """Bind the fetcher to *storage* using *chunk_size* reads."""
        if chunk_size <= 0:
            raise ValueError("chunk_size must be greater than zero.")
        self.storage = storage
        self.chunk_size = chunk_size

    def resolve(self, handle: RemoteObjectHandle) -> RemoteObjectHandle:
        """Return *handle* with its size and etag filled in from a stat call."""
        stat = self.storage.stat(handle.bucket, handle.key)
        return replace(handle, size_bytes=stat.size_bytes, etag=stat.etag)

    def fetch(
        self,
        handle: RemoteObjectHandle,
        destination: Path,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Download *handle* into *destination* and return the local path.

        Only a complete copy is returned; a short read, a read failure or a
        write failure raises and leaves whatever was written in place.
        """
        if handle.size_bytes is None:
            handle = self.resolve(handle)
        total = handle.size_bytes or 0
        state = ProgressState(total_bytes=total)

        stream = self.storage.open_stream(handle.bucket, handle.key)
        try:
            try:
                output = destination.open("wb")
            except OSError as exc:
                raise LocalWriteError(f"Failed to create {destination}: {exc}") from exc
            with output:
                while True:
                    try:
                        chunk = stream.read(self.chunk_size)
                    except (OSError, BotoCoreError) as exc:
                        raise TransferError(
                            f"Transfer of {handle.display_name} interrupted: {exc}"
                        ) from exc
                    if not chunk:
                        break
                    try:
                        output.write(chunk)
                    except OSError as exc:
                        raise LocalWriteError(f"Failed to write {destination}: {exc}") from exc
                    state.advance(len(chunk))
                    if on_progress is not None:
                        on_progress(state)
        finally:
            stream.close()

        if not state.complete:
            raise TransferError(
                f"Transfer of {handle.display_name} ended early: "
                f"{state.transferred_bytes} of {state.total_bytes} bytes received."
            )
        return destination


__all__ = ["ObjectFetcher", "ProgressCallback", "RemoteObjectHandle"]

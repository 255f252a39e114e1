"""Restore coordinator: download a backup, import it and start the instance.

The coordinator walks ``validating -> fetching -> importing -> cleanup ->
done``; any failure moves it to ``failed``. Import and start run on a
worker thread while the spinner owns the console on a second one, and the
coordinator joins the spinner before removing the staged archive. Once the
archive has been downloaded it is always removed, whatever the outcome of
the import.
"""
from __future__ import annotations

import queue
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from rich.console import Console

from .config import DEFAULT_CHUNK_SIZE, AppConfig
from .errors import (
    CleanupError,
    InvalidArguments,
    LocalWriteError,
    RestoreError,
)
from .fetch import ObjectFetcher, RemoteObjectHandle
from .logging import OperationScope
from .orchestrator import ImportStartOrchestrator, OrchestratorEvent
from .progress import TransferProgress
from .providers.lxc import LxcProvider
from .providers.storage import ObjectStorage
from .status_ui import StatusUI


class RestorePhase(str, Enum):
    """States of a single restore."""

    VALIDATING = "validating"
    FETCHING = "fetching"
    IMPORTING = "importing"
    CLEANUP = "cleanup"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RestoreRequest:
    """Instance and backup names for one restore."""

    instance_name: str
    backup_name: str

    @classmethod
    def build(cls, instance: str | None, backup: str | None) -> RestoreRequest:
        """Trim and validate the raw arguments."""
        instance_name = (instance or "").strip()
        backup_name = (backup or "").strip()
        if not instance_name:
            raise InvalidArguments("An instance name is required.")
        if not backup_name:
            raise InvalidArguments("A backup name is required.")
        if backup_name in {".", ".."} or "/" in backup_name or "\\" in backup_name:
            raise InvalidArguments(
                f"Backup name '{backup_name}' must be a file name, not a path."
            )
        return cls(instance_name=instance_name, backup_name=backup_name)


@dataclass
class RestoreContext:
    """Collaborators and settings the coordinator works with."""

    bucket: str
    staging_root: Path
    storage: ObjectStorage
    lxc: LxcProvider
    console: Console
    chunk_size: int = DEFAULT_CHUNK_SIZE

    @classmethod
    def from_config(cls, config: AppConfig, console: Console) -> RestoreContext:
        """Build the context described by *config*."""
        return cls(
            bucket=config.storage.bucket,
            staging_root=config.staging_root,
            storage=ObjectStorage.from_config(config.storage),
            lxc=LxcProvider(lxc_bin=config.lxc.lxc_bin),
            console=console,
            chunk_size=config.transfer.chunk_size,
        )


@dataclass
class RestoreResult:
    """Summary of a completed restore."""

    instance: str
    backup: str
    bucket: str
    key: str
    archive_path: Path
    size_bytes: int
    phases: list[str] = field(default_factory=list)
    operations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "instance": self.instance,
            "backup": self.backup,
            "bucket": self.bucket,
            "key": self.key,
            "archive": str(self.archive_path),
            "size_bytes": self.size_bytes,
            "phases": list(self.phases),
            "operations": list(self.operations),
            "status": "restored",
        }


class RestoreCoordinator:
    """Sequence validation, download, import/start and cleanup."""

    def __init__(
        self,
        context: RestoreContext,
        *,
        status_factory: Callable[[Console, str], StatusUI] = StatusUI,
    ) -> None:
        """Bind the coordinator to *context*."""
        self.context = context
        self.phase = RestorePhase.VALIDATING
        self.history: list[RestorePhase] = []
        self._status_factory = status_factory

    def restore(
        self,
        instance: str | None,
        backup: str | None,
        *,
        op: OperationScope | None = None,
    ) -> RestoreResult:
        """Restore *backup* as *instance* and return the result.

        Raises the first :class:`~lxrestore.errors.RestoreError` that ended
        the restore. When an import failure is followed by a cleanup
        failure, the import error is raised with the cleanup error attached
        as a note.
        """
        self.history = []
        self._enter(RestorePhase.VALIDATING)
        try:
            request = RestoreRequest.build(instance, backup)
            _record(op, "request.validate", "success")
            self.context.lxc.check_instance(request.instance_name)
            _record(op, "instance.check", "success", detail=request.instance_name)

            self._enter(RestorePhase.FETCHING)
            handle, archive_path = self._fetch(request, op)
        except RestoreError:
            self._enter(RestorePhase.FAILED)
            raise

        result = RestoreResult(
            instance=request.instance_name,
            backup=request.backup_name,
            bucket=handle.bucket,
            key=handle.key,
            archive_path=archive_path,
            size_bytes=handle.size_bytes or 0,
        )

        self._enter(RestorePhase.IMPORTING)
        try:
            event = self._launch(request, archive_path, result, op)
        except BaseException as exc:
            self._enter(RestorePhase.CLEANUP)
            cleanup_error = self._cleanup(archive_path, op)
            if cleanup_error is not None:
                exc.add_note(str(cleanup_error))
            self._enter(RestorePhase.FAILED)
            raise

        self._enter(RestorePhase.CLEANUP)
        cleanup_error = self._cleanup(archive_path, op)

        if event.error is not None:
            self._enter(RestorePhase.FAILED)
            if cleanup_error is not None:
                event.error.add_note(str(cleanup_error))
            raise event.error
        if cleanup_error is not None:
            self._enter(RestorePhase.FAILED)
            raise cleanup_error

        self._enter(RestorePhase.DONE)
        result.phases = [phase.value for phase in self.history]
        return result

    # ------------------------------------------------------------------
    def _fetch(
        self,
        request: RestoreRequest,
        op: OperationScope | None,
    ) -> tuple[RemoteObjectHandle, Path]:
        context = self.context
        fetcher = ObjectFetcher(context.storage, chunk_size=context.chunk_size)
        handle = fetcher.resolve(
            RemoteObjectHandle.for_backup(
                context.bucket,
                request.instance_name,
                request.backup_name,
            )
        )
        size = handle.size_bytes or 0
        _record(
            op,
            "object.stat",
            "success",
            detail=handle.display_name,
            size_bytes=size,
            etag=handle.etag,
        )

        try:
            context.staging_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LocalWriteError(
                f"Failed to prepare staging directory {context.staging_root}: {exc}"
            ) from exc
        destination = context.staging_root / request.backup_name

        with TransferProgress(
            context.console,
            f"Downloading {request.backup_name}",
            size,
        ) as progress:
            archive_path = fetcher.fetch(handle, destination, on_progress=progress.update)
        _record(op, "object.fetch", "success", detail=str(archive_path), size_bytes=size)
        return handle, archive_path

    def _launch(
        self,
        request: RestoreRequest,
        archive_path: Path,
        result: RestoreResult,
        op: OperationScope | None,
    ) -> OrchestratorEvent:
        ui = self._status_factory(self.context.console, request.instance_name)
        orchestrator = ImportStartOrchestrator(
            self.context.lxc,
            archive_path,
            request.instance_name,
            on_step=ui.notify,
        )
        signal: queue.Queue[OrchestratorEvent] = queue.Queue(maxsize=1)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="lxrestore") as executor:
            ui_task = executor.submit(ui.run, signal)
            orchestrator_task = executor.submit(orchestrator.run, signal)
            event = ui_task.result()
            orchestrator_task.result()

        for operation, status in orchestrator.operations:
            result.operations.append(operation)
            detail = event.error.cause if status == "error" and event.error else None
            _record(op, f"lxc.{operation}", status, detail=detail)
        return event

    def _cleanup(self, archive_path: Path, op: OperationScope | None) -> CleanupError | None:
        try:
            archive_path.unlink()
        except OSError as exc:
            error = CleanupError(archive_path, str(exc))
            _record(op, "archive.remove", "error", detail=str(error))
            return error
        _record(op, "archive.remove", "success", detail=str(archive_path))
        return None

    def _enter(self, phase: RestorePhase) -> None:
        self.phase = phase
        self.history.append(phase)


def _record(
    op: OperationScope | None,
    name: str,
    status: str,
    *,
    detail: str | None = None,
    **extra: object,
) -> None:
    if op is not None:
        op.add_step(name, status=status, detail=detail, **extra)


__all__ = [
    "RestoreContext",
    "RestoreCoordinator",
    "RestorePhase",
    "RestoreRequest",
    "RestoreResult",
]

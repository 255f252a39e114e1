"""Structured operation logging for lxrestore.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects steps and a final result and, on exit, appends one JSON record to
``operations.jsonl`` plus a single human-readable line to ``lxrestore.log``.
Logging is best effort: when the directory cannot be created or a write
fails the logger disables itself instead of breaking the command.
"""
from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from . import __version__

LOGGER = logging.getLogger(__name__)

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "lxrestore.log"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Mutable record for a single command invocation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start a scope for *command*."""
        self.command = command
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.started_at = _now_iso()
        self._start = time.perf_counter()

    def add_step(self, name: str, *, status: str, detail: str | None = None, **extra: object) -> None:
        """Record a named step with its *status*."""
        step: dict[str, object] = {"name": name, "status": status, "at": _now_iso()}
        if detail is not None:
            step["detail"] = detail
        step.update(extra)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=(),
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[str] | None = None,
        rc: int | None = None,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed."""
        self._set_result(
            "error",
            message,
            changed=0,
            warnings=warnings,
            errors=list(errors) if errors else [message],
            context=context,
        )
        if rc is not None and self.result is not None:
            self.result["rc"] = rc

    def duration_ms(self) -> int:
        """Return the elapsed milliseconds since the scope started."""
        return int((time.perf_counter() - self._start) * 1000)

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int,
        warnings: Iterable[str],
        errors: Iterable[str],
        context: Mapping[str, object] | None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings),
            "errors": list(errors),
        }
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record persisted for this scope."""
        return {
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "context": {"lxrestore_version": __version__},
            "started_at": self.started_at,
            "finished_at": _now_iso(),
            "duration_ms": self.duration_ms(),
            "steps": _sanitize(self.steps),
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records under *logs_dir*."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare the log directory, disabling logging when unavailable."""
        self.logs_dir = logs_dir.expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self.logs_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Structured logging disabled, cannot create %s: %s", self.logs_dir, exc)
            self._enabled = False

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                # click/typer exits carry an exit_code; 0 means a clean exit.
                exit_code = getattr(exc, "exit_code", getattr(exc, "code", 1))
                if exit_code in (0, None):
                    scope.success("Operation completed.")
                else:
                    scope.error(str(exc) or type(exc).__name__, rc=exit_code)
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = scope.result or {}
        line = (
            f"{record['finished_at']} {scope.command} "
            f"{result.get('status', 'unknown')}: {result.get('message', '')}\n"
        )
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
            with self._human_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as exc:
            LOGGER.debug("Structured logging disabled after write failure: %s", exc)
            self._enabled = False
            return
        LOGGER.debug(line.rstrip())


__all__ = ["OperationScope", "StructuredLogger"]

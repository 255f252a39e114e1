"""LXC provider wrapping the ``lxc`` command line client."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from ..errors import ExternalToolError, InstanceCheckFailed


class LxcError(RuntimeError):
    """Raised when an ``lxc`` command cannot be run or exits non-zero."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        """Store the full *message* and the bare failure *detail*."""
        super().__init__(message)
        self.detail = detail or message


@dataclass(slots=True)
class LxcProvider:
    """Import and start instances through the ``lxc`` binary."""

    lxc_bin: str = "lxc"

    def check_instance(self, instance: str) -> None:
        """Ensure *instance* does not already exist.

        ``lxc info`` exits non-zero for unknown instances, which is the only
        state a restore may proceed from. Any other failure to query the
        client raises :class:`InstanceCheckFailed`.
        """
        try:
            result = self._lxc("info", instance, check=False)
        except LxcError as exc:
            raise InstanceCheckFailed(f"Unable to query instance '{instance}': {exc}") from exc
        if result.returncode == 0:
            raise InstanceCheckFailed(
                f"Instance '{instance}' already exists; delete or rename it before restoring."
            )
        stderr = (result.stderr or "").lower()
        if "not found" not in stderr:
            message = (result.stderr or "").strip() or f"exit {result.returncode}"
            raise InstanceCheckFailed(f"Unable to query instance '{instance}': {message}")

    def import_archive(self, archive_path: Path) -> None:
        """Import *archive_path* as a new instance."""
        try:
            self._lxc("import", str(archive_path))
        except LxcError as exc:
            raise ExternalToolError("import", exc.detail) from exc

    def start(self, instance: str) -> None:
        """Start the named *instance*."""
        try:
            self._lxc("start", instance)
        except LxcError as exc:
            raise ExternalToolError("start", exc.detail) from exc

    # ------------------------------------------------------------------
    def _lxc(
        self,
        command: str,
        *args: str,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        return self._run_command(
            [self.lxc_bin, command, *args],
            check=check,
            error_prefix=f"{self.lxc_bin} {command}",
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603, S607 - controlled command execution
                list(args),
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise LxcError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            message = (result.stderr or "").strip() or "no output"
            detail = f"exit {result.returncode}: {message}"
            raise LxcError(f"{error_prefix} failed ({detail})", detail=detail)
        return result


__all__ = ["LxcError", "LxcProvider"]

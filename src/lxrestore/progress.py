"""Download progress accounting and rendering."""
from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from .errors import TransferError


@dataclass
class ProgressState:
    """Byte counters for a single transfer.

    ``transferred_bytes`` never decreases and never exceeds ``total_bytes``.
    """

    total_bytes: int
    transferred_bytes: int = 0

    def advance(self, count: int) -> None:
        """Account for *count* additional bytes."""
        if count < 0:
            raise ValueError("Byte count must be non-negative.")
        updated = self.transferred_bytes + count
        if updated > self.total_bytes:
            raise TransferError(
                f"Received {updated} bytes but the object is only {self.total_bytes} bytes."
            )
        self.transferred_bytes = updated

    @property
    def complete(self) -> bool:
        """Return True once every expected byte has arrived."""
        return self.transferred_bytes == self.total_bytes


class TransferProgress:
    """Render a determinate progress bar for one download.

    ``update`` only records the new completed count; rich repaints from its
    own refresh thread so the copy loop never waits on the terminal.
    """

    def __init__(self, console: Console, description: str, total_bytes: int) -> None:
        """Prepare a bar labelled *description* for *total_bytes*."""
        self.description = description
        self.total_bytes = total_bytes
        self._progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            "[progress.percentage]{task.percentage:>3.0f}%",
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=False,
        )
        self._task: TaskID | None = None

    def __enter__(self) -> TransferProgress:
        """Start the live display."""
        self._progress.start()
        self._task = self._progress.add_task(self.description, total=self.total_bytes)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Stop the live display whether or not the copy succeeded."""
        self._progress.stop()

    def update(self, state: ProgressState) -> None:
        """Reflect *state* in the bar."""
        if self._task is None:
            return
        self._progress.update(self._task, completed=state.transferred_bytes)


__all__ = ["ProgressState", "TransferProgress"]

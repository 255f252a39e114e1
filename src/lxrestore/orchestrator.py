"""Background import/start sequence for a downloaded archive."""
from __future__ import annotations

import queue
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import ExternalToolError
from .providers.lxc import LxcProvider


class OrchestratorStep(str, Enum):
    """Progress of the import/start sequence."""

    PENDING = "pending"
    IMPORTING = "importing"
    STARTING = "starting"
    DONE = "done"
    FAILED = "failed"


_STEP_OPERATIONS = {
    OrchestratorStep.IMPORTING: "import",
    OrchestratorStep.STARTING: "start",
}


@dataclass(frozen=True)
class OrchestratorEvent:
    """Terminal outcome delivered to the status UI exactly once."""

    error: ExternalToolError | None = None

    @classmethod
    def success(cls) -> OrchestratorEvent:
        """Return the success event."""
        return cls()

    @classmethod
    def failure(cls, error: ExternalToolError) -> OrchestratorEvent:
        """Return a failure event carrying *error*."""
        return cls(error=error)

    @property
    def succeeded(self) -> bool:
        """Return True when both steps completed."""
        return self.error is None


StepListener = Callable[[OrchestratorStep], None]


class ImportStartOrchestrator:
    """Run ``lxc import`` followed by ``lxc start`` without rendering anything.

    ``start`` is only attempted once ``import`` succeeded. There is no retry
    and a half-imported instance is not rolled back.
    """

    def __init__(
        self,
        lxc: LxcProvider,
        archive_path: Path,
        instance: str,
        *,
        on_step: StepListener | None = None,
    ) -> None:
        """Prepare the sequence for *archive_path* and *instance*."""
        self.lxc = lxc
        self.archive_path = archive_path
        self.instance = instance
        self.step = OrchestratorStep.PENDING
        self.operations: list[tuple[str, str]] = []
        self._on_step = on_step

    def run(self, signal: queue.Queue[OrchestratorEvent]) -> OrchestratorEvent:
        """Execute both steps and publish the outcome on *signal*.

        *signal* holds a single event; publishing into a full queue raises
        :class:`queue.Full`.
        """
        try:
            self._advance(OrchestratorStep.IMPORTING)
            self.lxc.import_archive(self.archive_path)
            self.operations.append(("import", "success"))

            self._advance(OrchestratorStep.STARTING)
            self.lxc.start(self.instance)
            self.operations.append(("start", "success"))
        except ExternalToolError as exc:
            event = self._fail(exc)
        except Exception as exc:  # noqa: BLE001 - the UI must always be released
            event = self._fail(ExternalToolError(self._current_operation(), repr(exc)))
        else:
            self._advance(OrchestratorStep.DONE)
            event = OrchestratorEvent.success()
        signal.put_nowait(event)
        return event

    def _current_operation(self) -> str:
        return _STEP_OPERATIONS.get(self.step, "import")

    def _fail(self, error: ExternalToolError) -> OrchestratorEvent:
        self.operations.append((error.operation, "error"))
        self._advance(OrchestratorStep.FAILED)
        return OrchestratorEvent.failure(error)

    def _advance(self, step: OrchestratorStep) -> None:
        self.step = step
        if self._on_step is not None:
            self._on_step(step)


__all__ = [
    "ImportStartOrchestrator",
    "OrchestratorEvent",
    "OrchestratorStep",
]

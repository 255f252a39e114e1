"""Spinner shown while the instance is imported and started."""
from __future__ import annotations

import queue
from enum import Enum

from rich.console import Console

from .orchestrator import OrchestratorEvent, OrchestratorStep

_PHASE_TEXT = {
    OrchestratorStep.PENDING: "preparing",
    OrchestratorStep.IMPORTING: "importing archive",
    OrchestratorStep.STARTING: "starting instance",
    OrchestratorStep.DONE: "done",
    OrchestratorStep.FAILED: "failed",
}


class UIState(str, Enum):
    """Lifecycle of the status renderer."""

    RUNNING = "running"
    TERMINAL = "terminal"


class StatusUI:
    """Own the console while the orchestrator works in the background.

    Step notifications arrive through :meth:`notify` from any thread; only
    :meth:`run` touches the console. The first terminal event stops the
    spinner and nothing is rendered after that.
    """

    def __init__(
        self,
        console: Console,
        instance: str,
        *,
        message: str = "Launching instance ({instance}): {phase}",
        poll_interval: float = 0.1,
    ) -> None:
        """Bind the renderer to *console* for *instance*."""
        self.console = console
        self.instance = instance
        self.template = message
        self.poll_interval = poll_interval
        self.state = UIState.RUNNING
        self.transitions = 0
        self.event: OrchestratorEvent | None = None
        self._steps: queue.SimpleQueue[OrchestratorStep] = queue.SimpleQueue()

    def notify(self, step: OrchestratorStep) -> None:
        """Queue a step change for display."""
        self._steps.put(step)

    def message(self, step: OrchestratorStep) -> str:
        """Return the status line for *step*."""
        return self.template.format(instance=self.instance, phase=_PHASE_TEXT[step])

    def run(self, signal: queue.Queue[OrchestratorEvent]) -> OrchestratorEvent:
        """Render until *signal* delivers its event and return it."""
        if self.state is UIState.TERMINAL:
            raise RuntimeError("Status UI has already stopped rendering.")
        with self.console.status(self.message(OrchestratorStep.PENDING), spinner="dots") as status:
            while True:
                try:
                    event = signal.get(timeout=self.poll_interval)
                except queue.Empty:
                    latest = self._latest_step()
                    if latest is not None:
                        status.update(self.message(latest))
                    continue
                break
        self._terminate(event)
        if event.error is not None:
            self.console.print(
                f"[red]Launching instance ({self.instance}) failed during "
                f"{event.error.operation}.[/red]"
            )
        else:
            self.console.print(f"[green]Instance ({self.instance}) launched.[/green]")
        return event

    def _latest_step(self) -> OrchestratorStep | None:
        latest: OrchestratorStep | None = None
        while True:
            try:
                latest = self._steps.get_nowait()
            except queue.Empty:
                return latest

    def _terminate(self, event: OrchestratorEvent) -> None:
        self.event = event
        self.state = UIState.TERMINAL
        self.transitions += 1


__all__ = ["StatusUI", "UIState"]

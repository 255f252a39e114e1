"""Tests for the background import/start sequence."""
from __future__ import annotations

import queue
from pathlib import Path

import pytest

from conftest import FakeLxc
from lxrestore.orchestrator import ImportStartOrchestrator, OrchestratorEvent, OrchestratorStep


def _run(lxc: FakeLxc, tmp_path: Path) -> tuple[ImportStartOrchestrator, queue.Queue, list]:
    steps: list[OrchestratorStep] = []
    orchestrator = ImportStartOrchestrator(
        lxc,  # type: ignore[arg-type]
        tmp_path / "backup.tar.gz",
        "u2",
        on_step=steps.append,
    )
    signal: queue.Queue[OrchestratorEvent] = queue.Queue(maxsize=1)
    orchestrator.run(signal)
    return orchestrator, signal, steps


def test_success_imports_then_starts(tmp_path: Path) -> None:
    """Import runs first, start second, and a success event is published."""
    lxc = FakeLxc()

    orchestrator, signal, steps = _run(lxc, tmp_path)

    assert lxc.calls == [("import", str(tmp_path / "backup.tar.gz")), ("start", "u2")]
    assert steps == [OrchestratorStep.IMPORTING, OrchestratorStep.STARTING, OrchestratorStep.DONE]
    assert orchestrator.step is OrchestratorStep.DONE
    assert orchestrator.operations == [("import", "success"), ("start", "success")]
    assert signal.full()
    assert signal.get_nowait().succeeded


def test_import_failure_skips_start(tmp_path: Path) -> None:
    """start is never attempted when import fails."""
    lxc = FakeLxc(failures={"import": "exit 1: invalid backup"})

    orchestrator, signal, steps = _run(lxc, tmp_path)

    assert [call[0] for call in lxc.calls] == ["import"]
    assert steps[-1] is OrchestratorStep.FAILED
    event = signal.get_nowait()
    assert event.error is not None
    assert event.error.operation == "import"
    assert orchestrator.operations == [("import", "error")]


def test_start_failure_is_reported(tmp_path: Path) -> None:
    """A failing start is published after a successful import."""
    lxc = FakeLxc(failures={"start": "exit 1: no storage pool"})

    orchestrator, signal, _ = _run(lxc, tmp_path)

    event = signal.get_nowait()
    assert event.error is not None
    assert event.error.operation == "start"
    assert event.error.cause == "exit 1: no storage pool"
    assert orchestrator.operations == [("import", "success"), ("start", "error")]


def test_unexpected_exception_still_resolves_signal(tmp_path: Path) -> None:
    """Errors outside the lxc taxonomy are wrapped so the UI is released."""

    class ExplodingLxc(FakeLxc):
        def start(self, instance: str) -> None:
            raise RuntimeError("socket closed")

    orchestrator, signal, _ = _run(ExplodingLxc(), tmp_path)

    event = signal.get_nowait()
    assert event.error is not None
    assert event.error.operation == "start"
    assert "socket closed" in event.error.cause
    assert orchestrator.step is OrchestratorStep.FAILED


def test_signal_is_resolved_once(tmp_path: Path) -> None:
    """The outcome cannot be published a second time."""
    orchestrator, signal, _ = _run(FakeLxc(), tmp_path)

    with pytest.raises(queue.Full):
        orchestrator.run(signal)

# src/rackforge/observers/console.py
import typer

from .events import BaseEvent

_SHOWN = {"RunStarted", "PhaseStarted", "PhaseCompleted", "PhaseFailed", "RunSummary",
          "TeardownStarted", "NodeResetResult", "TeardownSummary"}


class ConsoleObserver:
    """Phase-level progress on the terminal; per-step events go to the log file only."""

    def notify(self, event: BaseEvent) -> None:
        k = event.__class__.__name__
        if k not in _SHOWN:
            return
        d = event.dict()
        data = ", ".join(f"{x}={y}" for x, y in d.items() if x not in ("ts", "run_id", "cluster"))
        typer.echo(f"[{d['ts']}] {k} cluster={d['cluster']} {data}")

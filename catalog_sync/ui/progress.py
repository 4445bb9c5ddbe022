"""Terminal progress rendering for sync runs, driven by pipeline events."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.text import Text

from ..events import ProgressEvent


@dataclass
class SourceProgressState:
    found: int = 0
    pages: int = 0
    failed: int = 0
    status: str = "waiting…"
    finished: bool = False


class PageRateColumn(ProgressColumn):
    """Pages fetched per second for a source row."""

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        return Text(f"{speed:.1f} page/s", style="progress.percentage")


class SyncProgress:
    """Rich progress display with one row per source.

    Implements the pipeline's observer interface, so an instance can be
    handed straight to :class:`~catalog_sync.orchestrator.SyncOrchestrator`.
    Falls back to silence when stdout is not a terminal.
    """

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        if enabled and not self.console.is_terminal:
            self.enabled = False
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[source]:<18}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green", pulse_style="cyan"),
            TimeElapsedColumn(),
            PageRateColumn(),
            TextColumn("[green]✓{task.fields[found]:>5}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>3}", justify="right"),
            TextColumn("[dim]{task.fields[status]}", justify="left"),
            console=self.console,
            transient=True,
            refresh_per_second=12,
            expand=True,
            disable=not self.enabled,
            auto_refresh=True,
        )
        self._entered = False
        self._tasks: dict[str, TaskID] = {}
        self.states: dict[str, SourceProgressState] = {}
        self.messages: list[str] = []

    def __enter__(self) -> "SyncProgress":
        if self.enabled and not self._entered:
            try:
                self._progress.__enter__()
                self._entered = True
            except LiveError:
                self.enabled = False
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._entered:
            self._progress.__exit__(exc_type, exc, tb)
            self._entered = False

    # ------------------------------------------------------------------
    # Observer interface
    # ------------------------------------------------------------------
    def notify(self, event: ProgressEvent) -> None:
        if event.message:
            self.messages.append(event.message)
        if event.source is None:
            return
        state = self.states.setdefault(event.source, SourceProgressState())
        if event.kind == "source_started":
            state.status = "fetching…"
        elif event.kind == "page_fetched":
            state.pages += 1
            state.found += event.found or 0
            state.status = f"page {event.page}"
        elif event.kind in {"page_failed", "provider_failed"}:
            state.failed += 1
            state.status = event.message
        elif event.kind == "provider_listed":
            state.found += event.found or 0
        elif event.kind == "source_finished":
            state.found = event.found if event.found is not None else state.found
            state.status = "done"
            state.finished = True
        elif event.kind == "source_failed":
            state.failed += 1
            state.status = "failed"
            state.finished = True
        self._render(event.source, state, advance=event.kind == "page_fetched")

    def _render(self, source: str, state: SourceProgressState, advance: bool) -> None:
        if not self.enabled:
            return
        task_id = self._tasks.get(source)
        if task_id is None:
            task_id = self._progress.add_task(
                source, total=None, source=source, found=0, failed=0, status=state.status
            )
            self._tasks[source] = task_id
        fields = {"found": state.found, "failed": state.failed, "status": state.status[:50]}
        if state.finished:
            self._progress.update(task_id, total=max(state.pages, 1), completed=max(state.pages, 1), **fields)
        else:
            self._progress.update(task_id, advance=1 if advance else 0, **fields)


__all__ = ["PageRateColumn", "SourceProgressState", "SyncProgress"]

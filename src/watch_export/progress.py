"""Rich console progress reporting for enrichment runs."""

from __future__ import annotations

import time
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .processor import NullProgressObserver

__all__ = ["NullProgressObserver", "RichProgressObserver"]


class RichProgressObserver:
    """Drive a :class:`rich.progress.Progress` bar from processor notifications."""

    def __init__(self, console: Optional[Console] = None, *, transient: bool = False) -> None:
        self.console = console or Console(stderr=True)
        self._progress = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=transient,
        )
        self._task_id: Optional[TaskID] = None
        self._started_at = 0.0

    def started(self, total: int) -> None:
        self._started_at = time.perf_counter()
        self._progress.start()
        self._task_id = self._progress.add_task("Enriching", total=max(1, total))

    def item_started(self, title: str, remaining: int) -> None:
        if self._task_id is None:
            return
        self._progress.update(
            self._task_id,
            description=f"Processing: {escape(title)} ({remaining} remaining)",
        )

    def item_finished(self, title: str, ok: bool) -> None:
        if self._task_id is None:
            return
        self._progress.advance(self._task_id)
        if not ok:
            self._progress.console.print(f"[red]Failed:[/] {escape(title)}")

    def completed(self, processed: int, failed: int) -> None:
        self._progress.stop()
        self._task_id = None
        elapsed = time.perf_counter() - self._started_at
        self.console.print(f"[bold green]Completed in {elapsed:.2f} seconds[/]")
        summary = f"{processed} resolved"
        if failed:
            summary += f", [red]{failed} failed[/]"
        self.console.print(summary)

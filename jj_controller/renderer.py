"""
Progress bar rendering for watched builds.

The render coordinator is the only code that touches the progress widget.
Producers (the poll loop, the progress ticker, the keystroke watcher) send
RenderUpdate messages to its queue and it applies them in FIFO order.
"""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)

from jj_common.models import RenderUpdate

logger = logging.getLogger(__name__)

BAR_TOTAL = 100
FAILURE_MIN_LINES = 5
FAILURE_LINES = 10


class ProgressBar:
    """
    Progress widget backed by a rich Progress display.

    The widget is refreshed manually after each change so nothing redraws
    while the coordinator is paused for a prompt.
    """

    def __init__(self, console: Console | None = None, width: int = 20):
        """
        Initialize the widget.

        Args:
            console: Console to draw on (default: a new stdout console)
            width: Bar width in characters
        """
        self.console = console or Console()
        self._progress = Progress(
            TextColumn("{task.description}"),
            TaskProgressColumn(),
            BarColumn(bar_width=width, complete_style="green"),
            TimeRemainingColumn(),
            console=self.console,
            auto_refresh=False,
        )
        self._task: TaskID | None = None
        self._lines = 1
        self._lines_lock = threading.Lock()
        self.completed = 0

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task("[white]running...", total=BAR_TOTAL)
        self.tick()

    def tick(self) -> None:
        """Advance one unit; the bar never fills before ``done()``."""
        if self._task is None or self.completed >= BAR_TOTAL - 1:
            return
        self.completed += 1
        self._progress.update(self._task, completed=self.completed)
        self._progress.refresh()

    def interrupt(self, text: str) -> None:
        """Print text above the bar."""
        self._progress.console.print(text, markup=False, highlight=False)
        self._progress.refresh()

    @property
    def lines(self) -> int:
        """Number of terminal lines allotted to the bar region."""
        with self._lines_lock:
            return self._lines

    def set_lines(self, lines: int) -> None:
        with self._lines_lock:
            self._lines = max(1, lines)

    def set_format(self, text: str) -> None:
        if self._task is not None:
            self._progress.update(self._task, description=text)

    def done(self) -> None:
        """Fill the bar and stop the live display."""
        if self._task is not None:
            self.completed = BAR_TOTAL
            self._progress.update(self._task, completed=BAR_TOTAL)
        self._progress.refresh()
        self._progress.stop()

    def stop(self) -> None:
        self._progress.stop()


class RenderCoordinator:
    """
    Single consumer of render updates for one watched build.

    The coordinator exits after applying a ``finish`` update. If its task
    is cancelled first, the widget is stopped so the terminal is left in a
    clean state.
    """

    def __init__(
        self,
        bar: ProgressBar,
        console_url: str,
        console: Console | None = None,
        lock: asyncio.Lock | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            bar: Widget to draw on; owned by this coordinator from now on
            console_url: Build console URL shown in the final summary
            console: Console for the failure marker (default: the bar's)
            lock: Render lock shared with whoever needs to pause rendering
        """
        self.bar = bar
        self.console_url = console_url
        self.console = console or bar.console
        self.lock = lock or asyncio.Lock()
        self.queue: asyncio.Queue[RenderUpdate] = asyncio.Queue()
        self.final: RenderUpdate | None = None
        self.closing = False

    def _accept(self, update: RenderUpdate) -> bool:
        # finish is the last update ever queued
        if self.closing:
            logger.debug(f"Dropping {update.kind} update sent after finish")
            return False
        if update.kind == RenderUpdate.FINISH:
            self.closing = True
        return True

    async def send(self, update: RenderUpdate) -> None:
        if self._accept(update):
            await self.queue.put(update)

    def send_nowait(self, update: RenderUpdate) -> None:
        if self._accept(update):
            self.queue.put_nowait(update)

    @asynccontextmanager
    async def paused(self) -> AsyncIterator[None]:
        """Hold off all widget updates while the block runs."""
        async with self.lock:
            yield

    async def run(self) -> None:
        """Apply updates until ``finish`` arrives."""
        async with self.lock:
            self.bar.start()
        try:
            while True:
                update = await self.queue.get()
                async with self.lock:
                    if self._apply(update):
                        return
        finally:
            if self.final is None:
                logger.debug("Render coordinator closed before finish")
                self.bar.stop()

    def _apply(self, update: RenderUpdate) -> bool:
        """Apply one update; returns True once the bar is finished."""
        if update.kind == RenderUpdate.KEYSTROKE:
            if update.text == "\n":
                self.bar.set_lines(self.bar.lines + 1)
        elif update.kind == RenderUpdate.TICK:
            self.bar.tick()
        elif update.kind == RenderUpdate.MESSAGE:
            self.bar.interrupt(update.text)
        elif update.kind == RenderUpdate.FINISH:
            self._finish(update)
            return True
        else:
            logger.warning(f"Ignoring unknown render update: {update.kind}")
        return False

    def _finish(self, update: RenderUpdate) -> None:
        if update.failed and self.bar.lines < FAILURE_MIN_LINES:
            while self.bar.lines < FAILURE_LINES:
                self.bar.set_lines(self.bar.lines + 1)

        self.bar.set_format(f"{self.console_url}: {update.text}")
        self.bar.done()
        self.final = update
        if update.failed:
            self.console.print("[red]failed[/red]")

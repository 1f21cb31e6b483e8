"""
Unit tests for jj_controller.renderer module.

The coordinator is tested against a recording fake widget; the rich-backed
ProgressBar is exercised on an in-memory console.
"""

import asyncio
import io

import pytest
from rich.console import Console

from jj_common.models import RESULT_FAILED, RESULT_SUCCESS, RenderUpdate
from jj_controller.renderer import ProgressBar, RenderCoordinator


class FakeBar:
    """Records widget calls in order."""

    def __init__(self):
        self.console = Console(file=io.StringIO())
        self.calls = []
        self.lines = 1

    def start(self):
        self.calls.append(("start",))

    def tick(self):
        self.calls.append(("tick",))

    def interrupt(self, text):
        self.calls.append(("interrupt", text))

    def set_lines(self, lines):
        self.lines = lines

    def set_format(self, text):
        self.calls.append(("format", text))

    def done(self):
        self.calls.append(("done",))

    def stop(self):
        self.calls.append(("stop",))


@pytest.fixture
def bar():
    return FakeBar()


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def coordinator(bar, output):
    return RenderCoordinator(
        bar,
        "http://jenkins/job/deploy-api/7/console",
        console=Console(file=output, force_terminal=False),
    )


class TestRenderCoordinator:
    """Test suite for RenderCoordinator class."""

    @pytest.mark.asyncio
    async def test_applies_updates_in_order(self, coordinator, bar):
        """Test that updates are applied FIFO and finish ends the loop."""
        for update in (
            RenderUpdate.message("line 1"),
            RenderUpdate.tick(),
            RenderUpdate.message("line 2"),
            RenderUpdate.finish(RESULT_SUCCESS, "SUCCESS"),
        ):
            coordinator.send_nowait(update)

        await asyncio.wait_for(coordinator.run(), timeout=1)

        assert bar.calls == [
            ("start",),
            ("interrupt", "line 1"),
            ("tick",),
            ("interrupt", "line 2"),
            ("format", "http://jenkins/job/deploy-api/7/console: SUCCESS"),
            ("done",),
        ]
        assert coordinator.final.result == RESULT_SUCCESS

    @pytest.mark.asyncio
    async def test_failure_grows_lines_and_marks_failed(self, coordinator, bar, output):
        """Test that a failed finish enlarges a small bar region and prints failed."""
        coordinator.send_nowait(RenderUpdate.finish(RESULT_FAILED, "FAILURE"))

        await asyncio.wait_for(coordinator.run(), timeout=1)

        assert bar.lines == 10
        assert "failed" in output.getvalue()

    @pytest.mark.asyncio
    async def test_failure_keeps_large_region(self, coordinator, bar):
        """Test that a region of five or more lines is left alone on failure."""
        bar.lines = 6
        coordinator.send_nowait(RenderUpdate.finish(RESULT_FAILED, "FAILURE"))

        await asyncio.wait_for(coordinator.run(), timeout=1)

        assert bar.lines == 6

    @pytest.mark.asyncio
    async def test_newline_keystroke_adds_line(self, coordinator, bar):
        """Test that only newline keystrokes grow the bar region."""
        coordinator.send_nowait(RenderUpdate.keystroke("x"))
        coordinator.send_nowait(RenderUpdate.keystroke("\n"))
        coordinator.send_nowait(RenderUpdate.keystroke("\n"))
        coordinator.send_nowait(RenderUpdate.finish(RESULT_SUCCESS, "SUCCESS"))

        await asyncio.wait_for(coordinator.run(), timeout=1)

        assert bar.lines == 3

    @pytest.mark.asyncio
    async def test_updates_after_finish_are_dropped(self, coordinator, bar):
        """Test that a late keystroke or tick cannot be queued behind finish."""
        coordinator.send_nowait(RenderUpdate.finish(RESULT_SUCCESS, "SUCCESS"))
        coordinator.send_nowait(RenderUpdate.keystroke("\n"))
        await coordinator.send(RenderUpdate.tick())

        assert coordinator.queue.qsize() == 1

        await asyncio.wait_for(coordinator.run(), timeout=1)

        assert coordinator.queue.empty()
        assert bar.lines == 1
        assert bar.calls[-1] == ("done",)

    @pytest.mark.asyncio
    async def test_cancelled_before_finish_stops_bar(self, coordinator, bar):
        """Test that cancelling the coordinator leaves the widget stopped."""
        task = asyncio.create_task(coordinator.run())
        await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert bar.calls[-1] == ("stop",)
        assert coordinator.final is None

    @pytest.mark.asyncio
    async def test_paused_blocks_updates(self, coordinator, bar):
        """Test that no update is applied while rendering is paused."""
        task = asyncio.create_task(coordinator.run())
        await asyncio.sleep(0.01)

        async with coordinator.paused():
            coordinator.send_nowait(RenderUpdate.message("held"))
            await asyncio.sleep(0.01)
            assert ("interrupt", "held") not in bar.calls

        coordinator.send_nowait(RenderUpdate.finish(RESULT_SUCCESS, "SUCCESS"))
        await asyncio.wait_for(task, timeout=1)
        assert ("interrupt", "held") in bar.calls


class TestProgressBar:
    """Test suite for the rich-backed ProgressBar."""

    def test_tick_stops_below_total(self):
        """Test that ticking never fills the bar before done()."""
        bar = ProgressBar(Console(file=io.StringIO()))
        bar.start()
        for _ in range(150):
            bar.tick()

        assert bar.completed == 99

        bar.done()
        assert bar.completed == 100

    def test_lines_never_below_one(self):
        bar = ProgressBar(Console(file=io.StringIO()))
        bar.set_lines(0)

        assert bar.lines == 1

    def test_interrupt_prints_text(self):
        """Test that messages are printed verbatim above the bar."""
        output = io.StringIO()
        bar = ProgressBar(Console(file=output))
        bar.start()
        bar.interrupt("[not markup] step 1")
        bar.done()

        assert "[not markup] step 1" in output.getvalue()

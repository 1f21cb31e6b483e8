"""
Build watch state machine.

This module follows one Jenkins build from its queue entry to a terminal
result: it waits for an executor, polls build status, streams console
output to the render coordinator under the cursor protocol and, after a
successful build, runs the post-deployment check.

Per watched build, the render coordinator and the progress ticker run in
an asyncio.TaskGroup owned by ``BuildWatcher.watch`` and are torn down as
a unit when the watch ends, on any path.
"""

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable, Iterable

from rich.console import Console

from jj_client.client import JenkinsClient, JenkinsError
from jj_client.config import WatchSettings
from jj_common.console import normalize_console
from jj_common.models import (
    INITIAL_CURSOR,
    RESULT_FAILED,
    RESULT_SUCCESS,
    BuildInfo,
    ConsoleBatch,
    Cursor,
    ExecutionSession,
    RenderUpdate,
)
from jj_common.progress import ProgressEstimator

from .kube_manager import DeploymentChecker, KubeManager
from .renderer import ProgressBar, RenderCoordinator
from .stdin import InputMultiplexer

logger = logging.getLogger(__name__)

VERBOSE_GROUP_SIZE = 3

PostCheck = Callable[[str], Awaitable[None]]
SkipPredicate = Callable[[str], bool]


class WatchState(enum.Enum):
    QUEUED = "queued"
    WAITING_FOR_EXECUTOR = "waiting_for_executor"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BuildFailedError(RuntimeError):
    """A watched build ended with anything other than SUCCESS."""

    def __init__(self, job_name: str, number: int, result: str):
        super().__init__(f"{job_name} #{number} finished with status {result}")
        self.job_name = job_name
        self.number = number
        self.result = result


def marker_predicate(markers: Iterable[str]) -> SkipPredicate:
    """Build a predicate matching text that contains any of ``markers``."""
    markers = tuple(m for m in markers if m)

    def matches(text: str) -> bool:
        return any(marker in text for marker in markers)

    return matches


class BuildWatcher:
    """
    Watches builds for one runner.

    The watcher is the only writer of the session's job name and build
    number while a build is being followed; the cancellation controller
    reads them.
    """

    queue_poll_interval = 0.1
    poll_interval = 0.01
    tick_interval = 0.1
    line_pace = 0.1
    drain_pace = 0.001

    def __init__(
        self,
        client: JenkinsClient,
        session: ExecutionSession,
        settings: WatchSettings | None = None,
        console: Console | None = None,
        input_mux: InputMultiplexer | None = None,
        render_lock: asyncio.Lock | None = None,
        post_check: PostCheck | None = None,
        skip_check: SkipPredicate | None = None,
        bar_factory: Callable[[Console], ProgressBar] = ProgressBar,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the watcher.

        Args:
            client: Jenkins API client
            session: Session shared with the cancellation controller
            settings: Watch tuning; defaults apply when omitted
            console: Console for status lines and the progress bar
            input_mux: Source of keystrokes that grow the bar's line allotment
            render_lock: Lock shared with the cancellation controller
            post_check: Coroutine run after a successful build; defaults to
                        the kubectl deployment check
            skip_check: Predicate over the job name and console lines; a
                        match skips the post check
            bar_factory: Builds the progress widget for each watch
            clock: Monotonic clock in seconds
        """
        self.client = client
        self.session = session
        self.settings = settings or WatchSettings()
        self.console = console or Console()
        self.input_mux = input_mux
        self.render_lock = render_lock or asyncio.Lock()
        self.bar_factory = bar_factory
        self.clock = clock
        self.skip_check = skip_check or marker_predicate(
            self.settings.skip_check_markers
        )
        if post_check is None:
            checker = DeploymentChecker(
                KubeManager(self.settings.namespace, self.settings.kubectl_timeout),
                console=self.console,
                timeout=self.settings.deploy_check_timeout,
            )
            post_check = checker.check
        self.post_check = post_check

        self.state = WatchState.QUEUED
        self._skip_post_check = False
        self._coordinator: RenderCoordinator | None = None
        self._ticker: asyncio.Task | None = None

    async def _call(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    async def wait_for_executor(self, job_name: str, queue_id: int) -> int:
        """
        Wait until a queue entry has been assigned an executor.

        Args:
            job_name: Job the queue entry belongs to
            queue_id: Queue item id

        Returns:
            Build number of the started build

        Raises:
            BuildFailedError: If the queue entry was cancelled
            JenkinsError: If the queue cannot be read
        """
        self.state = WatchState.WAITING_FOR_EXECUTOR
        self.session.job_name = job_name
        self.session.queue_id = queue_id

        informed = False
        while True:
            item = await self._call(self.client.get_queue_item, queue_id)
            if item.has_executor:
                self.session.build_number = item.executable_number
                logger.info(
                    f"Queue item {queue_id} started as {job_name} #{item.executable_number}"
                )
                return item.executable_number
            if item.cancelled:
                self.state = WatchState.FAILED
                raise BuildFailedError(job_name, 0, "CANCELLED")
            if not informed:
                self.console.print("waiting for next available executor..  ")
                informed = True
            await asyncio.sleep(self.queue_poll_interval)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    async def watch(self, job_name: str, number: int) -> BuildInfo:
        """
        Follow a build until it finishes.

        Args:
            job_name: Job name
            number: Build number

        Returns:
            Final build info of a successful build

        Raises:
            BuildFailedError: If the build failed or could not be polled
                              within the failure budget
        """
        self.state = WatchState.BUILDING
        self.session.job_name = job_name
        self.session.build_number = number
        self._skip_post_check = self.skip_check(job_name)

        reference = await self._call(self.client.get_last_successful_duration, job_name)
        estimator = ProgressEstimator(reference)
        coordinator = RenderCoordinator(
            self.bar_factory(self.console),
            self.client.console_url(job_name, number),
            console=self.console,
            lock=self.render_lock,
        )
        self._coordinator = coordinator
        start = self.clock()

        build: BuildInfo | None = None
        failure: BuildFailedError | None = None
        self._attach_keys(coordinator)
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(coordinator.run())
                self._ticker = tg.create_task(self._tick(coordinator, estimator, start))
                try:
                    build = await self._poll(job_name, number, coordinator)
                except BuildFailedError as e:
                    failure = e
                finally:
                    self._ticker.cancel()
        finally:
            self._detach_keys()
            self._ticker = None
            self._coordinator = None

        if failure is not None:
            raise failure

        if self.settings.deploy_check and not self._skip_post_check:
            self.console.print("\n🔍 Checking Kubernetes deployment status...")
            try:
                await self.post_check(job_name)
            except Exception as e:
                logger.warning(f"Post-deployment check for {job_name} failed: {e}")
                self.console.print(f"⚠️ Deployment check failed: {e}")
        return build

    async def _tick(
        self, coordinator: RenderCoordinator, estimator: ProgressEstimator, start: float
    ) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            elapsed_ms = (self.clock() - start) * 1000
            for _ in range(estimator.advance(elapsed_ms)):
                await coordinator.send(RenderUpdate.tick())

    async def _poll(
        self, job_name: str, number: int, coordinator: RenderCoordinator
    ) -> BuildInfo:
        cursor: Cursor = INITIAL_CURSOR
        failing_since: float | None = None

        while True:
            build: BuildInfo | None = None
            try:
                build = await self._call(self.client.get_build_info, job_name, number)
                failing_since = None
            except JenkinsError as e:
                now = self.clock()
                if failing_since is None:
                    failing_since = now
                logger.debug(f"Build info poll for {job_name} #{number} failed: {e}")
                if now - failing_since > self.settings.poll_failure_budget:
                    logger.error(
                        f"Giving up on {job_name} #{number} after "
                        f"{now - failing_since:.1f}s of failed polls"
                    )
                    await self._finish(coordinator, RESULT_FAILED, "failed")
                    raise BuildFailedError(job_name, number, "failed") from e

            if build is not None and not build.building and build.result:
                if build.result == RESULT_SUCCESS:
                    while True:
                        batch = await self.drain(
                            job_name, number, cursor, coordinator, self.drain_pace
                        )
                        if not batch.advanced:
                            break
                        cursor = batch.cursor
                    self.state = WatchState.SUCCEEDED
                    await self._finish(coordinator, RESULT_SUCCESS, build.result)
                    return build

                self.state = WatchState.FAILED
                await self._finish(coordinator, RESULT_FAILED, build.result)
                raise BuildFailedError(job_name, number, build.result)

            batch = await self.drain(job_name, number, cursor, coordinator, self.line_pace)
            if batch.advanced:
                cursor = batch.cursor
            else:
                await asyncio.sleep(self.poll_interval)

    async def drain(
        self,
        job_name: str,
        number: int,
        cursor: Cursor,
        coordinator: RenderCoordinator,
        pace: float,
    ) -> ConsoleBatch:
        """
        Fetch, normalize and forward one console batch.

        Fetch errors leave the cursor where it was; the next poll cycle
        retries.

        Args:
            job_name: Job name
            number: Build number
            cursor: Cursor from the previous batch
            coordinator: Receiver of the console lines
            pace: Seconds to wait after each forwarded message

        Returns:
            The batch; ``advanced`` is False when there was no new data
        """
        try:
            raw, next_cursor = await self._call(
                self.client.fetch_console, job_name, number, cursor
            )
        except JenkinsError as e:
            logger.debug(f"Console fetch for {job_name} #{number} failed: {e}")
            return ConsoleBatch(lines=[], cursor=cursor, advanced=False)

        if next_cursor == cursor:
            return ConsoleBatch(lines=[], cursor=cursor, advanced=False)

        lines = normalize_console(raw)
        if not self._skip_post_check:
            self._skip_post_check = any(self.skip_check(line.strip()) for line in lines)

        group = VERBOSE_GROUP_SIZE if self.settings.verbose else 1
        for i in range(0, len(lines), group):
            await coordinator.send(RenderUpdate.message("\n".join(lines[i : i + group])))
            await asyncio.sleep(pace)
        return ConsoleBatch(lines=lines, cursor=next_cursor, advanced=True)

    async def _finish(
        self, coordinator: RenderCoordinator, result: str, summary: str
    ) -> None:
        # Nothing may be queued after the finish update.
        if self._ticker is not None:
            self._ticker.cancel()
        self._detach_keys()
        await coordinator.send(RenderUpdate.finish(result, summary))

    # ------------------------------------------------------------------
    # Keystrokes
    # ------------------------------------------------------------------

    def _attach_keys(self, coordinator: RenderCoordinator) -> None:
        if self.input_mux is None:
            return
        loop = asyncio.get_running_loop()

        def on_key(key: str) -> None:
            loop.call_soon_threadsafe(
                coordinator.send_nowait, RenderUpdate.keystroke(key)
            )

        self.input_mux.attach_keys(on_key)

    def _detach_keys(self) -> None:
        if self.input_mux is not None:
            self.input_mux.detach_keys()

"""
Job runs and downstream chains.

A run triggers a job, watches it to completion and then watches each of
its declared downstream projects in order. Jenkins starts downstream
builds on its own, so each child build is located by its cause: first
among the child's recent builds, then in the queue.
"""

import asyncio
import logging
from dataclasses import dataclass

from rich.console import Console

from jj_client.client import JenkinsClient, JenkinsError, job_path
from jj_client.config import WatchSettings
from jj_common.models import BuildInfo, ChainLink, ExecutionSession, JobInfo

from .cancellation import CancellationController, CancellationOutcome
from .stdin import InputMultiplexer
from .watcher import BuildFailedError, BuildWatcher

logger = logging.getLogger(__name__)


@dataclass
class RunOutcome:
    """Result of a run: success, a failed build, or a user cancellation."""

    success: bool
    failed_job: str | None = None
    result: str | None = None
    cancellation: CancellationOutcome | None = None

    @property
    def cancelled(self) -> bool:
        return self.cancellation is not None


class DownstreamWalker:
    """Finds and watches the downstream builds started by a parent build."""

    history_depth = 6
    retry_interval = 0.25

    def __init__(
        self, client: JenkinsClient, watcher: BuildWatcher, session: ExecutionSession
    ):
        self.client = client
        self.watcher = watcher
        self.session = session

    async def find_in_builds(self, link: ChainLink) -> BuildInfo | None:
        """
        Look for the child build among the child's most recent builds.

        Builds that cannot be read are skipped.

        Raises:
            JobNotFoundError: If the child job does not exist
        """
        job = await asyncio.to_thread(self.client.get_job_info, link.child_name)
        for offset in range(self.history_depth - 1, -1, -1):
            number = job.last_build_number - offset
            if number <= 0:
                continue
            try:
                build = await asyncio.to_thread(
                    self.client.get_build_info, link.child_name, number
                )
            except JenkinsError as e:
                logger.debug(f"Skipping {link.child_name} #{number}: {e}")
                continue
            if build.caused_by(link.parent_name, link.parent_build):
                return build
        return None

    async def find_in_queue(self, link: ChainLink) -> int | None:
        """Queue id of the child's queue entry, if it is still queued."""
        items = await asyncio.to_thread(self.client.list_queue)
        for item in items:
            if item.task_name == link.child_name and item.caused_by(
                link.parent_name, link.parent_build
            ):
                return item.id
        return None

    async def watch_child(self, link: ChainLink) -> BuildInfo:
        """
        Wait for the child build to appear, then watch it.

        Raises:
            BuildFailedError: If the child build did not succeed
        """
        logger.info(
            f"Looking for {link.child_name} started by "
            f"{link.parent_name} #{link.parent_build}"
        )
        while True:
            # The session names the child while it is being located, so an
            # interrupt can still stop the run.
            self.session.job_name = link.child_name

            build = await self.find_in_builds(link)
            if build is not None:
                return await self.watcher.watch(link.child_name, build.number)

            queue_id = await self.find_in_queue(link)
            if queue_id is not None:
                number = await self.watcher.wait_for_executor(link.child_name, queue_id)
                return await self.watcher.watch(link.child_name, number)

            await asyncio.sleep(self.retry_interval)

    async def walk(
        self, parent_name: str, parent_build: int, downstream: list[str]
    ) -> list[BuildInfo]:
        """
        Watch each downstream project in order.

        Returns:
            The watched child builds

        Raises:
            BuildFailedError: At the first child build that did not succeed
        """
        builds = []
        for child in downstream:
            link = ChainLink(parent_name, parent_build, child)
            builds.append(await self.watch_child(link))
            self.session.reset()
        return builds


class JobRunner:
    """
    Runs one job and its downstream chain under interactive cancellation.

    The chain and the cancellation controller race each other; whichever
    finishes first decides the outcome and the other is torn down.
    """

    status_pause = 0.2

    def __init__(
        self,
        client: JenkinsClient,
        settings: WatchSettings | None = None,
        console: Console | None = None,
        input_mux: InputMultiplexer | None = None,
        session: ExecutionSession | None = None,
        watcher: BuildWatcher | None = None,
        canceller: CancellationController | None = None,
    ):
        """
        Initialize the runner.

        Args:
            client: Jenkins API client
            settings: Watch tuning
            console: Console for all user-facing output
            input_mux: Terminal input shared by keystrokes and prompts
            session: Session shared between watcher and canceller
            watcher: Build watcher (built from the other arguments when omitted)
            canceller: Cancellation controller (likewise)
        """
        self.client = client
        self.settings = settings or WatchSettings()
        self.console = console or Console()
        self.input_mux = input_mux or InputMultiplexer()
        self.session = session or ExecutionSession()
        self.watcher = watcher or BuildWatcher(
            client,
            self.session,
            settings=self.settings,
            console=self.console,
            input_mux=self.input_mux,
        )
        self.canceller = canceller or CancellationController(
            client,
            self.session,
            self.input_mux,
            console=self.console,
            render_lock=self.watcher.render_lock,
        )
        self.walker = DownstreamWalker(client, self.watcher, self.session)

    async def announce(self, job: JobInfo, environment: str) -> None:
        """Print where the job will run before it is triggered."""
        self.console.print(f"Job will be started in the [bold]{environment}[/bold] environment")
        await asyncio.sleep(self.status_pause)
        self.console.print(f"Link: {job.url or self.client.url(job_path(job.name))}")
        await asyncio.sleep(self.status_pause)

    async def run(self, job: JobInfo, parameters: dict[str, str]) -> RunOutcome:
        """
        Trigger ``job`` and watch it and its downstream chain.

        Args:
            job: Job metadata, including the downstream projects
            parameters: Build parameters

        Returns:
            How the run ended

        Raises:
            JenkinsError: If the job cannot be triggered or the queue read
        """
        self.input_mux.start()
        self.canceller.install()
        chain = asyncio.create_task(self._run_chain(job, parameters))
        listener = asyncio.create_task(self.canceller.listen())
        try:
            done, _ = await asyncio.wait(
                {chain, listener}, return_when=asyncio.FIRST_COMPLETED
            )
            if chain in done:
                return chain.result()

            outcome = listener.result()
            chain.cancel()
            await asyncio.gather(chain, return_exceptions=True)
            logger.info(f"Run of {job.name} stopped by user: {outcome.message}")
            return RunOutcome(success=False, cancellation=outcome)
        finally:
            for task in (chain, listener):
                task.cancel()
            await asyncio.gather(chain, listener, return_exceptions=True)
            self.canceller.uninstall()
            self.session.reset()

    async def _run_chain(self, job: JobInfo, parameters: dict[str, str]) -> RunOutcome:
        queue_id = await asyncio.to_thread(self.client.trigger_build, job.name, parameters)
        self.session.job_name = job.name
        self.session.queue_id = queue_id

        try:
            number = await self.watcher.wait_for_executor(job.name, queue_id)
            await self.watcher.watch(job.name, number)
            self.session.reset()
            await self.walker.walk(job.name, number, job.downstream_projects)
        except BuildFailedError as e:
            return RunOutcome(success=False, failed_job=e.job_name, result=e.result)

        self.console.print("[green]done[/green]")
        return RunOutcome(success=True)

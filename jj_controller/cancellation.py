"""
Interactive cancellation of the watched build.

On Ctrl+C the controller asks whether the active build should be cancelled
and, if so, cancels the queue entry and/or the running build. Because the
build may finish on its own while the user is answering, the reported
outcome is always read back from the server rather than assumed.

The outcome is returned to the caller; the job runner stops watching and
the CLI decides how to exit.
"""

import asyncio
import logging
import signal
from dataclasses import dataclass

from rich.console import Console

from jj_client.client import JenkinsClient, JenkinsError
from jj_common.models import RESULT_ABORTED, ExecutionSession

from .stdin import InputMultiplexer

logger = logging.getLogger(__name__)


@dataclass
class CancellationOutcome:
    """
    What happened after the user confirmed a cancellation.

    ``cancelled`` is False when the build had already finished with another
    status (``status`` holds it) or the cancel request itself failed.
    """

    cancelled: bool
    status: str
    message: str


class CancellationController:
    """Turns interrupt signals into cancel requests for the active session."""

    recent_builds = 3

    def __init__(
        self,
        client: JenkinsClient,
        session: ExecutionSession,
        input_mux: InputMultiplexer,
        console: Console | None = None,
        render_lock: asyncio.Lock | None = None,
    ):
        """
        Initialize the controller.

        Args:
            client: Jenkins API client
            session: Session written by the watcher
            input_mux: Terminal input, used for the confirmation prompt
            console: Console for status output
            render_lock: Lock that pauses the progress bar while prompting
        """
        self.client = client
        self.session = session
        self.input_mux = input_mux
        self.console = console or Console()
        self.render_lock = render_lock or asyncio.Lock()
        self.interrupts: asyncio.Queue[int] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None

    def install(self) -> None:
        """Route SIGINT to this controller for the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._loop.add_signal_handler(signal.SIGINT, self.interrupt)

    def uninstall(self) -> None:
        if self._loop is not None:
            self._loop.remove_signal_handler(signal.SIGINT)
            self._loop = None

    def interrupt(self) -> None:
        self.interrupts.put_nowait(signal.SIGINT)

    async def listen(self) -> CancellationOutcome:
        """
        Handle interrupts until the user confirms a cancellation.

        Interrupts while no session is active are ignored; a declined
        prompt resumes watching.

        Returns:
            Outcome of the confirmed cancellation
        """
        while True:
            await self.interrupts.get()
            if not self.session.active:
                logger.debug("Interrupt ignored: no active build")
                continue
            outcome = await self.handle_interrupt()
            if outcome is not None:
                return outcome

    async def handle_interrupt(self) -> CancellationOutcome | None:
        """Prompt for confirmation; None means the user declined."""
        async with self.render_lock:
            try:
                answer = await self.input_mux.prompt(
                    f"\nThere is active build: {self.session.job_name}. "
                    "Do you want to cancel it [Y/n]:",
                    write=self._write,
                )
            except EOFError:
                return CancellationOutcome(
                    cancelled=False, status="", message="Input closed, stopped watching"
                )

            if answer.strip() not in ("Y", "y"):
                return None
            return await self.cancel()

    def _write(self, text: str) -> None:
        self.console.print(text, end="", markup=False, highlight=False)

    async def cancel(self) -> CancellationOutcome:
        """
        Cancel whatever the session currently points at.

        Returns:
            The verified outcome
        """
        name = self.session.job_name
        queue_id = self.session.queue_id
        number = self.session.build_number

        if queue_id:
            self.console.print("canceling queue...")
            try:
                await asyncio.to_thread(self.client.cancel_queue, queue_id)
            except JenkinsError as e:
                logger.warning(f"Failed to cancel queue item {queue_id}: {e}")

        if number:
            return await self._cancel_build(name, number)

        if queue_id:
            return await self._resolve_queue_race(name, queue_id)

        return CancellationOutcome(
            cancelled=False, status="", message=f"No build of {name} started yet"
        )

    async def _cancel_build(self, name: str, number: int) -> CancellationOutcome:
        self.console.print("canceling job...")
        try:
            status = await asyncio.to_thread(self.client.cancel_build, name, number)
        except JenkinsError as e:
            return CancellationOutcome(
                cancelled=False, status="", message=f"failed to cancel job, error {e}"
            )
        if status != RESULT_ABORTED:
            return CancellationOutcome(
                cancelled=False,
                status=status,
                message=f"Job already has been executed, status: {status}",
            )
        return CancellationOutcome(cancelled=True, status=status, message="Canceled")

    async def _resolve_queue_race(self, name: str, queue_id: int) -> CancellationOutcome:
        """
        Find out whether a cancelled queue entry had already started.

        The last few builds are checked for one created from the queue
        entry. A build that is still running is stopped.
        """
        try:
            job = await asyncio.to_thread(self.client.get_job_info, name)
        except JenkinsError as e:
            return CancellationOutcome(
                cancelled=False, status="", message=f"failed to verify cancel, error {e}"
            )

        for offset in range(self.recent_builds):
            number = job.last_build_number - offset
            if number <= 0:
                break
            try:
                build = await asyncio.to_thread(self.client.get_build_info, name, number)
            except JenkinsError as e:
                logger.debug(f"Could not read {name} #{number}: {e}")
                continue
            if build.queue_id != queue_id:
                continue
            if build.building or build.result is None:
                return await self._cancel_build(name, number)
            if build.result != RESULT_ABORTED:
                return CancellationOutcome(
                    cancelled=False,
                    status=build.result or "",
                    message=f"Job already has been executed, status: {build.result}",
                )
            return CancellationOutcome(
                cancelled=True, status=RESULT_ABORTED, message="Canceled"
            )

        return CancellationOutcome(cancelled=True, status="", message="Canceled")

import logging
import re
import time
from typing import Any
from urllib.parse import quote

import requests

from jj_common.models import (
    BuildInfo,
    Cursor,
    JobInfo,
    QueueItem,
)

from .config import ServerConfig

logger = logging.getLogger(__name__)

_QUEUE_LOCATION_RE = re.compile(r"/queue/item/(\d+)")


class JenkinsError(RuntimeError):
    """A request to the Jenkins server failed."""


class JobNotFoundError(JenkinsError):
    """The requested job does not exist on the server."""

    def __init__(self, name: str):
        super().__init__(f"job '{name}' does not exist")
        self.name = name


def job_path(name: str) -> str:
    """Map a (possibly foldered) job name to its URL path, e.g. ``job/a/job/b``."""
    return "/".join(f"job/{quote(part, safe='')}" for part in name.split("/") if part)


class JenkinsClient:
    """
    Thin client for the Jenkins JSON API.

    Every network or protocol failure surfaces as ``JenkinsError`` so
    callers can decide whether it is fatal or retryable.
    """

    def __init__(
        self,
        config: ServerConfig,
        session: requests.Session | None = None,
        timeout: float = 30,
    ):
        """
        Initialize the client.

        Args:
            config: Server URL and credentials
            session: Optional pre-built requests session (used by tests)
            timeout: Per-request timeout in seconds
        """
        self.config = config
        self.base_url = config.base_url
        self.timeout = timeout
        self.session = session or requests.Session()
        if config.user and config.token:
            self.session.auth = (config.user, config.token)
        self._crumb: dict[str, str] | None = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def url(self, path: str) -> str:
        return self.base_url + path.lstrip("/")

    def console_url(self, name: str, number: int) -> str:
        """Browser URL of a build's console page."""
        return self.url(f"{job_path(name)}/{number}/console")

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        try:
            response = self.session.request(
                method,
                self.url(path),
                params=params,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=method == "GET",
            )
            response.raise_for_status()
            return response
        except requests.exceptions.RequestException as e:
            raise JenkinsError(f"Error requesting {path}: {e}") from e

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise JenkinsError(f"Invalid JSON from {path}: {e}") from e

    def _crumb_headers(self) -> dict[str, str]:
        """
        CSRF crumb header for POST requests.

        Servers without CSRF protection answer 404; the empty result is
        cached so the lookup happens once per client.
        """
        if self._crumb is not None:
            return self._crumb
        try:
            data = self._get_json("crumbIssuer/api/json")
            self._crumb = {data["crumbRequestField"]: data["crumb"]}
        except (JenkinsError, KeyError, TypeError) as e:
            logger.debug(f"No CSRF crumb available: {e}")
            self._crumb = {}
        return self._crumb

    def _post(
        self, path: str, params: dict[str, Any] | None = None
    ) -> requests.Response:
        return self._request("POST", path, params=params, headers=self._crumb_headers())

    @staticmethod
    def _is_not_found(error: JenkinsError) -> bool:
        cause = error.__cause__
        return (
            isinstance(cause, requests.exceptions.HTTPError)
            and cause.response is not None
            and cause.response.status_code == 404
        )

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def list_job_names(self) -> list[str]:
        """All job names visible at the top level or in any view."""
        data = self._get_json(
            "api/json", params={"tree": "jobs[name],views[name,jobs[name]]"}
        )
        names = {job["name"] for job in data.get("jobs") or []}
        for view in data.get("views") or []:
            names.update(job["name"] for job in view.get("jobs") or [])
        return sorted(names)

    def find_matching_jobs(self, pattern: str) -> list[str]:
        """Job names containing ``pattern``, case-insensitively."""
        pattern = pattern.lower()
        return [name for name in self.list_job_names() if pattern in name.lower()]

    def get_job_info(self, name: str) -> JobInfo:
        """
        Get job metadata.

        Raises:
            JobNotFoundError: If the job does not exist
            JenkinsError: On any other failure
        """
        try:
            data = self._get_json(f"{job_path(name)}/api/json")
        except JenkinsError as e:
            if self._is_not_found(e):
                raise JobNotFoundError(name) from e
            raise
        info = JobInfo.from_dict(data)
        if not info.name:
            info.name = name
        return info

    def get_last_successful_duration(self, name: str) -> int:
        """
        Duration in milliseconds of the job's last successful build.

        Returns 0 when the job never succeeded or the lookup fails; the
        value only feeds progress estimation.
        """
        try:
            data = self._get_json(f"{job_path(name)}/lastSuccessfulBuild/api/json")
        except JenkinsError as e:
            logger.debug(f"No last successful build for {name}: {e}")
            return 0
        return data.get("duration") or 0

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    def get_build_info(self, name: str, number: int) -> BuildInfo:
        data = self._get_json(f"{job_path(name)}/{number}/api/json")
        return BuildInfo.from_dict(data)

    def list_builds(self, name: str) -> list[BuildInfo]:
        """Recent builds of a job, newest first."""
        data = self._get_json(
            f"{job_path(name)}/api/json",
            params={"tree": "builds[number,result,timestamp,duration,building,url]"},
        )
        return [BuildInfo.from_dict(b) for b in data.get("builds") or []]

    def get_console_text(self, name: str, number: int) -> str:
        """Full plain-text console of a build."""
        return self._request("GET", f"{job_path(name)}/{number}/consoleText").text

    def fetch_console(self, name: str, number: int, cursor: Cursor) -> tuple[str, Cursor]:
        """
        Fetch console output appended since ``cursor``.

        Args:
            name: Job name
            number: Build number
            cursor: Opaque offset from the previous call, "0" on the first

        Returns:
            Tuple of (raw_text, next_cursor). ``next_cursor == cursor``
            means there is no new data.

        Raises:
            JenkinsError: If the fetch fails
        """
        response = self._request(
            "GET",
            f"{job_path(name)}/{number}/logText/progressiveHtml",
            params={"start": cursor},
        )
        next_cursor = response.headers.get("X-Text-Size", cursor)
        if next_cursor == cursor:
            return "", cursor
        return response.text, next_cursor

    def trigger_build(self, name: str, parameters: dict[str, str] | None = None) -> int:
        """
        Queue a build of a job.

        Args:
            name: Job name
            parameters: Build parameters; an empty mapping triggers a plain build

        Returns:
            Queue item id of the new entry

        Raises:
            JenkinsError: If the trigger fails or the server did not return
                          a queue location
        """
        if parameters:
            response = self._post(
                f"{job_path(name)}/buildWithParameters", params=parameters
            )
        else:
            response = self._post(f"{job_path(name)}/build")

        location = response.headers.get("Location", "")
        match = _QUEUE_LOCATION_RE.search(location)
        if not match:
            raise JenkinsError(
                f"Build of {name} was accepted but no queue location was returned"
            )
        queue_id = int(match.group(1))
        logger.info(f"Triggered {name}, queue item {queue_id}")
        return queue_id

    def cancel_build(
        self, name: str, number: int, attempts: int = 10, interval: float = 0.5
    ) -> str:
        """
        Stop a running build and report its resulting status.

        Args:
            name: Job name
            number: Build number
            attempts: Build-info polls while waiting for the build to stop
            interval: Seconds between polls

        Returns:
            The build result once it stopped building. ``ABORTED`` means
            the stop took effect; any other result means the build had
            already finished on its own.
        """
        self._post(f"{job_path(name)}/{number}/stop")
        build = self.get_build_info(name, number)
        for _ in range(attempts):
            if not build.building and build.result:
                break
            time.sleep(interval)
            build = self.get_build_info(name, number)
        return build.result or ""

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def get_queue_item(self, queue_id: int) -> QueueItem:
        data = self._get_json(f"queue/item/{queue_id}/api/json")
        return QueueItem.from_dict(data)

    def list_queue(self) -> list[QueueItem]:
        data = self._get_json("queue/api/json")
        return [QueueItem.from_dict(item) for item in data.get("items") or []]

    def cancel_queue(self, queue_id: int) -> None:
        self._post("queue/cancelItem", params={"id": queue_id})

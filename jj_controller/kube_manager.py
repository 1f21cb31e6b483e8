"""
Kubernetes access through the kubectl command line tool.

This module wraps the kubectl invocations used to inspect pods and
deployments, a periodic pod status monitor and the best-effort
post-deployment check that runs after a successful build. Every
invocation runs under an explicit timeout, except log streaming, which
lasts as long as its consumer reads.
"""

import asyncio
import logging
import re
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import datetime

from rich.console import Console

logger = logging.getLogger(__name__)

JOB_PREFIXES = (
    "deploy-",
    "deployment-",
    "k8s-",
    "kubernetes-",
    "build-",
    "ci-",
    "cd-",
    "pipeline-",
    "job-",
    "rc-",
)

JOB_SUFFIXES = (
    "-deploy",
    "-deployment",
    "-k8s",
    "-kubernetes",
    "-build",
    "-ci",
    "-cd",
    "-pipeline",
    "-prod",
    "-production",
    "-staging",
    "-dev",
    "-development",
    "-test",
    "-testing",
    "-uat",
)

ALTERNATIVE_SELECTOR_KEYS = (
    "app.kubernetes.io/name",
    "name",
    "service",
    "component",
)


class KubeError(RuntimeError):
    """A kubectl invocation failed, timed out or kubectl is missing."""


@dataclass
class PodStatus:
    """
    One row of ``kubectl get pods --no-headers``.

    Columns are NAME READY STATUS RESTARTS AGE; AGE may be missing.
    """

    name: str
    ready: str
    status: str
    restarts: str = ""
    age: str = ""

    @classmethod
    def parse(cls, line: str) -> "PodStatus | None":
        fields = line.split()
        if len(fields) < 3:
            return None
        return cls(
            name=fields[0],
            ready=fields[1],
            status=fields[2],
            restarts=fields[3] if len(fields) >= 4 else "",
            age=fields[4] if len(fields) >= 5 else "",
        )

    @property
    def is_ready(self) -> bool:
        """Running with every container ready (``n/n``)."""
        if self.status != "Running" or "/" not in self.ready:
            return False
        parts = self.ready.split("/")
        return len(parts) == 2 and parts[0] == parts[1]

    def describe(self) -> str:
        suffix = f", Age: {self.age}" if self.age else ""
        if self.is_ready:
            return f"✅ {self.name}: {self.status} ({self.ready}{suffix})"
        if self.status == "Running":
            return f"⚠️  {self.name}: {self.status} ({self.ready}{suffix}) - not fully ready"
        return f"❌ {self.name}: {self.status} ({self.ready}{suffix})"


def extract_deployment_name(job_name: str) -> str:
    """
    Infer a Kubernetes deployment name from a Jenkins job name.

    One known prefix and one known suffix are stripped and the rest is
    reduced to ``[a-z0-9-]``. If nothing is left, the sanitised full job
    name is used instead.
    """
    name = job_name.lower()
    for prefix in JOB_PREFIXES:
        if name.startswith(prefix):
            name = name[len(prefix) :]
            break
    for suffix in JOB_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break

    name = re.sub(r"[^a-z0-9-]", "-", name).strip("-")
    if not name:
        name = re.sub(r"[^a-zA-Z0-9-]", "-", job_name.lower()).strip("-")
    return name


class KubeManager:
    """
    Runs kubectl commands against one namespace.

    All methods raise KubeError on failure; callers performing best-effort
    checks catch it and report a warning.
    """

    def __init__(self, namespace: str = "default", timeout: float = 10.0):
        """
        Initialize the manager.

        Args:
            namespace: Kubernetes namespace for all commands
            timeout: Seconds allowed for each kubectl invocation
        """
        self.namespace = namespace
        self.timeout = timeout

    async def _run(self, *args: str) -> str:
        """
        Run ``kubectl <args> -n <namespace>`` and return its stdout.

        Raises:
            KubeError: On non-zero exit, timeout or missing kubectl
        """
        cmd = ["kubectl", *args, "-n", self.namespace]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise KubeError("kubectl not found on PATH") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise KubeError(
                f"kubectl {' '.join(args)} timed out after {self.timeout}s"
            ) from e

        if process.returncode != 0:
            raise KubeError(
                f"kubectl {' '.join(args)} failed: {stderr.decode().strip()}"
            )
        return stdout.decode()

    async def list_pod_names(self, selector: str | None = None) -> list[str]:
        args = ["get", "pods"]
        if selector:
            args += ["-l", selector]
        args += ["--no-headers", "-o", "custom-columns=NAME:.metadata.name"]
        output = await self._run(*args)
        return [name for name in output.strip().split("\n") if name]

    async def find_pods_with_prefix(self, prefix: str) -> list[str]:
        """Pods whose names start with ``prefix``, case-insensitively."""
        prefix = prefix.lower()
        names = await self.list_pod_names()
        return [name for name in names if name.lower().startswith(prefix)]

    async def get_pod_status(self, pod: str) -> PodStatus | None:
        """Status of one pod, or None when kubectl printed nothing."""
        output = await self._run("get", "pod", pod, "--no-headers")
        line = output.strip()
        if not line:
            return None
        return PodStatus.parse(line)

    async def list_pods(self, selector: str | None = None) -> list[PodStatus]:
        args = ["get", "pods"]
        if selector:
            args += ["-l", selector]
        args.append("--no-headers")
        output = await self._run(*args)
        pods = []
        for line in output.strip().split("\n"):
            status = PodStatus.parse(line)
            if status is not None:
                pods.append(status)
        return pods

    async def get_pods_table(
        self, selector: str | None = None, wide: bool = True
    ) -> str:
        """Human readable ``kubectl get pods`` output, ``-o wide`` by default."""
        args = ["get", "pods"]
        if selector:
            args += ["-l", selector]
        if wide:
            args += ["-o", "wide"]
        return await self._run(*args)

    async def get_pod_table(self, pod: str) -> str:
        return await self._run("get", "pod", pod, "-o", "wide")

    async def describe_pod(self, pod: str) -> str:
        return await self._run("describe", "pod", pod)

    async def stream_logs(
        self, pod: str, follow: bool = True, tail: int = 100
    ) -> AsyncGenerator[str, None]:
        """
        Stream a pod's log lines.

        No timeout applies: with ``follow`` the stream ends only when the
        pod goes away or the consumer stops iterating.

        Args:
            pod: Pod name
            follow: Keep streaming new lines (``kubectl logs -f``)
            tail: Number of existing lines to start with

        Yields:
            Log lines without the trailing newline

        Raises:
            KubeError: If kubectl is missing or exits with an error
        """
        args = ["kubectl", "logs", pod, f"--tail={tail}"]
        if follow:
            args.append("-f")
        args += ["-n", self.namespace]
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise KubeError("kubectl not found on PATH") from e

        assert process.stdout is not None

        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                yield line.decode(errors="replace").rstrip("\n")
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                process.terminate()
                await process.wait()

        if returncode != 0:
            raise KubeError(f"kubectl logs {pod} exited with status {returncode}")

    async def rollout_status(self, deployment: str) -> str:
        """
        Report a deployment's rollout status without waiting for it.

        Returns:
            kubectl's one-line status message
        """
        output = await self._run(
            "rollout", "status", f"deployment/{deployment}", "--watch=false"
        )
        return output.strip()

    async def try_alternative_selectors(self, selector: str) -> tuple[str, str] | None:
        """
        Retry an ``app=<name>`` lookup with other common label keys.

        Returns:
            Tuple of (selector, pods table) for the first selector that
            matches any pod, or None
        """
        app_name = selector.removeprefix("app=")
        for key in ALTERNATIVE_SELECTOR_KEYS:
            alternative = f"{key}={app_name}"
            try:
                pods = await self.list_pods(alternative)
                if not pods:
                    continue
                return alternative, await self.get_pods_table(alternative)
            except KubeError as e:
                logger.debug(f"Selector {alternative} failed: {e}")
        return None


class PodMonitor:
    """
    Prints pod status lines at a fixed interval.

    Pods are given either by name or by label selector. Both watches run
    until cancelled; a watch by name can also stop once status lookups
    keep failing, which is how a replaced pod shows up.
    """

    def __init__(
        self,
        kube: KubeManager,
        console: Console | None = None,
        poll_interval: float = 5.0,
    ):
        self.kube = kube
        self.console = console or Console()
        self.poll_interval = poll_interval

    def _print_round_start(self) -> None:
        self.console.print(
            f"⏰ {datetime.now().strftime('%H:%M:%S')} - checking pod status..."
        )

    async def watch_pods(self, pods: list[str], max_failures: int | None = None) -> None:
        """
        Watch named pods.

        Args:
            pods: Pod names
            max_failures: Stop once more than this many status lookups have
                          failed; None watches until cancelled
        """
        self.console.print(
            f"👀 Watching pods: {', '.join(pods)} (namespace: {self.kube.namespace})"
        )
        failures = 0
        failed_pod = ""
        while True:
            self._print_round_start()
            for pod in pods:
                try:
                    status = await self.kube.get_pod_status(pod)
                except KubeError as e:
                    self.console.print(f"❌ {pod}: status lookup failed - {e}")
                    failures += 1
                    failed_pod = pod
                    continue
                if status is None:
                    self.console.print(f"⚠️  {pod}: pod does not exist")
                    continue
                self.console.print(status.describe())

            if max_failures is not None and failures > max_failures:
                self.console.print(
                    f"Pod monitoring finished: previous pod {failed_pod} has exited"
                )
                return

            self.console.print("-" * 50)
            await asyncio.sleep(self.poll_interval)

    async def watch_selector(self, selector: str | None = None) -> None:
        """Watch every pod matching ``selector`` (all pods when None)."""
        self.console.print(f"👀 Watching pod status (namespace: {self.kube.namespace})")
        if selector:
            self.console.print(f"📋 Label selector: {selector}")
        while True:
            self._print_round_start()
            try:
                pods = await self.kube.list_pods(selector)
            except KubeError as e:
                self.console.print(f"❌ Watch failed: {e}")
                pods = None
            if pods == []:
                self.console.print("⚠️  No matching pods")
            for status in pods or []:
                self.console.print(status.describe())

            self.console.print("-" * 50)
            await asyncio.sleep(self.poll_interval)


class DeploymentChecker:
    """
    Post-deployment check run after a successful build.

    The check watches the pods of the deployment inferred from the job
    name until its time budget runs out or more than one status lookup
    fails (the previous pods have been replaced). It never raises: every
    problem is reported as a warning.
    """

    def __init__(
        self,
        kube: KubeManager,
        console: Console | None = None,
        timeout: float = 100.0,
        poll_interval: float = 5.0,
    ):
        self.kube = kube
        self.console = console or Console()
        self.timeout = timeout
        self.poll_interval = poll_interval

    async def check(self, job_name: str) -> None:
        deployment = extract_deployment_name(job_name)
        if not deployment:
            self.console.print("No deployment name could be inferred")
            return

        self.console.print(
            f"🔍 Checking deployment: {deployment} (inferred from job {job_name})"
        )
        self.console.print(
            f"⏱️  Monitoring for {self.timeout:.0f}s (Ctrl+C stops early), "
            "or until pod status lookups fail\n"
        )

        try:
            status = await self.kube.rollout_status(deployment)
            self.console.print(f"📦 {status}")
        except KubeError as e:
            self.console.print(f"⚠️ Rollout status unavailable: {e}")

        try:
            pods = await self.kube.find_pods_with_prefix(deployment)
        except KubeError as e:
            self.console.print(f"⚠️ Could not list pods: {e}")
            pods = []

        if not pods:
            self.console.print(f"⚠️ No pods matching: {deployment}")
            await self._report_alternatives(deployment)
            return

        self.console.print(f"✅ Found {len(pods)} matching pods: {', '.join(pods)}")
        try:
            monitor = PodMonitor(self.kube, self.console, self.poll_interval)
            await asyncio.wait_for(
                monitor.watch_pods(pods, max_failures=1), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            self.console.print(
                f"\n⏰ Check timed out ({self.timeout:.0f}s), stopping"
            )

    async def _report_alternatives(self, deployment: str) -> None:
        self.console.print("🔄 Trying other label selectors...")
        found = await self.kube.try_alternative_selectors(f"app={deployment}")
        if found is None:
            self.console.print("❌ No matching pods found")
            return
        selector, table = found
        self.console.print(f"✅ Found matching pods (selector: {selector}):")
        self.console.print(table, markup=False, highlight=False)


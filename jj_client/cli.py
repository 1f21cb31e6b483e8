"""
Command line interface for running and inspecting Jenkins jobs.

Commands:
    jj run JOB       Trigger a job and watch it and its downstream chain
    jj builds JOB    List recent builds or show one build
    jj pods [APP]    Show Kubernetes pod status, logs and details
"""

import asyncio
import logging
import sys
from datetime import datetime

import click
from rich.console import Console

from jj_common.models import JobInfo
from jj_controller.chain import JobRunner
from jj_controller.kube_manager import KubeError, KubeManager, PodMonitor
from jj_controller.stdin import InputMultiplexer

from .client import JenkinsClient, JenkinsError
from .config import ServerConfig, get_server_config, get_watch_settings

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


def fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def parse_args(values: tuple[str, ...]) -> dict[str, str]:
    """
    Parse ``-a key=val`` options.

    Raises:
        click.BadParameter: If a value is not of the form key=val
    """
    parsed: dict[str, str] = {}
    for value in values:
        key, sep, val = value.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(
                f"'{value}' is not of the form key=val", param_hint="'-a' / '--arg'"
            )
        parsed[key.strip()] = val
    return parsed


def format_duration(duration_ms: int) -> str:
    """Format milliseconds as ``XmYs``."""
    return f"{duration_ms // 60000}m{(duration_ms % 60000) // 1000}s"


def format_timestamp(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def get_client(name: str | None) -> tuple[JenkinsClient, ServerConfig]:
    try:
        config = get_server_config(name)
    except RuntimeError as e:
        fail(str(e))
    return JenkinsClient(config), config


def select_job(client: JenkinsClient, pattern: str) -> str:
    """
    Resolve a job name pattern to one job.

    An exact match or a single match is used directly; several matches
    are listed and the user picks one by number.
    """
    jobs = client.find_matching_jobs(pattern)
    if not jobs:
        fail(f"No job matches: {pattern}")
    if pattern in jobs:
        return pattern
    if len(jobs) == 1:
        return jobs[0]

    click.echo(f"\nFound {len(jobs)} matching jobs:")
    for i, job in enumerate(jobs, start=1):
        click.echo(f"{i}. {job}")
    index = click.prompt(
        "\nSelect a job number", type=click.IntRange(1, len(jobs)), prompt_suffix=": "
    )
    return jobs[index - 1]


def resolve_parameters(
    job: JobInfo, given: dict[str, str], assume_yes: bool
) -> dict[str, str]:
    """
    Work out the build parameters.

    Declared parameters missing from the given values take their defaults
    (the first choice for choice parameters). A job without parameters is
    only triggered after the user presses Enter, unless ``assume_yes``.
    """
    unknown = set(given) - {p.name for p in job.parameters}
    for name in sorted(unknown):
        logger.warning(f"Job {job.name} declares no parameter {name}")

    if not job.parameters:
        if not assume_yes:
            click.prompt(
                "Press Enter to continue",
                default="",
                show_default=False,
                prompt_suffix=" ",
            )
        return {}

    parameters = {}
    for definition in job.parameters:
        if definition.name in given:
            parameters[definition.name] = given[definition.name]
        elif definition.is_choice and definition.choices:
            parameters[definition.name] = definition.choices[0]
        else:
            parameters[definition.name] = definition.default_value
    return parameters


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    help="Logging level (default: WARNING)",
)
def cli(log_level: str):
    """jj - Run Jenkins jobs and watch them from the terminal."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command("run")
@click.argument("job")
@click.option(
    "-a", "--arg", "args", multiple=True, help="Job parameter. Usage: -a key=val"
)
@click.option("-n", "--name", help="Jenkins environment name (JJ_ENV, ~/.jj/<name>.config)")
@click.option("-v", "--verbose", is_flag=True, help="Show console output in groups")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Do not ask for input")
@click.option(
    "--no-deploy-check", is_flag=True, help="Skip the Kubernetes deployment check"
)
def run_command(
    job: str,
    args: tuple[str, ...],
    name: str | None,
    verbose: bool,
    assume_yes: bool,
    no_deploy_check: bool,
):
    """Trigger JOB and watch it and its downstream jobs."""
    given = parse_args(args)
    client, config = get_client(name)
    console = Console()

    try:
        job_name = select_job(client, job)
        job_info = client.get_job_info(job_name)
    except JenkinsError as e:
        fail(str(e))

    parameters = resolve_parameters(job_info, given, assume_yes)
    settings = get_watch_settings(verbose=verbose, deploy_check=not no_deploy_check)
    runner = JobRunner(client, settings, console=console, input_mux=InputMultiplexer())

    async def run():
        await runner.announce(job_info, config.name)
        return await runner.run(job_info, parameters)

    try:
        outcome = run_async(run())
    except JenkinsError as e:
        fail(str(e))

    if outcome.cancelled:
        console.print(outcome.cancellation.message, markup=False)
        sys.exit(0)
    if not outcome.success:
        sys.exit(1)


@cli.command("builds")
@click.argument("job")
@click.argument("build_number", type=int, required=False)
@click.option("-n", "--name", help="Jenkins environment name")
@click.option("-v", "--verbose", is_flag=True, help="Include the console output")
def builds_command(job: str, build_number: int | None, name: str | None, verbose: bool):
    """List recent builds of JOB, or show BUILD_NUMBER in detail."""
    client, _ = get_client(name)
    try:
        job_name = select_job(client, job)
        if build_number is None:
            show_build_list(client, job_name)
        else:
            show_build_detail(client, job_name, build_number, verbose)
    except JenkinsError as e:
        fail(str(e))


def show_build_list(client: JenkinsClient, job_name: str) -> None:
    job = client.get_job_info(job_name)
    builds = client.list_builds(job_name)

    click.echo(f"\nJob: {job_name}")
    click.echo(f"Latest build: #{job.next_build_number - 1}")
    click.echo(f"Last completed build: #{job.last_completed_build_number}")
    click.echo(f"In queue: {job.in_queue}\n")

    if not builds:
        click.echo("No builds found.")
        return

    click.echo(f"{'Build':<8} {'Status':<10} {'Duration':<10} {'Started':<20} Console")
    click.echo("-" * 100)
    for build in builds:
        if build.building:
            status = "BUILDING"
        else:
            status = build.result or "UNKNOWN"
        click.echo(
            f"{'#' + str(build.number):<8} {status:<10} "
            f"{format_duration(build.duration):<10} "
            f"{format_timestamp(build.timestamp):<20} "
            f"{client.console_url(job_name, build.number)}"
        )


def show_build_detail(
    client: JenkinsClient, job_name: str, number: int, verbose: bool
) -> None:
    build = client.get_build_info(job_name, number)

    click.echo(f"\nBuild #{number}:")
    click.echo("-" * 40)
    click.echo(f"  Result:   {build.result or 'UNKNOWN'}")
    click.echo(f"  Building: {build.building}")
    click.echo(f"  Duration: {format_duration(build.duration)}")
    click.echo(f"  Console:  {client.console_url(job_name, number)}")

    if build.parameters:
        click.echo("\nParameters:")
        for key, value in build.parameters.items():
            click.echo(f"  {key}: {value}")

    if verbose:
        click.echo("\nConsole output:")
        click.echo("-" * 40)
        click.echo(client.get_console_text(job_name, number))


@cli.command("pods")
@click.argument("app", required=False)
@click.option("-N", "--namespace", envvar="JJ_K8S_NAMESPACE", default="default")
@click.option("-l", "--selector", help="Label selector, e.g. app=web")
@click.option("-w", "--watch", is_flag=True, help="Refresh pod status every 5s")
@click.option(
    "-L", "--log", "show_logs", is_flag=True, help="Show the last 100 log lines and follow"
)
@click.option("--no-follow", is_flag=True, help="With --log, do not follow the log")
@click.option("-d", "--detailed", is_flag=True, help="Add kubectl describe output")
@click.option("-s", "--simple", is_flag=True, help="Plain table without -o wide")
def pods_command(
    app: str | None,
    namespace: str,
    selector: str | None,
    watch: bool,
    show_logs: bool,
    no_follow: bool,
    detailed: bool,
    simple: bool,
):
    """Show the status or logs of the pods of APP."""
    kube = KubeManager(namespace)
    try:
        if show_logs:
            run_async(show_pod_logs(kube, app, selector, follow=not no_follow))
        elif watch:
            run_async(watch_pod_status(kube, app, selector))
        else:
            run_async(show_pods(kube, app, selector, detailed=detailed, simple=simple))
    except KubeError as e:
        fail(str(e))
    except KeyboardInterrupt:
        click.echo("\n👋 Stopped")


async def match_pods(
    kube: KubeManager, app: str | None, selector: str | None
) -> tuple[list[str], str | None]:
    """
    Resolve APP to pods.

    Returns:
        Tuple of (pod names containing APP, selector to use instead). When
        no pod name matches, the selector falls back to ``app=APP``.
    """
    if not app or selector:
        return [], selector
    names = await kube.list_pod_names()
    matched = [n for n in names if app.lower() in n.lower()]
    if matched:
        return matched, None
    return [], f"app={app}"


async def show_pods(
    kube: KubeManager,
    app: str | None,
    selector: str | None,
    detailed: bool = False,
    simple: bool = False,
) -> None:
    matched, selector = await match_pods(kube, app, selector)
    if matched:
        for pod in matched:
            status = await kube.get_pod_status(pod)
            if status is None:
                click.echo(f"⚠️  {pod}: pod does not exist")
            else:
                click.echo(status.describe())
        if detailed:
            await show_pod_details(kube, matched)
        return

    pods = await kube.list_pods(selector)
    if pods or not selector:
        click.echo(await kube.get_pods_table(selector, wide=not simple))
        if detailed and pods:
            await show_pod_details(kube, [p.name for p in pods])
        return

    click.echo(f"⚠️ No pods match selector {selector}")
    if not selector.startswith("app="):
        return
    click.echo("🔄 Trying other label selectors...")
    found = await kube.try_alternative_selectors(selector)
    if found is None:
        click.echo("❌ No matching pods found")
        return
    alternative, table = found
    click.echo(f"✅ Found matching pods (selector: {alternative}):")
    click.echo(table)


async def show_pod_details(kube: KubeManager, pods: list[str]) -> None:
    click.echo("\n📋 Pod details:")
    for pod in pods:
        click.echo(f"\n🔸 Pod: {pod}")
        try:
            click.echo(await kube.describe_pod(pod))
        except KubeError as e:
            click.echo(f"  ❌ describe failed: {e}")


async def show_pod_logs(
    kube: KubeManager, app: str | None, selector: str | None, follow: bool = True
) -> None:
    """Print the log of the first pod of APP, following it unless asked not to."""
    matched, selector = await match_pods(kube, app, selector)
    pods = matched or await kube.list_pod_names(selector)
    if not pods:
        click.echo("⚠️  No matching pods")
        return

    pod = pods[0]
    if len(pods) > 1:
        click.echo(f"⚠️  {len(pods)} pods match, showing the log of {pod}")
    click.echo(f"📜 Log of pod {pod} (namespace: {kube.namespace})")
    if follow:
        click.echo("🔄 Last 100 lines, following (Ctrl+C to stop)")
    else:
        click.echo("📋 Last 100 lines")
    click.echo("-" * 50)
    async for line in kube.stream_logs(pod, follow=follow):
        click.echo(line)


async def watch_pod_status(
    kube: KubeManager, app: str | None, selector: str | None
) -> None:
    matched, selector = await match_pods(kube, app, selector)
    monitor = PodMonitor(kube, Console())
    click.echo("Press Ctrl+C to stop watching\n")
    if matched:
        await monitor.watch_pods(matched)
    else:
        await monitor.watch_selector(selector)


def main():
    """Main entry point for the jj CLI."""
    cli()


if __name__ == "__main__":
    main()

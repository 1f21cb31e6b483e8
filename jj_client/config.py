"""
Configuration for the jj client.

Values are resolved in priority order:
1. Command line argument
2. Environment variable
3. Config file (~/.jj/config, or ~/.jj/<name>.config for a named server)
4. Built-in default

Config file format (one key per line):
    url=https://jenkins.example.com/
    user=alice
    token=11aa22bb...

Environment variables:
    JJ_ENV                   Name of the server config to use
    JJ_URL, JJ_USER, JJ_TOKEN
                             Override the matching config file keys
    JJ_POLL_FAILURE_BUDGET   Seconds of failed build polls tolerated (default: 5.0)
    JJ_SKIP_CHECK_MARKERS    Comma separated console markers that skip the
                             post-deployment check
    JJ_K8S_NAMESPACE         Namespace for the post-deployment check (default: default)
    JJ_DEPLOY_CHECK_TIMEOUT  Seconds to monitor pods after a build (default: 100)
    JJ_KUBECTL_TIMEOUT       Seconds allowed per kubectl invocation (default: 10)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SKIP_CHECK_MARKERS = (
    "front-boohee",
    "yarn",
    "front/asset/",
    "front/chunkScript",
    "Webpack",
)


@dataclass
class ServerConfig:
    """Connection settings for one Jenkins server."""

    name: str
    url: str
    user: str | None = None
    token: str | None = None

    @property
    def base_url(self) -> str:
        """Server URL with exactly one trailing slash."""
        return self.url.rstrip("/") + "/"


@dataclass
class WatchSettings:
    """Tuning for the build watch engine."""

    poll_failure_budget: float = 5.0
    skip_check_markers: tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_SKIP_CHECK_MARKERS
    )
    namespace: str = "default"
    deploy_check_timeout: float = 100.0
    kubectl_timeout: float = 10.0
    verbose: bool = False
    deploy_check: bool = True


def get_config_dir() -> Path:
    """Directory holding the jj config files."""
    return Path.home() / ".jj"


def get_config_path(name: str | None = None) -> Path:
    """
    Get the config file path for a server name.

    Args:
        name: Server name; None or empty selects the default config file

    Returns:
        Path to the config file (it may not exist)
    """
    if name:
        return get_config_dir() / f"{name}.config"
    return get_config_dir() / "config"


def read_config_file(path: Path) -> dict[str, str]:
    """
    Parse a ``key=value`` config file.

    Blank lines and lines starting with ``#`` are ignored. A missing or
    unreadable file yields an empty mapping.
    """
    values: dict[str, str] = {}
    if not path.exists():
        return values
    try:
        content = path.read_text()
    except OSError as e:
        logger.warning(f"Could not read config file {path}: {e}")
        return values

    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def get_server_config(
    name: str | None = None,
    url: str | None = None,
    user: str | None = None,
    token: str | None = None,
) -> ServerConfig:
    """
    Resolve the Jenkins server to talk to.

    Args:
        name: Server name from the command line (highest priority)
        url: Server URL from the command line
        user: User name from the command line
        token: API token from the command line

    Returns:
        Resolved ServerConfig

    Raises:
        RuntimeError: If no server URL could be found
    """
    name = name or os.environ.get("JJ_ENV") or ""
    path = get_config_path(name)
    file_values = read_config_file(path)

    resolved_url = url or os.environ.get("JJ_URL") or file_values.get("url")
    if not resolved_url:
        raise RuntimeError(
            f"No Jenkins URL configured. Set JJ_URL or add 'url=...' to {path}"
        )

    return ServerConfig(
        name=name or "default",
        url=resolved_url,
        user=user or os.environ.get("JJ_USER") or file_values.get("user"),
        token=token or os.environ.get("JJ_TOKEN") or file_values.get("token"),
    )


def _get_positive_float(var: str, default: float) -> float:
    raw = os.environ.get(var)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Invalid {var}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {var}={value}, using default {default}")
        return default
    return value


def get_watch_settings(
    verbose: bool = False, deploy_check: bool = True
) -> WatchSettings:
    """
    Build watch settings from the environment.

    Args:
        verbose: Forward console lines in groups instead of one by one
        deploy_check: Whether to run the post-deployment check at all

    Returns:
        WatchSettings with environment overrides applied
    """
    markers_env = os.environ.get("JJ_SKIP_CHECK_MARKERS")
    if markers_env is not None:
        markers = tuple(m.strip() for m in markers_env.split(",") if m.strip())
    else:
        markers = DEFAULT_SKIP_CHECK_MARKERS

    return WatchSettings(
        poll_failure_budget=_get_positive_float("JJ_POLL_FAILURE_BUDGET", 5.0),
        skip_check_markers=markers,
        namespace=os.environ.get("JJ_K8S_NAMESPACE", "default"),
        deploy_check_timeout=_get_positive_float("JJ_DEPLOY_CHECK_TIMEOUT", 100.0),
        kubectl_timeout=_get_positive_float("JJ_KUBECTL_TIMEOUT", 10.0),
        verbose=verbose,
        deploy_check=deploy_check,
    )

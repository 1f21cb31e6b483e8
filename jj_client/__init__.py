"""
JJ Client module.

This module contains the Jenkins API client, configuration resolution and
the ``jj`` command line interface.
"""

from .client import JenkinsClient, JenkinsError, JobNotFoundError
from .config import ServerConfig, WatchSettings, get_server_config, get_watch_settings

__all__ = [
    "JenkinsClient",
    "JenkinsError",
    "JobNotFoundError",
    "ServerConfig",
    "WatchSettings",
    "get_server_config",
    "get_watch_settings",
]

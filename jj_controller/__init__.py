"""
JJ Controller module.

This module contains the watch engine: the build watcher and its render
coordinator, the downstream chain walker, the interactive cancellation
controller and the kubectl layer used by the post-deployment check.

Blocking Jenkins calls are made from worker threads so the progress bar,
the keystroke watcher and the cancellation prompt stay responsive.
"""

from .cancellation import CancellationController, CancellationOutcome
from .chain import DownstreamWalker, JobRunner, RunOutcome
from .kube_manager import (
    DeploymentChecker,
    KubeError,
    KubeManager,
    PodMonitor,
    PodStatus,
)
from .renderer import ProgressBar, RenderCoordinator
from .stdin import InputMultiplexer
from .watcher import BuildFailedError, BuildWatcher, WatchState

__all__ = [
    "BuildFailedError",
    "BuildWatcher",
    "CancellationController",
    "CancellationOutcome",
    "DeploymentChecker",
    "DownstreamWalker",
    "InputMultiplexer",
    "JobRunner",
    "KubeError",
    "KubeManager",
    "PodMonitor",
    "PodStatus",
    "ProgressBar",
    "RenderCoordinator",
    "RunOutcome",
    "WatchState",
]

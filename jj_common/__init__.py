"""
JJ Common module.

This module contains the domain models, console normalization and progress
estimation shared by the client and the watch engine.

The common module has no dependencies on other jj_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .console import normalize_console, strip_html_tags
from .models import (
    BuildInfo,
    ChainLink,
    ConsoleBatch,
    ExecutionSession,
    JobInfo,
    ParameterDefinition,
    QueueItem,
    RenderUpdate,
)
from .progress import ProgressEstimator

__all__ = [
    "BuildInfo",
    "ChainLink",
    "ConsoleBatch",
    "ExecutionSession",
    "JobInfo",
    "ParameterDefinition",
    "ProgressEstimator",
    "QueueItem",
    "RenderUpdate",
    "normalize_console",
    "strip_html_tags",
]

"""
Data models for Jenkins jobs, builds and the watch engine.

These models represent the domain objects used throughout the application,
independent of the HTTP transport that produced them. Payload parsing lives
in the ``from_dict`` constructors so the rest of the code never touches raw
Jenkins JSON.
"""

from dataclasses import dataclass, field
from typing import Any

# Opaque read offset into a build's console stream. "0" is the beginning.
Cursor = str

INITIAL_CURSOR: Cursor = "0"

RESULT_SUCCESS = "SUCCESS"
RESULT_FAILED = "FAILED"
RESULT_ABORTED = "ABORTED"


def _causes_from_actions(actions: list[dict[str, Any]] | None) -> list["Cause"]:
    causes = []
    for action in actions or []:
        if not action:
            continue
        for cause in action.get("causes") or []:
            causes.append(Cause.from_dict(cause))
    return causes


@dataclass
class ParameterDefinition:
    """A build parameter declared on a job."""

    name: str
    type: str = ""
    default_value: str = ""
    choices: list[str] = field(default_factory=list)
    description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParameterDefinition":
        """Create a parameter definition from a Jenkins payload."""
        default = data.get("defaultParameterValue") or {}
        value = default.get("value")
        return cls(
            name=data["name"],
            type=data.get("type", ""),
            default_value="" if value is None else str(value),
            choices=list(data.get("choices") or []),
            description=data.get("description") or "",
        )

    @property
    def is_choice(self) -> bool:
        return self.type == "ChoiceParameterDefinition"


@dataclass
class JobInfo:
    """
    Job metadata as reported by ``job/<name>/api/json``.

    Parameter definitions are declared either on a ``property`` entry or,
    on older servers, on an ``actions`` entry; both are collected.
    """

    name: str
    url: str = ""
    parameters: list[ParameterDefinition] = field(default_factory=list)
    next_build_number: int = 0
    last_build_number: int = 0
    last_completed_build_number: int = 0
    in_queue: bool = False
    downstream_projects: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobInfo":
        """Create job info from a Jenkins payload."""
        parameters: list[ParameterDefinition] = []
        seen: set[str] = set()
        for holder in (data.get("property") or []) + (data.get("actions") or []):
            if not holder:
                continue
            for definition in holder.get("parameterDefinitions") or []:
                if definition["name"] in seen:
                    continue
                seen.add(definition["name"])
                parameters.append(ParameterDefinition.from_dict(definition))

        return cls(
            name=data.get("name", ""),
            url=data.get("url", ""),
            parameters=parameters,
            next_build_number=data.get("nextBuildNumber") or 0,
            last_build_number=(data.get("lastBuild") or {}).get("number", 0),
            last_completed_build_number=(data.get("lastCompletedBuild") or {}).get(
                "number", 0
            ),
            in_queue=bool(data.get("inQueue", False)),
            downstream_projects=[
                p["name"] for p in data.get("downstreamProjects") or [] if p.get("name")
            ],
        )


@dataclass
class Cause:
    """Trigger metadata attached to a build or queue entry."""

    upstream_project: str = ""
    upstream_build: int = 0
    short_description: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cause":
        return cls(
            upstream_project=data.get("upstreamProject") or "",
            upstream_build=data.get("upstreamBuild") or 0,
            short_description=data.get("shortDescription") or "",
        )

    def matches(self, parent_name: str, parent_build: int) -> bool:
        """Check whether this cause names the given parent job and build."""
        return (
            self.upstream_project == parent_name
            and self.upstream_build == parent_build
        )


@dataclass
class BuildInfo:
    """
    A single build as reported by ``job/<name>/<number>/api/json``.

    ``result`` is ``None`` while the build is running.
    """

    number: int
    building: bool = False
    result: str | None = None
    duration: int = 0  # milliseconds
    queue_id: int = 0
    timestamp: int = 0  # epoch milliseconds
    url: str = ""
    causes: list[Cause] = field(default_factory=list)
    parameters: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildInfo":
        """Create build info from a Jenkins payload."""
        parameters = {}
        for action in data.get("actions") or []:
            if not action:
                continue
            for param in action.get("parameters") or []:
                value = param.get("value")
                parameters[param["name"]] = "" if value is None else str(value)

        return cls(
            number=data.get("number", 0),
            building=bool(data.get("building", False)),
            result=data.get("result"),
            duration=data.get("duration") or 0,
            queue_id=data.get("queueId") or 0,
            timestamp=data.get("timestamp") or 0,
            url=data.get("url", ""),
            causes=_causes_from_actions(data.get("actions")),
            parameters=parameters,
        )

    def caused_by(self, parent_name: str, parent_build: int) -> bool:
        """Check whether this build was triggered by the given parent build."""
        return any(c.matches(parent_name, parent_build) for c in self.causes)


@dataclass
class QueueItem:
    """
    A pending request to run a job, before it has an executor.

    Jenkins resolves ``executable`` once the item leaves the queue; the
    executable number is then the build number.
    """

    id: int
    task_name: str = ""
    blocked: bool = False
    cancelled: bool = False
    executable_number: int = 0
    executable_url: str = ""
    why: str = ""
    causes: list[Cause] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueueItem":
        """Create a queue item from a Jenkins payload."""
        executable = data.get("executable") or {}
        return cls(
            id=data.get("id", 0),
            task_name=(data.get("task") or {}).get("name", ""),
            blocked=bool(data.get("blocked", False)),
            cancelled=bool(data.get("cancelled", False)),
            executable_number=executable.get("number", 0),
            executable_url=executable.get("url") or "",
            why=data.get("why") or "",
            causes=_causes_from_actions(data.get("actions")),
        )

    @property
    def has_executor(self) -> bool:
        """True once the entry is unblocked and resolved to a build."""
        return not self.blocked and self.executable_url != ""

    def caused_by(self, parent_name: str, parent_build: int) -> bool:
        return any(c.matches(parent_name, parent_build) for c in self.causes)


@dataclass
class ExecutionSession:
    """
    The job currently being watched.

    Exactly one session is live per runner. The watcher writes it, the
    cancellation controller reads it to know what to cancel. An empty
    session (no job name) means nothing is being watched.
    """

    job_name: str = ""
    queue_id: int = 0
    build_number: int = 0

    @property
    def active(self) -> bool:
        return self.job_name != ""

    def reset(self) -> None:
        """Return the session to its empty state."""
        self.job_name = ""
        self.queue_id = 0
        self.build_number = 0


@dataclass
class ConsoleBatch:
    """Lines produced by one fetch + normalize cycle."""

    lines: list[str]
    cursor: Cursor
    advanced: bool


@dataclass(frozen=True)
class RenderUpdate:
    """
    A message for the render coordinator.

    Kinds:
        tick      - advance the progress bar by one unit
        message   - print ``text`` above the bar
        keystroke - a raw key from the terminal (``text`` holds it)
        finish    - terminal update carrying ``result`` and summary ``text``
    """

    kind: str
    text: str = ""
    result: str = ""

    TICK = "tick"
    MESSAGE = "message"
    KEYSTROKE = "keystroke"
    FINISH = "finish"

    @classmethod
    def tick(cls) -> "RenderUpdate":
        return cls(kind=cls.TICK)

    @classmethod
    def message(cls, text: str) -> "RenderUpdate":
        return cls(kind=cls.MESSAGE, text=text)

    @classmethod
    def keystroke(cls, key: str) -> "RenderUpdate":
        return cls(kind=cls.KEYSTROKE, text=key)

    @classmethod
    def finish(cls, result: str, summary: str) -> "RenderUpdate":
        return cls(kind=cls.FINISH, result=result, text=summary)

    @property
    def failed(self) -> bool:
        return self.kind == self.FINISH and self.result != RESULT_SUCCESS


@dataclass(frozen=True)
class ChainLink:
    """A parent build and one of its declared downstream projects."""

    parent_name: str
    parent_build: int
    child_name: str

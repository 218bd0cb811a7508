"""
Data models for scheduled tasks.

Schedules and commands are tagged variants: the concrete class is chosen
when the object is built, never inferred later from which fields are set.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple, Union


class TaskState(str, Enum):
    """Lifecycle state of a task's current execution."""
    REPOSE = "repose"
    RUNNING = "running"


class ExecutionKind(str, Enum):
    """What triggered an execution."""
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class StreamKind(str, Enum):
    """Output stream a chunk came from."""
    OUT = "out"
    ERROR = "error"


@dataclass(frozen=True)
class CalendarFilter:
    """
    Filters shared by every schedule variant.

    Empty tuples mean "no restriction". Week days use 0 = Sunday.
    """
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    week_days: Tuple[int, ...] = ()
    days: Tuple[int, ...] = ()
    months: Tuple[int, ...] = ()


@dataclass(frozen=True)
class FixedSchedule:
    """Fires on exact minute and/or hour values."""
    minutes: Tuple[int, ...] = ()
    hours: Tuple[int, ...] = ()
    filters: CalendarFilter = field(default_factory=CalendarFilter)


@dataclass(frozen=True)
class IntervalSchedule:
    """Fires every `every` minutes inside a daily time window."""
    every: int
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    filters: CalendarFilter = field(default_factory=CalendarFilter)


Schedule = Union[FixedSchedule, IntervalSchedule]

# Raw mappings are validated lazily, on every evaluation
ScheduleSpec = Union[Schedule, Mapping[str, Any]]


@dataclass(frozen=True)
class ProcessCommand:
    """An external program, given as a shell-style command line."""
    command_line: str
    work_path: Optional[str] = None
    arguments: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RoutineCommand:
    """A zero-argument coroutine function run inside the executor's loop."""
    routine: Callable[[], Awaitable[Any]]

    @property
    def name(self) -> str:
        return getattr(self.routine, "__qualname__", repr(self.routine))


Command = Union[ProcessCommand, RoutineCommand]


def as_command(
    value: Union[Command, str, Callable[[], Awaitable[Any]]],
    work_path: Optional[str] = None,
    arguments: Sequence[str] = ()
) -> Command:
    """
    Build a Command variant from a command line or a coroutine function.

    Args:
        value: Existing command, command line string or coroutine function
        work_path: Working directory (command lines only)
        arguments: Extra arguments appended after the command line tokens

    Returns:
        ProcessCommand or RoutineCommand
    """
    if isinstance(value, (ProcessCommand, RoutineCommand)):
        return value
    if isinstance(value, str):
        return ProcessCommand(value, work_path=work_path, arguments=tuple(arguments))
    if callable(value):
        return RoutineCommand(value)
    raise TypeError(f"Unsupported command type: {type(value).__name__}")


def _new_task_id() -> str:
    return uuid.uuid4().hex


@dataclass
class TaskDefinition:
    """What the caller wants run, and when."""
    command: Command
    schedule: Union[ScheduleSpec, Sequence[ScheduleSpec]] = ()
    id: str = field(default_factory=_new_task_id)
    enabled: bool = True
    timeout: Optional[float] = None  # seconds, None = no watchdog
    description: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = _new_task_id()
        self.command = as_command(self.command)

    @property
    def schedules(self) -> List[ScheduleSpec]:
        """The schedule entries as a list (a single entry is wrapped)."""
        if self.schedule is None:
            return []
        if isinstance(self.schedule, (FixedSchedule, IntervalSchedule, Mapping)):
            return [self.schedule]
        return list(self.schedule)


@dataclass
class TaskRuntimeState:
    """Mutable execution state, owned by the executor."""
    status: TaskState = TaskState.REPOSE
    running_start: Optional[datetime] = None
    running_end: Optional[datetime] = None
    process: Optional[asyncio.subprocess.Process] = None
    routine: Optional["asyncio.Task[Any]"] = None
    stop_waiter: Optional["asyncio.Future[bool]"] = None

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and end of the last run."""
        if self.running_start is None or self.running_end is None:
            return None
        return (self.running_end - self.running_start).total_seconds()

    def clear_timings(self):
        self.running_start = None
        self.running_end = None


@dataclass
class Task:
    """A registered task: definition plus runtime state."""
    definition: TaskDefinition
    runtime: TaskRuntimeState = field(default_factory=TaskRuntimeState)

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def status(self) -> TaskState:
        return self.runtime.status

    @property
    def is_running(self) -> bool:
        return self.runtime.status == TaskState.RUNNING


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one run, handed to the after-execute hook."""
    exit_code: Optional[int]
    error: bool
    killed: bool


@dataclass(frozen=True)
class TaskStatusReport:
    """Snapshot of a task's live status."""
    id: str
    status: TaskState
    enabled: bool
    running_start: Optional[datetime]
    running_end: Optional[datetime]
    duration: Optional[float]
    pid: Optional[int] = None

    @classmethod
    def from_task(cls, task: Task) -> 'TaskStatusReport':
        process = task.runtime.process
        return cls(
            id=task.id,
            status=task.status,
            enabled=task.definition.enabled,
            running_start=task.runtime.running_start,
            running_end=task.runtime.running_end,
            duration=task.runtime.duration,
            pid=process.pid if process is not None else None
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'status': self.status.value,
            'enabled': self.enabled,
            'running_start': self.running_start.isoformat() if self.running_start else None,
            'running_end': self.running_end.isoformat() if self.running_end else None,
            'duration': self.duration,
            'pid': self.pid
        }

"""
Minute-resolution task executor

Runs shell commands and coroutines on cron-like schedules from inside an
asyncio application.

Features:
- Fixed hour/minute schedules and every-N-minutes interval schedules
- Calendar filters (months, days, week days) and validity windows
- Lifecycle hooks and streamed stdout/stderr
- Manual runs and cooperative stops of whole process trees
"""

from taskexec.errors import (
    ConfigError,
    ScheduleValidationError,
    TaskAlreadyRunningError,
    TaskExecError,
    TaskNotFoundError,
)
from taskexec.models import (
    CalendarFilter,
    ExecutionKind,
    ExecutionResult,
    FixedSchedule,
    IntervalSchedule,
    ProcessCommand,
    RoutineCommand,
    StreamKind,
    Task,
    TaskDefinition,
    TaskState,
    TaskStatusReport,
)
from taskexec.matcher import is_due, matches
from taskexec.service import TaskExecutor
from taskexec.validation import parse_schedule

__version__ = "0.1.0"
__all__ = [
    "TaskExecutor",
    "TaskDefinition",
    "Task",
    "TaskState",
    "TaskStatusReport",
    "ExecutionKind",
    "ExecutionResult",
    "StreamKind",
    "FixedSchedule",
    "IntervalSchedule",
    "CalendarFilter",
    "ProcessCommand",
    "RoutineCommand",
    "matches",
    "is_due",
    "parse_schedule",
    "TaskExecError",
    "TaskNotFoundError",
    "TaskAlreadyRunningError",
    "ScheduleValidationError",
    "ConfigError",
]

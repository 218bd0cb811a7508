"""
Exceptions raised by the task executor.
"""

from typing import List, Optional


class TaskExecError(Exception):
    """Base class for task executor errors."""
    pass


class TaskNotFoundError(TaskExecError):
    """Raised when a task id is not registered."""

    def __init__(self, task_id: str):
        super().__init__(f"Task '{task_id}' not found")
        self.task_id = task_id


class TaskAlreadyRunningError(TaskExecError):
    """Raised when a manual run is requested for a task that is running."""

    def __init__(self, task_id: str):
        super().__init__(f"Task '{task_id}' is already running")
        self.task_id = task_id


class ScheduleValidationError(TaskExecError):
    """
    Raised when a raw schedule mapping has an invalid shape.

    Attributes:
        messages: Human-readable validation messages
    """

    def __init__(self, messages: List[str], index: Optional[int] = None):
        self.messages = list(messages)
        self.index = index
        prefix = f"Schedule {index}: " if index is not None else ""
        super().__init__(prefix + "; ".join(self.messages))


class ConfigError(TaskExecError):
    """Raised when a task configuration file cannot be loaded."""
    pass

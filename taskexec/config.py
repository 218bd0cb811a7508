"""
Task executor configuration management.

Handles loading, saving, and validating the JSON task file. Schedules are
stored as raw objects and only turned into schedule variants when checked
or evaluated, so one bad entry never prevents the rest from loading.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from taskexec.errors import ConfigError
from taskexec.models import TaskDefinition, as_command
from taskexec.validation import validate_schedule

load_dotenv()

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "TASKEXEC_CONFIG_PATH"
ENV_DATA_DIR = "TASKEXEC_DATA_DIR"
ENV_LOG_DIR = "TASKEXEC_LOG_DIR"


def get_data_dir() -> Path:
    """Get the data directory for executor files."""
    data_dir = os.environ.get(ENV_DATA_DIR)
    if data_dir:
        return Path(data_dir).expanduser()
    return Path.home() / ".taskexec"


def get_log_dir() -> Path:
    """Get the log directory from environment or default."""
    if os.environ.get(ENV_LOG_DIR):
        return Path(os.environ[ENV_LOG_DIR]).expanduser()
    return get_data_dir() / "logs"


@dataclass
class TaskConfig:
    """
    One task entry of the configuration file.

    `schedule` holds raw schedule objects, e.g.
    ``[{"hours": [17], "minutes": [5, 6]}, {"every": 5, "startTime": "10:30:00"}]``.
    """
    id: str
    command: str
    schedule: List[Dict[str, Any]] = field(default_factory=list)
    work_path: Optional[str] = None
    arguments: List[str] = field(default_factory=list)
    enabled: bool = True
    timeout: Optional[float] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskConfig':
        schedule = data.get('schedule', [])
        if isinstance(schedule, dict):
            schedule = [schedule]
        return cls(
            id=data.get('id') or '',
            command=data.get('command') or '',
            schedule=list(schedule or []),
            work_path=data.get('work_path', data.get('workPath')),
            arguments=list(data.get('arguments') or []),
            enabled=data.get('enabled', True),
            timeout=data.get('timeout'),
            description=data.get('description')
        )

    def to_definition(self) -> TaskDefinition:
        """Build the executor's task definition."""
        return TaskDefinition(
            id=self.id,
            command=as_command(self.command, work_path=self.work_path, arguments=self.arguments),
            schedule=list(self.schedule),
            enabled=self.enabled,
            timeout=self.timeout,
            description=self.description
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None  # Set dynamically in __post_init__
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    def __post_init__(self):
        if self.file is None:
            self.file = str(get_log_dir() / "taskexec.log")


class ExecutorConfig:
    """
    Task file manager.

    Configuration path priority:
    1. Explicit config_path argument
    2. TASKEXEC_CONFIG_PATH environment variable
    3. $TASKEXEC_DATA_DIR/tasks.json, or ~/.taskexec/tasks.json
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize executor configuration.

        Args:
            config_path: Path to configuration file. If None, uses env var or default.
        """
        if config_path:
            self.config_path = Path(config_path).expanduser()
        elif os.environ.get(ENV_CONFIG_PATH):
            self.config_path = Path(os.environ[ENV_CONFIG_PATH]).expanduser()
        else:
            self.config_path = get_data_dir() / "tasks.json"
        self.tasks: List[TaskConfig] = []
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path.exists():
            self.load()
        else:
            logger.info(f"No config found at {self.config_path}, starting with no tasks")

    def load(self):
        """
        Load configuration from JSON file.

        Raises:
            ConfigError: If the file cannot be read or is not valid JSON
        """
        try:
            with open(self.config_path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to load config from {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{self.config_path}: top level must be an object")

        try:
            self.tasks = [TaskConfig.from_dict(t) for t in data.get('tasks', [])]
            if 'logging' in data:
                self.logging = LoggingConfig(**data['logging'])
        except (TypeError, AttributeError) as e:
            raise ConfigError(f"{self.config_path}: malformed entry: {e}") from e

        logger.info(f"Loaded {len(self.tasks)} task(s) from {self.config_path}")

    def save(self):
        """Save configuration to JSON file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            'tasks': [asdict(task) for task in self.tasks],
            'logging': asdict(self.logging)
        }

        with open(self.config_path, 'w') as f:
            json.dump(data, f, indent=2)

        logger.info(f"Saved configuration to {self.config_path}")

    def add_task(self, task: TaskConfig):
        """Add a new task to configuration."""
        if any(t.id == task.id for t in self.tasks):
            raise ValueError(f"Task with id '{task.id}' already exists")
        self.tasks.append(task)
        logger.info(f"Added task: {task.id}")

    def remove_task(self, task_id: str) -> bool:
        """
        Remove a task by id.

        Returns:
            True if task was removed, False if not found
        """
        initial_len = len(self.tasks)
        self.tasks = [t for t in self.tasks if t.id != task_id]
        return len(self.tasks) < initial_len

    def get_task(self, task_id: str) -> Optional[TaskConfig]:
        """Get task configuration by id."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        seen = set()

        for index, task in enumerate(self.tasks):
            name = task.id or f"#{index}"
            if task.id:
                if task.id in seen:
                    errors.append(f"Task {name}: duplicate id")
                seen.add(task.id)

            if not isinstance(task.command, str):
                errors.append(f"Task {name}: 'command' must be a string")
            elif not task.command.strip():
                errors.append(f"Task {name}: 'command' cannot be empty")

            if task.work_path is not None and not isinstance(task.work_path, str):
                errors.append(f"Task {name}: 'work_path' must be a string")
            for i, argument in enumerate(task.arguments):
                if not isinstance(argument, str):
                    errors.append(f"Task {name}: argument {i} must be a string, got {argument!r}")

            if not task.schedule:
                errors.append(f"Task {name}: 'schedule' needs at least one entry")
            for i, schedule in enumerate(task.schedule):
                for message in validate_schedule(schedule):
                    errors.append(f"Task {name}: schedule {i}: {message}")

            if task.timeout is not None and task.timeout <= 0:
                errors.append(f"Task {name}: 'timeout' must be positive")

        return errors

    def to_definitions(self) -> List[TaskDefinition]:
        """Task definitions for every configured task (ids generated where missing)."""
        return [task.to_definition() for task in self.tasks]

    def __repr__(self):
        return f"ExecutorConfig(tasks={len(self.tasks)}, path={self.config_path})"

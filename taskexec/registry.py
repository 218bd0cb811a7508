"""
Task registry: task id -> definition + runtime state.
"""

import logging
from typing import Dict, Iterator, List, Optional

from taskexec.models import Task, TaskDefinition, TaskRuntimeState, TaskState

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    In-memory mapping of registered tasks.

    Nothing is persisted; a new registry starts empty.
    """

    def __init__(self):
        self._tasks: Dict[str, Task] = {}

    def upsert(self, *definitions: TaskDefinition) -> List[str]:
        """
        Register or replace task definitions.

        Known ids get their definition swapped in place; runtime state is
        kept, but a task that is not running loses its stale timings. New
        ids start in REPOSE.

        Returns:
            The ids of the given definitions, in order
        """
        ids = []
        for definition in definitions:
            task = self._tasks.get(definition.id)
            if task is None:
                self._tasks[definition.id] = Task(definition, TaskRuntimeState())
                logger.debug(f"Registered task '{definition.id}'")
            else:
                task.definition = definition
                if task.runtime.status == TaskState.REPOSE:
                    task.runtime.clear_timings()
                logger.debug(f"Updated task '{definition.id}'")
            ids.append(definition.id)
        return ids

    def remove(self, task_id: str) -> bool:
        """
        Drop a task immediately.

        A running task's process is not stopped: it keeps running untracked.

        Returns:
            True if the task existed
        """
        task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        if task.is_running:
            logger.warning(f"Task '{task_id}' removed while running; its process is no longer tracked")
        return True

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def ids(self) -> List[str]:
        return list(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        # Snapshot so callers may add/remove while iterating
        return iter(list(self._tasks.values()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __repr__(self):
        return f"TaskRegistry(tasks={len(self._tasks)})"

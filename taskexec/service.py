"""
Task executor service.

Ties the pieces together: a registry of tasks, a minute ticker that
evaluates their schedules, a runner that executes due tasks and a kill
coordinator for cooperative stops.

Typical use::

    executor = TaskExecutor([
        TaskDefinition(id="report", command="python report.py",
                       schedule={"hours": [17], "minutes": [5]}),
    ])
    executor.on_output = lambda task_id, kind, text: print(task_id, text)
    executor.start()          # inside a running event loop
"""

import asyncio
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from taskexec.errors import TaskAlreadyRunningError, TaskNotFoundError
from taskexec.kill import KillCoordinator
from taskexec.log import LABEL, EngineLog, LogSink
from taskexec.matcher import is_due
from taskexec.models import ExecutionKind, Task, TaskDefinition, TaskStatusReport
from taskexec.registry import TaskRegistry
from taskexec.runner import AfterHook, BeforeHook, OutputHook, ProcessRunner
from taskexec.ticker import Ticker, minute_floor


class TaskExecutor:
    """
    In-process scheduler for shell commands and coroutines.

    All state lives in one asyncio event loop; no locking is needed as long
    as the executor is only used from that loop.
    """

    def __init__(
        self,
        tasks: Iterable[TaskDefinition] = (),
        log: Optional[LogSink] = None,
        clock: Callable[[], datetime] = datetime.now,
        misfire_grace_time: int = 5
    ):
        """
        Initialize the executor.

        Args:
            tasks: Task definitions to register right away
            log: Log sink (defaults to the stdlib-backed EngineLog)
            clock: Source of the current local time
            misfire_grace_time: Seconds a late tick may still run
        """
        self.log = log or EngineLog()
        self.clock = clock
        self.registry = TaskRegistry()
        self.killer = KillCoordinator(self.log)
        self.runner = ProcessRunner(self.log, self.killer, clock=clock)
        self.ticker = Ticker(self.tick, clock=clock, misfire_grace_time=misfire_grace_time)

        tasks = list(tasks)
        if tasks:
            self.add(*tasks)

    # Hooks are stored on the runner, which calls them

    @property
    def on_before_execute(self) -> Optional[BeforeHook]:
        return self.runner.before_execute

    @on_before_execute.setter
    def on_before_execute(self, hook: Optional[BeforeHook]):
        self.runner.before_execute = hook

    @property
    def on_after_execute(self) -> Optional[AfterHook]:
        return self.runner.after_execute

    @on_after_execute.setter
    def on_after_execute(self, hook: Optional[AfterHook]):
        self.runner.after_execute = hook

    @property
    def on_output(self) -> Optional[OutputHook]:
        return self.runner.on_output

    @on_output.setter
    def on_output(self, hook: Optional[OutputHook]):
        self.runner.on_output = hook

    @property
    def tasks(self) -> TaskRegistry:
        return self.registry

    def add(self, *definitions: TaskDefinition) -> List[str]:
        """
        Register or replace tasks.

        Returns:
            Assigned task ids, in order
        """
        ids = self.registry.upsert(*definitions)
        for task_id in ids:
            self.log.debug(LABEL, f"Task {task_id} registered")
        return ids

    def remove(self, task_id: str) -> bool:
        """
        Remove a task. A running process is left running, untracked.

        Returns:
            True if removed, False if not found
        """
        removed = self.registry.remove(task_id)
        if removed:
            self.log.debug(LABEL, f"Task {task_id} removed")
        return removed

    def get(self, task_id: str) -> Optional[Task]:
        return self.registry.get(task_id)

    def _require(self, task_id: str) -> Task:
        task = self.registry.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def start(self):
        """Start the minute tick loop. Must be called from a running event loop."""
        self.log.system(LABEL, "System started")
        self.ticker.start()

    def stop(self):
        """Stop the tick loop; running executions are not affected."""
        self.ticker.stop()
        self.log.system(LABEL, "System stopped")

    def shutdown(self):
        """Stop ticking and release the tick scheduler."""
        self.ticker.shutdown()

    @property
    def running(self) -> bool:
        return self.ticker.running

    async def tick(self, now: Optional[datetime] = None):
        """
        Run one evaluation pass.

        Every enabled task that is not running and has a due schedule is
        dispatched. Called by the ticker once per minute.
        """
        now = minute_floor(now or self.clock())
        self.log.info(LABEL, f"Checking tasks to run ({now:%Y-%m-%d %H:%M})")

        for task in self.registry:
            if not task.definition.enabled or task.is_running:
                continue
            schedules = task.definition.schedules
            if not schedules:
                continue
            if not is_due(now, schedules, log=self.log, owner=task.id):
                continue
            try:
                await self.runner.dispatch(task, ExecutionKind.AUTOMATIC)
            except Exception as e:
                self.log.error(LABEL, f"Task {task.id} could not be dispatched", e)

    async def run_task(self, task_id: str) -> bool:
        """
        Run a task now, regardless of its schedule.

        Returns:
            True if started, False if the command could not be spawned

        Raises:
            TaskNotFoundError: Unknown id
            TaskAlreadyRunningError: The task is running
        """
        task = self._require(task_id)
        if task.is_running:
            raise TaskAlreadyRunningError(task_id)
        return await self.runner.dispatch(task, ExecutionKind.MANUAL)

    def stop_task(self, task_id: str) -> "asyncio.Future[bool]":
        """
        Request a cooperative stop of a running task.

        Returns:
            Future resolving to True once the process exited, or False right
            away when the task was idle

        Raises:
            TaskNotFoundError: Unknown id
        """
        return self.killer.request_stop(self._require(task_id))

    def status(self) -> List[TaskStatusReport]:
        """Live status of every registered task."""
        return [TaskStatusReport.from_task(task) for task in self.registry]

    async def join(self):
        """Wait for every execution started so far to settle."""
        await self.runner.join()

    def __repr__(self):
        return f"TaskExecutor(tasks={len(self.registry)}, running={self.running})"

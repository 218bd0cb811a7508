"""
Process runner.

Drives a task through REPOSE -> RUNNING -> REPOSE for one execution:
spawns the command (or starts the coroutine), forwards captured output,
and writes the outcome back into the task's runtime state.
"""

import asyncio
import codecs
import inspect
import os
import shlex
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from taskexec.kill import WINDOWS, KillCoordinator, process_group_options
from taskexec.log import LABEL, LogSink
from taskexec.models import (
    ExecutionKind,
    ExecutionResult,
    ProcessCommand,
    RoutineCommand,
    StreamKind,
    Task,
    TaskState,
)

CHUNK_SIZE = 64 * 1024

BeforeHook = Callable[[Task, ExecutionKind], Union[None, Awaitable[None]]]
AfterHook = Callable[[Task, ExecutionKind, ExecutionResult], Union[None, Awaitable[None]]]
OutputHook = Callable[[str, StreamKind, str], Union[None, Awaitable[None]]]


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in "\"'":
        return token[1:-1]
    return token


def split_command(command: ProcessCommand) -> List[str]:
    """
    Tokenize a command line; quoted substrings stay single tokens.

    Raises:
        ValueError: On unbalanced quotes or an empty command line
        TypeError: If the command line or an argument is not a string
    """
    if not isinstance(command.command_line, str):
        raise TypeError(f"command line must be a string, not {type(command.command_line).__name__}")
    for argument in command.arguments:
        if not isinstance(argument, str):
            raise TypeError(f"argument {argument!r} must be a string, not {type(argument).__name__}")
    if WINDOWS:
        tokens = [_unquote(t) for t in shlex.split(command.command_line, posix=False)]
    else:
        tokens = shlex.split(command.command_line)
    tokens.extend(command.arguments)
    if not tokens:
        raise ValueError("empty command line")
    return tokens


class ProcessRunner:
    """
    Starts task executions and tracks them until they settle.

    Hooks (all optional, sync or async):
        before_execute(task, kind)
        after_execute(task, kind, result)
        on_output(task_id, stream_kind, text)

    Hook exceptions are logged and never interrupt an execution.
    """

    def __init__(
        self,
        log: LogSink,
        killer: KillCoordinator,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.log = log
        self.killer = killer
        self.clock = clock
        self.before_execute: Optional[BeforeHook] = None
        self.after_execute: Optional[AfterHook] = None
        self.on_output: Optional[OutputHook] = None
        self._supervisors: Set["asyncio.Task[Any]"] = set()

    @property
    def active(self) -> int:
        """Number of executions still being supervised."""
        return len(self._supervisors)

    async def dispatch(self, task: Task, kind: ExecutionKind = ExecutionKind.AUTOMATIC) -> bool:
        """
        Start one execution of a task.

        Returns as soon as the process is spawned (or the coroutine is
        scheduled); completion is handled in the background.

        Returns:
            False if the task was already running or could not be started
        """
        if task.is_running:
            return False

        runtime = task.runtime
        runtime.status = TaskState.RUNNING
        runtime.running_start = self.clock()
        runtime.running_end = None
        runtime.process = None
        runtime.routine = None
        runtime.stop_waiter = None

        self.log.info(LABEL, f"Task {task.id} started ({kind.value})")
        await self._call_hook("before-execute", self.before_execute, task, kind)

        command = task.definition.command
        try:
            match command:
                case ProcessCommand():
                    return await self._spawn(task, command, kind)
                case RoutineCommand():
                    runtime.routine = self._track(self._run_routine(task, command, kind))
                    return True
        except Exception as e:
            await self._fail(task, f"Could not start: {e}", e)
            return False
        await self._fail(task, f"Unsupported command {command!r}")
        return False

    async def join(self):
        """Wait until every execution started so far has settled."""
        while self._supervisors:
            await asyncio.gather(*list(self._supervisors), return_exceptions=True)

    async def _spawn(self, task: Task, command: ProcessCommand, kind: ExecutionKind) -> bool:
        try:
            argv = split_command(command)
        except (ValueError, TypeError) as e:
            await self._fail(task, f"Invalid command line {command.command_line!r}: {e}")
            return False

        try:
            cwd = os.path.expanduser(command.work_path) if command.work_path else None
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **process_group_options()
            )
        except (OSError, ValueError, TypeError) as e:
            # Non-str arguments or work path, embedded NUL bytes, missing executable
            await self._fail(task, f"Could not start {argv[0]!r}: {e}", e)
            return False

        task.runtime.process = process
        self.log.debug(LABEL, f"Task {task.id} spawned PID {process.pid}: {' '.join(argv)}")
        self._track(self._supervise(task, process, kind))
        return True

    async def _supervise(self, task: Task, process: asyncio.subprocess.Process, kind: ExecutionKind):
        pumps = [
            asyncio.create_task(self._pump(task.id, process.stdout, StreamKind.OUT)),
            asyncio.create_task(self._pump(task.id, process.stderr, StreamKind.ERROR)),
        ]

        timeout = task.definition.timeout
        if timeout:
            try:
                await asyncio.wait_for(asyncio.shield(process.wait()), timeout)
            except asyncio.TimeoutError:
                self.log.warning(LABEL, f"Task {task.id} exceeded its timeout of {timeout}s, stopping it")
                self.killer.request_stop(task)

        exit_code = await process.wait()
        await asyncio.gather(*pumps)
        await self._finish(task, kind, exit_code, process)

    async def _run_routine(self, task: Task, command: RoutineCommand, kind: ExecutionKind):
        owner = asyncio.current_task()
        try:
            result = command.routine()
            if inspect.isawaitable(result):
                await result
            exit_code = 0
        except asyncio.CancelledError:
            self._settle(task, owner)
            self.log.warning(LABEL, f"Task {task.id} cancelled")
            raise
        except Exception as e:
            self.log.error(LABEL, f"Task {task.id} routine {command.name} raised an exception", e)
            exit_code = 1
        await self._finish(task, kind, exit_code, owner)

    async def _pump(self, task_id: str, stream: Optional[asyncio.StreamReader], kind: StreamKind):
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                await self._emit(task_id, kind, text)
        tail = decoder.decode(b"", final=True)
        if tail:
            await self._emit(task_id, kind, tail)

    def _settle(self, task: Task, owner: Any) -> bool:
        """Move the task back to REPOSE if `owner` is still its current execution."""
        runtime = task.runtime
        if not task.is_running or (runtime.process is not owner and runtime.routine is not owner):
            return False
        runtime.status = TaskState.REPOSE
        runtime.running_end = self.clock()
        runtime.process = None
        runtime.routine = None
        return True

    async def _finish(self, task: Task, kind: ExecutionKind, exit_code: Optional[int], owner: Any):
        if self._settle(task, owner):
            self.log.info(LABEL, f"Task {task.id} finished (exit code {exit_code})")

        runtime = task.runtime
        waiter = runtime.stop_waiter
        runtime.stop_waiter = None

        result = ExecutionResult(
            exit_code=exit_code,
            error=exit_code != 0,
            killed=waiter is not None
        )
        await self._call_hook("after-execute", self.after_execute, task, kind, result)

        if waiter is not None and not waiter.done():
            waiter.set_result(True)

    async def _fail(self, task: Task, message: str, error: Optional[BaseException] = None):
        runtime = task.runtime
        runtime.status = TaskState.REPOSE
        runtime.running_end = self.clock()
        runtime.process = None
        runtime.routine = None

        self.log.error(LABEL, f"Task {task.id} finished with error: {message}", error)
        if self.on_output is not None:
            await self._call_hook("output", self.on_output, task.id, StreamKind.ERROR, message)

    async def _emit(self, task_id: str, kind: StreamKind, text: str):
        if self.on_output is None:
            if kind == StreamKind.OUT:
                self.log.info(LABEL, f"STDOUT [{task_id}]: {text.strip()}")
            else:
                self.log.error(LABEL, f"STDERR [{task_id}]: {text.strip()}")
            return
        await self._call_hook("output", self.on_output, task_id, kind, text)

    async def _call_hook(self, name: str, hook: Optional[Callable[..., Any]], *args: Any):
        if hook is None:
            return
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.log.error(LABEL, f"The {name} hook raised an exception", e)

    def _track(self, coro: Awaitable[Any]) -> "asyncio.Task[Any]":
        supervisor = asyncio.ensure_future(coro)
        self._supervisors.add(supervisor)
        supervisor.add_done_callback(self._supervisors.discard)
        return supervisor

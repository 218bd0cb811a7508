"""
Tests for the process runner.

Commands are run with the current interpreter, so no shell utilities are
assumed to exist.
"""

import asyncio
import os
import sys

import pytest

from taskexec.kill import KillCoordinator
from taskexec.models import (
    ExecutionKind,
    ProcessCommand,
    StreamKind,
    Task,
    TaskDefinition,
    TaskState,
)
from taskexec.runner import ProcessRunner, split_command

pytestmark = pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX process groups")


def make_runner(log):
    return ProcessRunner(log, KillCoordinator(log))


def make_task(command, task_id="t1", **kwargs):
    return Task(TaskDefinition(id=task_id, command=command, **kwargs))


class Collector:
    """Records hook calls."""

    def __init__(self):
        self.before = []
        self.after = []
        self.chunks = []

    def on_before(self, task, kind):
        self.before.append((task.id, kind, task.status))

    def on_after(self, task, kind, result):
        self.after.append((task.id, kind, result, task.status))

    def on_output(self, task_id, kind, text):
        self.chunks.append((task_id, kind, text))

    def text(self, kind):
        return "".join(text for _, k, text in self.chunks if k == kind)

    def attach(self, runner):
        runner.before_execute = self.on_before
        runner.after_execute = self.on_after
        runner.on_output = self.on_output


def test_split_command_keeps_quoted_tokens():
    command = ProcessCommand('backup --label "nightly run" --dry', arguments=("extra arg",))
    assert split_command(command) == ["backup", "--label", "nightly run", "--dry", "extra arg"]


def test_split_command_rejects_empty_and_unbalanced():
    with pytest.raises(ValueError):
        split_command(ProcessCommand("   "))
    with pytest.raises(ValueError):
        split_command(ProcessCommand('echo "oops'))


@pytest.mark.asyncio
async def test_output_is_streamed_by_kind(recording_log, python_command):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    task = make_task(python_command("import sys; print('hello'); print('oops', file=sys.stderr)"))

    started = await runner.dispatch(task, ExecutionKind.MANUAL)

    assert started is True
    assert task.status == TaskState.RUNNING
    assert task.runtime.process is not None
    assert task.runtime.running_start is not None
    assert task.runtime.running_end is None

    await runner.join()

    assert collector.text(StreamKind.OUT).strip() == "hello"
    assert collector.text(StreamKind.ERROR).strip() == "oops"
    assert all(task_id == "t1" for task_id, _, _ in collector.chunks)
    assert task.status == TaskState.REPOSE
    assert task.runtime.process is None
    assert task.runtime.running_end >= task.runtime.running_start
    assert task.runtime.duration >= 0


@pytest.mark.asyncio
async def test_hooks_see_lifecycle(recording_log, python_command):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    task = make_task(python_command("import sys; sys.exit(3)"))

    await runner.dispatch(task, ExecutionKind.AUTOMATIC)
    await runner.join()

    assert collector.before == [("t1", ExecutionKind.AUTOMATIC, TaskState.RUNNING)]
    assert len(collector.after) == 1
    task_id, kind, result, status = collector.after[0]
    assert kind == ExecutionKind.AUTOMATIC
    assert status == TaskState.REPOSE
    assert result.exit_code == 3
    assert result.error is True
    assert result.killed is False


@pytest.mark.asyncio
async def test_arguments_and_quoted_tokens_reach_the_program(recording_log, python_command):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    command = ProcessCommand(
        python_command("import sys; print(sys.argv[1:])", "two words"),
        arguments=("a b", "c")
    )

    await runner.dispatch(make_task(command))
    await runner.join()

    assert collector.text(StreamKind.OUT).strip() == "['two words', 'a b', 'c']"


@pytest.mark.asyncio
async def test_work_path_is_used(recording_log, python_command, tmp_path):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    command = ProcessCommand(python_command("import os; print(os.getcwd())"), work_path=str(tmp_path))

    await runner.dispatch(make_task(command))
    await runner.join()

    printed = collector.text(StreamKind.OUT).strip()
    assert os.path.realpath(printed) == os.path.realpath(str(tmp_path))


@pytest.mark.asyncio
async def test_output_is_logged_without_hook(recording_log, python_command):
    runner = make_runner(recording_log)
    task = make_task(python_command("print('logged line')"))

    await runner.dispatch(task)
    await runner.join()

    assert any("STDOUT [t1]: logged line" in message for message in recording_log.messages("info"))
    assert any("finished (exit code 0)" in message for message in recording_log.messages("info"))


@pytest.mark.asyncio
async def test_spawn_failure_returns_task_to_repose(recording_log):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    task = make_task("definitely-not-an-installed-program-7f3a")

    started = await runner.dispatch(task)

    assert started is False
    assert task.status == TaskState.REPOSE
    assert task.runtime.running_end is not None
    assert task.runtime.process is None
    assert collector.after == []
    assert [kind for _, kind, _ in collector.chunks] == [StreamKind.ERROR]
    assert recording_log.messages("error")
    assert runner.active == 0


@pytest.mark.asyncio
async def test_unbalanced_quotes_fail_without_spawning(recording_log):
    runner = make_runner(recording_log)
    task = make_task('echo "oops')

    assert await runner.dispatch(task) is False
    assert task.status == TaskState.REPOSE


def test_split_command_rejects_non_string_arguments():
    with pytest.raises(TypeError):
        split_command(ProcessCommand(sys.executable, arguments=("-c", 5)))


@pytest.mark.asyncio
@pytest.mark.parametrize("command", [
    ProcessCommand(sys.executable, arguments=("-c", 5)),
    ProcessCommand("echo a\x00b"),
    ProcessCommand(sys.executable, work_path=5),
], ids=["int-argument", "nul-byte", "int-work-path"])
async def test_bad_command_input_returns_task_to_repose(recording_log, command):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    task = make_task(command)

    assert await runner.dispatch(task) is False

    assert task.status == TaskState.REPOSE
    assert task.runtime.process is None
    assert task.runtime.running_end is not None
    assert [kind for _, kind, _ in collector.chunks] == [StreamKind.ERROR]
    assert collector.after == []
    assert recording_log.messages("error")
    assert runner.active == 0


@pytest.mark.asyncio
async def test_hook_exceptions_do_not_break_execution(recording_log, python_command):
    runner = make_runner(recording_log)

    def explode(*args):
        raise RuntimeError("hook failure")

    runner.before_execute = explode
    runner.after_execute = explode
    runner.on_output = explode
    task = make_task(python_command("print('x')"))

    assert await runner.dispatch(task) is True
    await runner.join()

    assert task.status == TaskState.REPOSE
    errors = recording_log.messages("error")
    assert any("before-execute" in message for message in errors)
    assert any("after-execute" in message for message in errors)
    assert any("output" in message for message in errors)


@pytest.mark.asyncio
async def test_async_hooks_are_awaited(recording_log, python_command):
    runner = make_runner(recording_log)
    results = []

    async def after(task, kind, result):
        await asyncio.sleep(0)
        results.append(result.exit_code)

    runner.after_execute = after
    await runner.dispatch(make_task(python_command("pass")))
    await runner.join()

    assert results == [0]


@pytest.mark.asyncio
async def test_routine_runs_in_the_loop(recording_log):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    calls = []

    async def job():
        await asyncio.sleep(0)
        calls.append("ran")

    task = make_task(job)
    assert await runner.dispatch(task, ExecutionKind.MANUAL) is True
    assert task.status == TaskState.RUNNING
    assert task.runtime.routine is not None

    await runner.join()

    assert calls == ["ran"]
    assert task.status == TaskState.REPOSE
    assert task.runtime.routine is None
    assert collector.after[0][2].exit_code == 0


@pytest.mark.asyncio
async def test_failing_routine_reports_error(recording_log):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)

    async def job():
        raise RuntimeError("boom")

    task = make_task(job)
    await runner.dispatch(task)
    await runner.join()

    result = collector.after[0][2]
    assert result.exit_code == 1
    assert result.error is True
    assert task.status == TaskState.REPOSE
    assert any("raised an exception" in message for message in recording_log.messages("error"))


@pytest.mark.asyncio
async def test_running_task_is_not_dispatched_twice(recording_log, python_command):
    runner = make_runner(recording_log)
    task = make_task(python_command("import time; time.sleep(30)"))

    assert await runner.dispatch(task) is True
    process = task.runtime.process

    assert await runner.dispatch(task, ExecutionKind.MANUAL) is False
    assert task.runtime.process is process
    assert runner.active == 1

    assert await asyncio.wait_for(runner.killer.request_stop(task), 10) is True
    await runner.join()


@pytest.mark.asyncio
async def test_timeout_stops_the_process(recording_log, python_command):
    runner = make_runner(recording_log)
    collector = Collector()
    collector.attach(runner)
    task = make_task(python_command("import time; time.sleep(30)"), timeout=0.5)

    await runner.dispatch(task)
    await asyncio.wait_for(runner.join(), 10)

    result = collector.after[0][2]
    assert result.killed is True
    assert result.error is True
    assert task.status == TaskState.REPOSE
    assert task.runtime.duration < 10
    assert any("timeout" in message for message in recording_log.messages("warning"))

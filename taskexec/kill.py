"""
Cooperative termination of running tasks.

A stop request signals the task's whole process tree and hands back a
future. The future is resolved by the runner's ordinary exit handling, so a
stop is only reported once the process has actually gone away.
"""

import asyncio
import os
import signal
import subprocess
import sys

from taskexec.log import LABEL, LogSink
from taskexec.models import Task

WINDOWS = sys.platform.startswith("win")
TASKKILL_TIMEOUT = 5


def process_group_options() -> dict:
    """Spawn options that put the child in its own process group."""
    if WINDOWS:
        return {'creationflags': subprocess.CREATE_NEW_PROCESS_GROUP}
    return {'start_new_session': True}


def signal_process_tree(pid: int) -> None:
    """
    Ask a process and all of its children to terminate.

    On Windows this runs ``taskkill /T /F`` (forced, recursive). Elsewhere it
    sends SIGTERM to the process group the child leads.

    Raises:
        ProcessLookupError: If the process no longer exists
        OSError: If the signal could not be delivered
        subprocess.TimeoutExpired: If taskkill did not finish in time
    """
    if WINDOWS:
        subprocess.run(
            ["taskkill", "/PID", str(pid), "/T", "/F"],
            capture_output=True,
            timeout=TASKKILL_TIMEOUT,
            check=False
        )
    else:
        os.killpg(pid, signal.SIGTERM)


class KillCoordinator:
    """Issues stop signals and registers the pending resolution on the task."""

    def __init__(self, log: LogSink):
        self.log = log

    def request_stop(self, task: Task) -> "asyncio.Future[bool]":
        """
        Request a cooperative stop of a running task.

        Returns:
            Future resolving to True once the signalled process has exited,
            or already resolved to False when there was nothing to signal.
            A second request while one is pending returns the pending future.
        """
        loop = asyncio.get_running_loop()

        pending = task.runtime.stop_waiter
        if pending is not None and not pending.done():
            self.log.debug(LABEL, f"Stop of task {task.id} already requested")
            return pending

        process = task.runtime.process
        if not task.is_running or process is None or process.returncode is not None:
            idle = loop.create_future()
            idle.set_result(False)
            return idle

        waiter = loop.create_future()
        # Registered before signalling: the exit may be observed at any point after
        task.runtime.stop_waiter = waiter

        self.log.info(LABEL, f"Stopping task {task.id} (PID {process.pid})")
        try:
            signal_process_tree(process.pid)
        except ProcessLookupError:
            self.log.debug(LABEL, f"Process {process.pid} of task {task.id} already exited")
        except (OSError, subprocess.SubprocessError) as e:
            self.log.error(LABEL, f"Failed to signal task {task.id}", e)
            task.runtime.stop_waiter = None
            waiter.set_result(False)
        return waiter

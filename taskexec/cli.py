"""
Command-line interface for the task executor.

Provides commands for:
- Running the executor in the foreground
- Listing configured tasks and whether they are due now
- Validating the task file
- Running a single task immediately
- Adding and removing tasks in the task file
- Writing a sample configuration
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from taskexec.config import ExecutorConfig, LoggingConfig, TaskConfig
from taskexec.errors import ConfigError, ScheduleValidationError, TaskExecError
from taskexec.matcher import is_due
from taskexec.models import ExecutionResult, IntervalSchedule, StreamKind
from taskexec.service import TaskExecutor
from taskexec.ticker import minute_floor
from taskexec.validation import parse_schedule, validate_schedule

logger = logging.getLogger(__name__)


def setup_logging(
    log_file: Optional[str] = None,
    verbose: bool = False,
    logging_config: Optional[LoggingConfig] = None
):
    """Setup logging configuration."""
    if verbose:
        level = logging.DEBUG
    elif logging_config is not None:
        level = logging.getLevelName(logging_config.level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    else:
        level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # Root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        max_bytes = logging_config.max_bytes if logging_config else 10 * 1024 * 1024
        backup_count = logging_config.backup_count if logging_config else 5
        file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)


def _load_config(args) -> ExecutorConfig:
    try:
        return ExecutorConfig(args.config)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)


def describe_schedule(raw: Any) -> str:
    """One-line human description of a schedule entry."""
    try:
        schedule = parse_schedule(raw)
    except ScheduleValidationError as e:
        return f"invalid ({'; '.join(e.messages)})"

    if isinstance(schedule, IntervalSchedule):
        text = f"every {schedule.every} min"
        if schedule.start_time:
            text += f" from {schedule.start_time.isoformat()}"
        if schedule.end_time:
            text += f" until {schedule.end_time.isoformat()}"
    else:
        hours = ",".join(str(h) for h in schedule.hours) or "*"
        minutes = ",".join(f"{m:02d}" for m in schedule.minutes) or "*"
        text = f"at {hours}:{minutes}"

    filters = schedule.filters
    if filters.months:
        text += f", months {list(filters.months)}"
    if filters.days:
        text += f", days {list(filters.days)}"
    if filters.week_days:
        text += f", week days {list(filters.week_days)}"
    if filters.start_date or filters.end_date:
        text += f", valid {filters.start_date or '...'} to {filters.end_date or '...'}"
    return text


async def _serve(config: ExecutorConfig, stop_running: bool = False):
    executor = TaskExecutor(config.to_definitions())
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # Windows event loops: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    executor.start()
    logger.info(f"Running in foreground with {len(executor.tasks)} task(s). Press Ctrl+C to stop.")
    logger.info(f"Next tick at {executor.ticker.next_tick}")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        executor.shutdown()
        running = [task for task in executor.tasks if task.is_running]
        if running:
            if stop_running:
                logger.info(f"Stopping {len(running)} running task(s)...")
                await asyncio.gather(*(executor.stop_task(task.id) for task in running))
            else:
                logger.info(f"Waiting for {len(running)} running task(s) to finish...")
        await executor.join()


def cmd_start(args):
    """Run the executor in the foreground until interrupted."""
    config = _load_config(args)
    setup_logging(
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose,
        logging_config=config.logging
    )

    errors = config.validate()
    if errors:
        logger.warning("Configuration has problems; affected entries will be skipped:")
        for error in errors:
            logger.warning(f"  - {error}")

    try:
        asyncio.run(_serve(config, stop_running=args.stop_running))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.error(f"Executor failed: {e}", exc_info=True)
        sys.exit(1)


def cmd_list(args):
    """List configured tasks."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    if not config.tasks:
        print(f"No tasks configured in {config.config_path}")
        return

    now = minute_floor(datetime.now())
    print(f"=== Configured Tasks ({len(config.tasks)}) ===\n")

    for task in config.tasks:
        status = "✓" if task.enabled else "✗"
        due = task.enabled and is_due(now, task.schedule)
        print(f"{status} {task.id or '(generated id)'}{'  [due now]' if due else ''}")
        print(f"    Command: {task.command}")
        if task.arguments:
            print(f"    Arguments: {task.arguments}")
        if task.work_path:
            print(f"    Work path: {task.work_path}")
        for schedule in task.schedule:
            print(f"    Schedule: {describe_schedule(schedule)}")
        if task.timeout:
            print(f"    Timeout: {task.timeout}s")
        if task.description:
            print(f"    Description: {task.description}")
        print()


def cmd_validate(args):
    """Validate the task file."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    errors = config.validate()
    if errors:
        print(f"✗ {len(errors)} problem(s) in {config.config_path}:")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)
    print(f"✓ Configuration OK ({len(config.tasks)} task(s))")


async def _run_once(config: ExecutorConfig, task_id: str) -> int:
    executor = TaskExecutor(config.to_definitions())
    outcome: Dict[str, ExecutionResult] = {}

    def forward_output(_task_id: str, kind: StreamKind, text: str):
        stream = sys.stdout if kind == StreamKind.OUT else sys.stderr
        stream.write(text)
        stream.flush()

    def remember_result(_task, _kind, result: ExecutionResult):
        outcome['result'] = result

    executor.on_output = forward_output
    executor.on_after_execute = remember_result

    started = await executor.run_task(task_id)
    await executor.join()
    if not started:
        return 1

    result = outcome.get('result')
    if result is None or result.exit_code is None:
        return 1
    if result.exit_code < 0:
        # Terminated by a signal
        return 128 - result.exit_code
    return result.exit_code


def cmd_run(args):
    """Run one task immediately and wait for it."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    try:
        exit_code = asyncio.run(_run_once(config, args.task_id))
    except TaskExecError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Task '{args.task_id}' exited with code {exit_code}")
    sys.exit(exit_code)


def cmd_add(args):
    """Add a task to the task file."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    if config.get_task(args.task_id) is not None:
        logger.error(f"Task '{args.task_id}' already exists")
        sys.exit(1)

    try:
        schedules = [json.loads(raw) for raw in args.schedule]
    except json.JSONDecodeError as e:
        logger.error(f"--schedule is not valid JSON: {e}")
        sys.exit(1)

    task = TaskConfig(
        id=args.task_id,
        command=args.task_command,
        schedule=schedules,
        work_path=args.work_path,
        arguments=list(args.arg or []),
        enabled=not args.disabled,
        timeout=args.timeout,
        description=args.description
    )
    problems = [f"schedule {i}: {m}" for i, s in enumerate(schedules) for m in validate_schedule(s)]
    if problems:
        for problem in problems:
            logger.error(f"Invalid {problem}")
        sys.exit(1)

    try:
        config.add_task(task)
        config.save()
    except (ValueError, OSError) as e:
        logger.error(f"Failed to add task: {e}")
        sys.exit(1)

    logger.info(f"Added task '{args.task_id}'")
    for schedule in schedules:
        logger.info(f"Schedule: {describe_schedule(schedule)}")
    logger.info("Restart the executor for changes to take effect")


def cmd_remove(args):
    """Remove a task from the task file."""
    setup_logging(verbose=args.verbose)
    config = _load_config(args)

    if not config.remove_task(args.task_id):
        logger.error(f"Task '{args.task_id}' not found")
        sys.exit(1)

    try:
        config.save()
    except OSError as e:
        logger.error(f"Failed to remove task: {e}")
        sys.exit(1)

    logger.info(f"Removed task '{args.task_id}'")
    logger.info("Restart the executor for changes to take effect")


def cmd_init(args):
    """Write a sample configuration file."""
    setup_logging(verbose=args.verbose)
    config = ExecutorConfig(args.config)

    if config.config_path.exists() and not args.force:
        logger.error(f"{config.config_path} already exists (use --force to overwrite)")
        sys.exit(1)

    config.tasks = [
        TaskConfig(
            id="nightly-backup",
            command="tar czf backup.tgz data",
            schedule=[{"hours": [2], "minutes": [0]}],
            work_path=str(Path.home()),
            description="Archive the data directory every night at 02:00"
        ),
        TaskConfig(
            id="heartbeat",
            command="echo alive",
            schedule=[{"every": 5, "startTime": "08:00:00", "endTime": "18:00:00", "weekDays": [1, 2, 3, 4, 5]}],
            description="Every 5 minutes during office hours"
        ),
    ]
    config.save()
    print(f"Wrote sample configuration to {config.config_path}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Task executor - run commands on minute-resolution schedules",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        '-c', '--config',
        type=str,
        help='Path to task configuration file'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Start command
    start_parser = subparsers.add_parser('start', help='Run the executor in the foreground')
    start_parser.add_argument(
        '--log-file',
        type=str,
        help='Log file path'
    )
    start_parser.add_argument(
        '--stop-running',
        action='store_true',
        help='Stop running tasks on shutdown instead of waiting for them'
    )
    start_parser.set_defaults(func=cmd_start)

    # List command
    list_parser = subparsers.add_parser('list', help='List configured tasks')
    list_parser.set_defaults(func=cmd_list)

    # Validate command
    validate_parser = subparsers.add_parser('validate', help='Validate the task file')
    validate_parser.set_defaults(func=cmd_validate)

    # Run command
    run_parser = subparsers.add_parser('run', help='Run a task immediately')
    run_parser.add_argument('task_id', help='Task id to run')
    run_parser.set_defaults(func=cmd_run)

    # Add command
    add_parser = subparsers.add_parser('add', help='Add a task to the task file')
    add_parser.add_argument('task_id', help='Task id')
    add_parser.add_argument('task_command', help='Command line to run (quote it)')
    add_parser.add_argument(
        '--schedule',
        action='append',
        required=True,
        help='Schedule as JSON, e.g. \'{"every": 5, "startTime": "08:00"}\' (repeatable)'
    )
    add_parser.add_argument('--arg', action='append', help='Extra argument (repeatable)')
    add_parser.add_argument('--work-path', type=str, help='Working directory')
    add_parser.add_argument('--timeout', type=float, help='Stop the task after this many seconds')
    add_parser.add_argument('--description', type=str, help='Human-readable description')
    add_parser.add_argument('--disabled', action='store_true', help='Add the task disabled')
    add_parser.set_defaults(func=cmd_add)

    # Remove command
    remove_parser = subparsers.add_parser('remove', help='Remove a task from the task file')
    remove_parser.add_argument('task_id', help='Task id to remove')
    remove_parser.set_defaults(func=cmd_remove)

    # Init command
    init_parser = subparsers.add_parser('init', help='Write a sample configuration')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')
    init_parser.set_defaults(func=cmd_init)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()

"""
Schedule matching.

Pure functions deciding whether a schedule is due at a given minute. Nothing
here touches task state; bad schedule input is reported in the result and
never raised.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Iterable, List, Optional

from taskexec.errors import ScheduleValidationError
from taskexec.log import LABEL, LogSink
from taskexec.models import CalendarFilter, FixedSchedule, IntervalSchedule, ScheduleSpec
from taskexec.validation import parse_schedule


@dataclass(frozen=True)
class MatchResult:
    """Whether a schedule is due, plus any configuration problems found."""
    due: bool
    errors: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.due


NOT_DUE = MatchResult(False)
DUE = MatchResult(True)


def week_day(now: datetime) -> int:
    """Day of week with 0 = Sunday ... 6 = Saturday."""
    return now.isoweekday() % 7


def _passes_filters(now: datetime, filters: CalendarFilter) -> bool:
    today = now.date()
    if filters.start_date is not None and filters.start_date > today:
        return False
    if filters.end_date is not None and filters.end_date < today:
        return False

    if filters.months and now.month not in filters.months:
        return False
    if filters.days and now.day not in filters.days:
        return False
    if filters.week_days and week_day(now) not in filters.week_days:
        return False
    return True


def _match_fixed(now: datetime, schedule: FixedSchedule) -> MatchResult:
    if not schedule.minutes and not schedule.hours:
        return NOT_DUE
    if schedule.hours and now.hour not in schedule.hours:
        return NOT_DUE
    if schedule.minutes and now.minute not in schedule.minutes:
        return NOT_DUE
    return DUE


def _match_interval(now: datetime, schedule: IntervalSchedule) -> MatchResult:
    today = now.date()
    start = datetime.combine(today, schedule.start_time or time.min)
    if schedule.end_time is not None:
        end = datetime.combine(today, schedule.end_time)
    else:
        end = start + timedelta(hours=24)

    if start > end:
        return MatchResult(False, [
            f"startTime {schedule.start_time.isoformat()} cannot be after endTime {schedule.end_time.isoformat()}"
        ])

    if now < start or now >= end:
        return NOT_DUE

    elapsed_minutes = int((now - start).total_seconds() // 60)
    return DUE if elapsed_minutes % schedule.every == 0 else NOT_DUE


def matches(now: datetime, schedule: ScheduleSpec) -> MatchResult:
    """
    Decide whether a single schedule is due at `now`.

    Args:
        now: Current local time (normally truncated to the minute)
        schedule: Schedule variant or raw mapping

    Returns:
        MatchResult; truthy when due. Validation failures and malformed
        interval bounds produce a non-match carrying error messages.
    """
    try:
        parsed = parse_schedule(schedule)
    except ScheduleValidationError as e:
        return MatchResult(False, e.messages)

    if not _passes_filters(now, parsed.filters):
        return NOT_DUE

    match parsed:
        case IntervalSchedule():
            return _match_interval(now, parsed)
        case FixedSchedule():
            return _match_fixed(now, parsed)
    return NOT_DUE


def is_due(
    now: datetime,
    schedules: Iterable[ScheduleSpec],
    log: Optional[LogSink] = None,
    owner: Optional[Any] = None
) -> bool:
    """
    True if any schedule in the list is due.

    Every entry is evaluated, so configuration errors in each of them are
    reported even after a match was found.

    Args:
        now: Current local time
        schedules: Schedule entries, OR-combined
        log: Sink receiving configuration errors
        owner: Task id used in error messages
    """
    due = False
    for index, schedule in enumerate(schedules):
        if schedule is None:
            continue
        result = matches(now, schedule)
        if result.errors and log is not None:
            where = f" of task '{owner}'" if owner is not None else ""
            log.error(
                LABEL,
                f"Schedule entry {index}{where} is invalid and was skipped",
                "; ".join(result.errors)
            )
        if result:
            due = True
    return due

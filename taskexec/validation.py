"""
Structural validation of raw schedule mappings.

Config files describe schedules as plain objects using the camelCase keys
``validity.startDate``, ``validity.endDate``, ``weekDays``, ``days``,
``months``, ``minutes``, ``hours``, ``every``, ``startTime`` and
``endTime`` (snake_case names are accepted as well). This module checks
their shape with pydantic and turns them into the tagged schedule variants
from :mod:`taskexec.models`.
"""

from datetime import date, datetime, time
from typing import Annotated, Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from taskexec.errors import ScheduleValidationError
from taskexec.models import CalendarFilter, FixedSchedule, IntervalSchedule, Schedule

WeekDay = Annotated[int, Field(ge=0, le=6)]
MonthDay = Annotated[int, Field(ge=1, le=31)]
Month = Annotated[int, Field(ge=1, le=12)]
Minute = Annotated[int, Field(ge=0, le=59)]
Hour = Annotated[int, Field(ge=0, le=23)]


def _coerce_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip()).date()
        except ValueError:
            raise ValueError(f"'{value}' is not a valid date")
    raise ValueError(f"expected a date, got {type(value).__name__}")


class ValidityModel(BaseModel):
    """Inclusive activation window."""
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    start_date: Optional[date] = Field(default=None, alias='startDate')
    end_date: Optional[date] = Field(default=None, alias='endDate')

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def _parse_date(cls, value: Any) -> Optional[date]:
        return _coerce_date(value)


class ScheduleModel(BaseModel):
    """Shape of one raw schedule entry."""
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    validity: Optional[ValidityModel] = None
    week_days: Optional[List[WeekDay]] = Field(default=None, alias='weekDays')
    days: Optional[List[MonthDay]] = None
    months: Optional[List[Month]] = None

    minutes: Optional[List[Minute]] = None
    hours: Optional[List[Hour]] = None

    every: Optional[Annotated[int, Field(ge=1)]] = None
    start_time: Optional[time] = Field(default=None, alias='startTime')
    end_time: Optional[time] = Field(default=None, alias='endTime')

    @field_validator('start_time', 'end_time')
    @classmethod
    def _naive_time(cls, value: Optional[time]) -> Optional[time]:
        # Compared against naive local datetimes
        return value.replace(tzinfo=None) if value is not None else None

    @model_validator(mode='after')
    def _check_mode(self) -> 'ScheduleModel':
        fixed = self.minutes is not None or self.hours is not None
        interval = self.every is not None
        if fixed and interval:
            raise ValueError("'every' cannot be combined with 'minutes' or 'hours'")
        if not fixed and not interval:
            raise ValueError("one of 'every', 'minutes' or 'hours' is required")
        if not interval and (self.start_time is not None or self.end_time is not None):
            raise ValueError("'startTime' and 'endTime' only apply to 'every' schedules")
        return self

    def to_schedule(self) -> Schedule:
        """Build the tagged schedule variant."""
        filters = CalendarFilter(
            start_date=self.validity.start_date if self.validity else None,
            end_date=self.validity.end_date if self.validity else None,
            week_days=tuple(self.week_days or ()),
            days=tuple(self.days or ()),
            months=tuple(self.months or ()),
        )
        if self.every is not None:
            return IntervalSchedule(
                every=self.every,
                start_time=self.start_time,
                end_time=self.end_time,
                filters=filters
            )
        return FixedSchedule(
            minutes=tuple(self.minutes or ()),
            hours=tuple(self.hours or ()),
            filters=filters
        )


def format_errors(error: ValidationError) -> List[str]:
    """Turn a pydantic ValidationError into readable messages."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get('loc', ()))
        message = item.get('msg', 'invalid value')
        messages.append(f"{location}: {message}" if location else message)
    return messages


def parse_schedule(raw: Any) -> Schedule:
    """
    Validate a schedule and return its normalized variant.

    Args:
        raw: A FixedSchedule/IntervalSchedule (returned unchanged) or a mapping

    Returns:
        The normalized schedule

    Raises:
        ScheduleValidationError: If the mapping does not describe a schedule
    """
    if isinstance(raw, (FixedSchedule, IntervalSchedule)):
        return raw
    if not isinstance(raw, Mapping):
        raise ScheduleValidationError(
            [f"schedule must be an object, got {type(raw).__name__}"]
        )
    try:
        return ScheduleModel.model_validate(dict(raw)).to_schedule()
    except ValidationError as e:
        raise ScheduleValidationError(format_errors(e)) from e


def validate_schedule(raw: Any) -> List[str]:
    """Return validation messages for a schedule (empty if valid)."""
    try:
        parse_schedule(raw)
    except ScheduleValidationError as e:
        return e.messages
    return []

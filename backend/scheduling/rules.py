"""Value types shared by the slot generation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum

TIME_OF_DAY_FORMAT = '%H:%M'
WEEKDAY_NAMES = ('Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class InvalidRuleError(ValueError):
    """Raised when an availability rule cannot produce a valid window."""


class RepeatType(str, Enum):
    NONE = 'none'
    WEEKLY = 'weekly'
    BIWEEKLY = 'biweekly'
    MONTHLY = 'monthly'


@dataclass(frozen=True)
class AvailabilityRule:
    """A recurring weekly window during which a practitioner accepts appointments.

    ``weekday`` counts from Sunday (0) to Saturday (6). ``start`` and ``end`` are
    24-hour ``HH:MM`` wall-clock strings local to the practitioner's calendar.
    ``anchor_date`` is the first occurrence of the rule and is only needed to
    place biweekly, monthly and one-off rules on the calendar.
    """

    id: str
    practitioner_id: str
    weekday: int
    start: str
    end: str
    repeat: RepeatType = RepeatType.WEEKLY
    anchor_date: date | None = None


@dataclass(frozen=True)
class AvailabilitySlot:
    start_at: datetime
    end_at: datetime
    duration: int
    available: bool


@dataclass(frozen=True)
class ScheduleStats:
    total_slots: int = 0
    available_slots: int = 0
    booked_slots: int = 0
    utilization_rate: float = 0


@dataclass(frozen=True)
class DaySchedule:
    slots: list[AvailabilitySlot] = field(default_factory=list)
    stats: ScheduleStats = field(default_factory=ScheduleStats)


def parse_time_of_day(value: str) -> time:
    try:
        return datetime.strptime(value.strip(), TIME_OF_DAY_FORMAT).time()
    except (AttributeError, ValueError) as exc:
        raise InvalidRuleError(f'Invalid time of day {value!r}; expected HH:MM.') from exc


def check_rule_window(rule: AvailabilityRule) -> tuple[time, time]:
    start = parse_time_of_day(rule.start)
    end = parse_time_of_day(rule.end)

    if start >= end:
        raise InvalidRuleError(f'Availability rule {rule.id} starts at {rule.start} but ends at {rule.end}.')

    return start, end


def sunday_based_weekday(target_date: date) -> int:
    # date.weekday() is Monday based.
    return (target_date.weekday() + 1) % 7


def weekday_name(weekday: int) -> str:
    if 0 <= weekday < len(WEEKDAY_NAMES):
        return WEEKDAY_NAMES[weekday]
    return 'Unknown'

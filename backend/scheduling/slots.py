"""Expand an availability rule into fixed-length appointment slots."""

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta

from backend.scheduling.rules import AvailabilityRule, AvailabilitySlot, InvalidRuleError, check_rule_window

DEFAULT_SLOT_DURATION_MINUTES = 30

logger = logging.getLogger(__name__)


def generate_slots(
    rule: AvailabilityRule,
    target_date: date,
    duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES,
    booked_instants: Iterable[datetime] = (),
) -> list[AvailabilitySlot]:
    """Split the rule's window on ``target_date`` into ``duration_minutes`` slots.

    A slot is unavailable only when its start exactly equals a booked instant;
    bookings on a different alignment do not block overlapping slots. A
    trailing remainder shorter than the duration is dropped. Rules with an
    empty or inverted window yield no slots.
    """
    if duration_minutes <= 0:
        raise ValueError('Slot duration must be a positive number of minutes.')

    try:
        start, end = check_rule_window(rule)
    except InvalidRuleError as exc:
        logger.warning('Skipping availability rule %s: %s', rule.id, exc)
        return []

    booked = set(booked_instants)
    step = timedelta(minutes=duration_minutes)
    cursor = datetime.combine(target_date, start)
    window_end = datetime.combine(target_date, end)

    slots: list[AvailabilitySlot] = []
    while cursor + step <= window_end:
        slots.append(
            AvailabilitySlot(
                start_at=cursor,
                end_at=cursor + step,
                duration=duration_minutes,
                available=cursor not in booked,
            )
        )
        cursor += step

    return slots

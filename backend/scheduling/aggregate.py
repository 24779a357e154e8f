"""Merge per-rule slot lists for a day and summarise them."""

import logging
from collections.abc import Iterable
from datetime import date, datetime
from operator import attrgetter

from backend.scheduling.recurrence import resolve_active_rules
from backend.scheduling.rules import (
    AvailabilityRule,
    AvailabilitySlot,
    DaySchedule,
    InvalidRuleError,
    ScheduleStats,
    check_rule_window,
)
from backend.scheduling.slots import DEFAULT_SLOT_DURATION_MINUTES, generate_slots

logger = logging.getLogger(__name__)


def compute_stats(slots: list[AvailabilitySlot]) -> ScheduleStats:
    total_slots = len(slots)
    available_slots = sum(1 for slot in slots if slot.available)
    booked_slots = total_slots - available_slots
    utilization_rate = (booked_slots / total_slots) * 100 if total_slots > 0 else 0

    return ScheduleStats(
        total_slots=total_slots,
        available_slots=available_slots,
        booked_slots=booked_slots,
        utilization_rate=round(utilization_rate, 2),
    )


def merge_and_stat(slot_lists: Iterable[list[AvailabilitySlot]]) -> DaySchedule:
    merged: list[AvailabilitySlot] = []
    for slots in slot_lists:
        merged.extend(slots)

    # sorted() is stable: slots sharing a start keep their rule order.
    ordered = sorted(merged, key=attrgetter('start_at'))
    return DaySchedule(slots=ordered, stats=compute_stats(ordered))


def build_day_schedule(
    target_date: date,
    practitioner_id: str,
    rules: Iterable[AvailabilityRule],
    booked_instants: Iterable[datetime] = (),
    duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES,
) -> DaySchedule:
    active_rules = resolve_active_rules(target_date, practitioner_id, rules)
    booked = frozenset(booked_instants)

    schedule = merge_and_stat(
        generate_slots(rule, target_date, duration_minutes, booked) for rule in active_rules
    )
    logger.debug(
        'Generated %d slots from %d rules for practitioner %s on %s',
        schedule.stats.total_slots,
        len(active_rules),
        practitioner_id,
        target_date.isoformat(),
    )
    return schedule


def find_overlapping_rules(
    candidate: AvailabilityRule,
    rules: Iterable[AvailabilityRule],
) -> list[AvailabilityRule]:
    """Return the rules sharing the candidate's practitioner and weekday whose window overlaps it.

    Rules with an invalid window never overlap anything. A rule with the same
    id as the candidate is ignored so updates do not conflict with themselves.
    """
    try:
        candidate_start, candidate_end = check_rule_window(candidate)
    except InvalidRuleError:
        return []

    overlapping: list[AvailabilityRule] = []
    for rule in rules:
        if rule.id == candidate.id:
            continue
        if rule.practitioner_id != candidate.practitioner_id or rule.weekday != candidate.weekday:
            continue

        try:
            rule_start, rule_end = check_rule_window(rule)
        except InvalidRuleError:
            continue

        if candidate_start < rule_end and rule_start < candidate_end:
            overlapping.append(rule)

    return overlapping

"""Select the availability rules that apply on a calendar date."""

from collections.abc import Iterable
from datetime import date

from backend.scheduling.rules import AvailabilityRule, RepeatType, sunday_based_weekday


def _week_ordinal(target_date: date) -> int:
    return (target_date.day - 1) // 7 + 1


def rule_occurs_on(rule: AvailabilityRule, target_date: date) -> bool:
    if rule.weekday != sunday_based_weekday(target_date):
        return False

    # Without an anchor there is nothing to count a cadence from, so every
    # matching weekday counts as an occurrence.
    if rule.anchor_date is None:
        return True

    if target_date < rule.anchor_date:
        return False

    if rule.repeat == RepeatType.NONE:
        return target_date == rule.anchor_date

    if rule.repeat == RepeatType.BIWEEKLY:
        weeks_since_anchor = (target_date - rule.anchor_date).days // 7
        return weeks_since_anchor % 2 == 0

    if rule.repeat == RepeatType.MONTHLY:
        return _week_ordinal(target_date) == _week_ordinal(rule.anchor_date)

    return True


def resolve_active_rules(
    target_date: date,
    practitioner_id: str,
    rules: Iterable[AvailabilityRule],
) -> list[AvailabilityRule]:
    """Return the rules of ``practitioner_id`` active on ``target_date``.

    Input order is preserved so that merged slots keep a stable tie-break.
    An empty list means the practitioner has no availability that day.
    """
    return [
        rule
        for rule in rules
        if rule.practitioner_id == practitioner_id and rule_occurs_on(rule, target_date)
    ]

"""Availability rule model definitions."""

from uuid import uuid4

from sqlalchemy import Column, Date, ForeignKey, Integer, String

from backend.database import Base
from backend.scheduling.rules import AvailabilityRule as AvailabilityRuleValue, RepeatType


def _new_rule_id() -> str:
    return f'avail-{uuid4().hex[:12]}'


class AvailabilityRule(Base):
    """Represents a practitioner's recurring weekly availability window."""
    __tablename__ = "availability_rules"

    id = Column(String, primary_key=True, default=_new_rule_id)
    practitioner_id = Column(String, ForeignKey("practitioners.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0 = Sunday
    start = Column(String(5), nullable=False)
    end = Column(String(5), nullable=False)
    repeat = Column(String, nullable=False, default=RepeatType.WEEKLY.value)
    anchor_date = Column(Date)

    def to_rule(self) -> AvailabilityRuleValue:
        return AvailabilityRuleValue(
            id=self.id,
            practitioner_id=self.practitioner_id,
            weekday=self.weekday,
            start=self.start,
            end=self.end,
            repeat=RepeatType(self.repeat or RepeatType.WEEKLY.value),
            anchor_date=self.anchor_date,
        )

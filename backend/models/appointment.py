"""Appointment model definitions."""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, String
from backend.database import Base


class Appointment(Base):
    """Represents a booked appointment in a practitioner's ledger."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(String, ForeignKey("practitioners.id"), nullable=False, index=True)
    patient_name = Column(String)
    start_time = Column(DateTime)
    end_time = Column(DateTime)
    status = Column(String)
    notes = Column(String)

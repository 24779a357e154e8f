"""Practitioner model definitions."""

from uuid import uuid4

from sqlalchemy import Column, String
from backend.database import Base


def _new_practitioner_id() -> str:
    return f'prac-{uuid4().hex[:12]}'


class Practitioner(Base):
    """Represents a clinician whose calendar accepts appointments."""
    __tablename__ = "practitioners"

    id = Column(String, primary_key=True, default=_new_practitioner_id)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    specialty = Column(String)

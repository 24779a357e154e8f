from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import SessionLocal, ensure_availability_schema, ensure_appointment_schema
from backend.models.appointment import Appointment
from backend.models.availability import AvailabilityRule
from backend.models.practitioner import Practitioner
from backend.scheduling.aggregate import build_day_schedule, find_overlapping_rules
from backend.scheduling.rules import (
    AvailabilityRule as AvailabilityRuleValue,
    InvalidRuleError,
    RepeatType,
    TIME_OF_DAY_FORMAT,
    check_rule_window,
    parse_time_of_day,
    sunday_based_weekday,
    weekday_name,
)

router = APIRouter(tags=['schedule'])

BOOKED_STATUS = 'booked'
CANCELLED_STATUS = 'cancelled'
MAX_APPOINTMENT_NOTES_LENGTH = 600
DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def _normalize_time_of_day(value: str) -> str:
    try:
        return parse_time_of_day(value).strftime(TIME_OF_DAY_FORMAT)
    except InvalidRuleError as exc:
        raise ValueError('Times must use the 24-hour HH:MM format.') from exc


def _validate_weekday(value: int) -> int:
    if not 0 <= value <= 6:
        raise ValueError('Weekday must be between 0 (Sunday) and 6 (Saturday).')
    return value


class CreatePractitionerRequest(BaseModel):
    first_name: str
    last_name: str
    specialty: str | None = None

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Practitioner names are required.')
        return normalized

    @field_validator('specialty')
    @classmethod
    def validate_specialty(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class PractitionerResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    specialty: str | None = None

    class Config:
        from_attributes = True


class CreateAvailabilityRequest(BaseModel):
    practitioner_id: str
    weekday: int
    start: str
    end: str
    repeat: RepeatType = RepeatType.WEEKLY
    anchor_date: date | None = None

    @field_validator('weekday')
    @classmethod
    def validate_weekday(cls, value: int) -> int:
        return _validate_weekday(value)

    @field_validator('start', 'end')
    @classmethod
    def validate_time_of_day(cls, value: str) -> str:
        return _normalize_time_of_day(value)

    @model_validator(mode='after')
    def validate_window(self):
        if self.start >= self.end:
            raise ValueError('Availability must end after it starts.')
        if self.anchor_date is not None and sunday_based_weekday(self.anchor_date) != self.weekday:
            raise ValueError('Anchor date must fall on the availability weekday.')
        return self


class UpdateAvailabilityRequest(BaseModel):
    weekday: int | None = None
    start: str | None = None
    end: str | None = None
    repeat: RepeatType | None = None
    anchor_date: date | None = None

    @field_validator('weekday')
    @classmethod
    def validate_weekday(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return _validate_weekday(value)

    @field_validator('start', 'end')
    @classmethod
    def validate_time_of_day(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_time_of_day(value)


class AvailabilityRuleResponse(BaseModel):
    id: str
    practitioner_id: str
    weekday: int
    weekday_name: str
    start: str
    end: str
    repeat: RepeatType
    anchor_date: date | None = None


class AvailabilitySlotResponse(BaseModel):
    start_at: datetime
    end_at: datetime
    duration: int
    available: bool

    class Config:
        from_attributes = True


class ScheduleStatsResponse(BaseModel):
    total_slots: int
    available_slots: int
    booked_slots: int
    utilization_rate: float

    class Config:
        from_attributes = True


class PractitionerScheduleResponse(BaseModel):
    practitioner: PractitionerResponse
    availabilities: list[AvailabilityRuleResponse]
    time_slots: list[AvailabilitySlotResponse]


class CreateAppointmentRequest(BaseModel):
    practitioner_id: str
    patient_name: str
    start_time: datetime
    duration_minutes: int | None = None
    notes: str | None = None

    @field_validator('patient_name')
    @classmethod
    def validate_patient_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Patient name is required.')
        return normalized

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        if value is None:
            return None
        if not 1 <= value <= config.MAX_SLOT_DURATION_MINUTES:
            raise ValueError(f'Duration must be between 1 and {config.MAX_SLOT_DURATION_MINUTES} minutes.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class AppointmentResponse(BaseModel):
    id: int
    practitioner_id: str
    patient_name: str
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_rule_response(rule: AvailabilityRule) -> AvailabilityRuleResponse:
    return AvailabilityRuleResponse(
        id=rule.id,
        practitioner_id=rule.practitioner_id,
        weekday=rule.weekday,
        weekday_name=weekday_name(rule.weekday),
        start=rule.start,
        end=rule.end,
        repeat=RepeatType(rule.repeat),
        anchor_date=rule.anchor_date,
    )


def get_practitioner_or_404(practitioner_id: str, db: Session) -> Practitioner:
    practitioner = db.query(Practitioner).filter(Practitioner.id == practitioner_id).first()
    if not practitioner:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Practitioner not found.',
        )
    return practitioner


def load_practitioner_rules(practitioner_id: str, db: Session) -> list[AvailabilityRuleValue]:
    rules = db.query(AvailabilityRule).filter(
        AvailabilityRule.practitioner_id == practitioner_id,
    ).order_by(AvailabilityRule.weekday.asc(), AvailabilityRule.start.asc()).all()

    return [rule.to_rule() for rule in rules]


def is_active_appointment():
    return or_(Appointment.status.is_(None), Appointment.status != CANCELLED_STATUS)


def get_booked_instants(practitioner_id: str, target_date: date, db: Session) -> set[datetime]:
    day_start = datetime.combine(target_date, time.min)
    day_end = day_start + timedelta(days=1)

    appointments = db.query(Appointment.start_time).filter(
        Appointment.practitioner_id == practitioner_id,
        Appointment.start_time >= day_start,
        Appointment.start_time < day_end,
        is_active_appointment(),
    ).all()

    return {start_time.replace(second=0, microsecond=0) for (start_time,) in appointments}


def reject_overlapping_rule(candidate: AvailabilityRuleValue, db: Session) -> None:
    existing_rules = load_practitioner_rules(candidate.practitioner_id, db)
    overlapping = find_overlapping_rules(candidate, existing_rules)
    if overlapping:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f'Availability overlaps existing rule {overlapping[0].id}.',
        )


@router.get('/practitioners', response_model=list[PractitionerResponse])
def list_practitioners(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return db.query(Practitioner).order_by(Practitioner.last_name.asc(), Practitioner.first_name.asc()).all()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/practitioners', response_model=PractitionerResponse, status_code=status.HTTP_201_CREATED)
def create_practitioner(data: CreatePractitionerRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        practitioner = Practitioner(
            first_name=data.first_name,
            last_name=data.last_name,
            specialty=data.specialty,
        )
        db.add(practitioner)
        db.commit()
        db.refresh(practitioner)

        return practitioner
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/availabilities', response_model=list[AvailabilityRuleResponse])
def list_availabilities(
    practitioner_id: str | None = Query(default=None),
    weekday: int | None = Query(default=None, ge=0, le=6),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        query = db.query(AvailabilityRule)
        if practitioner_id:
            query = query.filter(AvailabilityRule.practitioner_id == practitioner_id)
        if weekday is not None:
            query = query.filter(AvailabilityRule.weekday == weekday)

        rules = query.order_by(AvailabilityRule.weekday.asc(), AvailabilityRule.start.asc()).all()
        return [to_rule_response(rule) for rule in rules]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/availabilities', response_model=AvailabilityRuleResponse, status_code=status.HTTP_201_CREATED)
def create_availability(data: CreateAvailabilityRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_practitioner_or_404(data.practitioner_id, db)

        rule = AvailabilityRule(
            practitioner_id=data.practitioner_id,
            weekday=data.weekday,
            start=data.start,
            end=data.end,
            repeat=data.repeat.value,
            anchor_date=data.anchor_date,
        )
        reject_overlapping_rule(
            AvailabilityRuleValue(
                id='',
                practitioner_id=data.practitioner_id,
                weekday=data.weekday,
                start=data.start,
                end=data.end,
                repeat=data.repeat,
                anchor_date=data.anchor_date,
            ),
            db,
        )

        db.add(rule)
        db.commit()
        db.refresh(rule)

        return to_rule_response(rule)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.put('/availabilities/{rule_id}', response_model=AvailabilityRuleResponse)
def update_availability(rule_id: str, data: UpdateAvailabilityRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        rule = db.query(AvailabilityRule).filter(AvailabilityRule.id == rule_id).first()
        if not rule:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability not found.',
            )

        # An explicit null only clears anchor_date; other fields keep their value.
        updates = data.model_dump(exclude_unset=True)
        candidate = AvailabilityRuleValue(
            id=rule.id,
            practitioner_id=rule.practitioner_id,
            weekday=rule.weekday if data.weekday is None else data.weekday,
            start=data.start or rule.start,
            end=data.end or rule.end,
            repeat=data.repeat or RepeatType(rule.repeat),
            anchor_date=updates['anchor_date'] if 'anchor_date' in updates else rule.anchor_date,
        )

        try:
            check_rule_window(candidate)
        except InvalidRuleError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Availability must end after it starts.',
            ) from exc

        if candidate.anchor_date is not None and sunday_based_weekday(candidate.anchor_date) != candidate.weekday:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Anchor date must fall on the availability weekday.',
            )

        reject_overlapping_rule(candidate, db)

        rule.weekday = candidate.weekday
        rule.start = candidate.start
        rule.end = candidate.end
        rule.repeat = candidate.repeat.value
        rule.anchor_date = candidate.anchor_date
        db.commit()
        db.refresh(rule)

        return to_rule_response(rule)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.delete('/availabilities/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_availability(rule_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        rule = db.query(AvailabilityRule).filter(AvailabilityRule.id == rule_id).first()
        if not rule:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Availability not found.',
            )

        db.delete(rule)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/slots', response_model=list[AvailabilitySlotResponse])
def list_time_slots(
    practitioner_id: str = Query(...),
    target_date: date = Query(..., alias='date'),
    duration_minutes: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=config.MAX_SLOT_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedule = build_day_schedule(
            target_date,
            practitioner_id,
            load_practitioner_rules(practitioner_id, db),
            get_booked_instants(practitioner_id, target_date, db),
            duration_minutes,
        )

        return [AvailabilitySlotResponse.model_validate(slot) for slot in schedule.slots]
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/stats', response_model=ScheduleStatsResponse)
def get_schedule_stats(
    practitioner_id: str = Query(...),
    target_date: date = Query(..., alias='date'),
    duration_minutes: int = Query(default=config.DEFAULT_SLOT_DURATION_MINUTES, ge=1, le=config.MAX_SLOT_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        schedule = build_day_schedule(
            target_date,
            practitioner_id,
            load_practitioner_rules(practitioner_id, db),
            get_booked_instants(practitioner_id, target_date, db),
            duration_minutes,
        )

        return ScheduleStatsResponse.model_validate(schedule.stats)
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.get('/practitioners/{practitioner_id}/schedule', response_model=PractitionerScheduleResponse)
def get_practitioner_schedule(
    practitioner_id: str,
    target_date: date | None = Query(default=None, alias='date'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        practitioner = get_practitioner_or_404(practitioner_id, db)
        rules = db.query(AvailabilityRule).filter(
            AvailabilityRule.practitioner_id == practitioner_id,
        ).order_by(AvailabilityRule.weekday.asc(), AvailabilityRule.start.asc()).all()

        time_slots: list[AvailabilitySlotResponse] = []
        if target_date is not None:
            schedule = build_day_schedule(
                target_date,
                practitioner_id,
                [rule.to_rule() for rule in rules],
                get_booked_instants(practitioner_id, target_date, db),
                config.DEFAULT_SLOT_DURATION_MINUTES,
            )
            time_slots = [AvailabilitySlotResponse.model_validate(slot) for slot in schedule.slots]

        return PractitionerScheduleResponse(
            practitioner=PractitionerResponse.model_validate(practitioner),
            availabilities=[to_rule_response(rule) for rule in rules],
            time_slots=time_slots,
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.post('/appointments', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(data: CreateAppointmentRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        get_practitioner_or_404(data.practitioner_id, db)

        start_time = data.start_time.replace(second=0, microsecond=0)
        target_date = start_time.date()
        schedule = build_day_schedule(
            target_date,
            data.practitioner_id,
            load_practitioner_rules(data.practitioner_id, db),
            get_booked_instants(data.practitioner_id, target_date, db),
            data.duration_minutes or config.DEFAULT_SLOT_DURATION_MINUTES,
        )

        matching_slot = next((slot for slot in schedule.slots if slot.start_at == start_time), None)
        if matching_slot is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Requested time is not an open slot for this practitioner.',
            )

        overlapping_appointment = db.query(Appointment).filter(
            Appointment.practitioner_id == data.practitioner_id,
            Appointment.start_time < matching_slot.end_at,
            Appointment.end_time > matching_slot.start_at,
            is_active_appointment(),
        ).first()
        if not matching_slot.available or overlapping_appointment:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This time is already booked.',
            )

        appointment = Appointment(
            practitioner_id=data.practitioner_id,
            patient_name=data.patient_name,
            start_time=matching_slot.start_at,
            end_time=matching_slot.end_at,
            status=BOOKED_STATUS,
            notes=data.notes,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        return AppointmentResponse.model_validate(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


@router.delete('/appointments/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_appointment(appointment_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if not appointment:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Appointment not found.',
            )

        appointment.status = CANCELLED_STATUS
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc

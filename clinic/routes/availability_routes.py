from datetime import date, time
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ensure_self_or_admin, require_roles
from clinic.auth.tokens import TokenClaims
from clinic.core.errors import NotFound
from clinic.database import database_unavailable, get_db
from clinic.models.availability import DoctorAvailableTime
from clinic.models.user import Role
from clinic.services.repository import ClinicRepository
from clinic.services.slots import SlotAvailabilityEngine

router = APIRouter(tags=['availability'])

doctor_or_admin = require_roles(Role.DOCTOR, Role.ADMIN)


class AvailableTimeRequest(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: int) -> int:
        if not 0 <= value <= 6:
            raise ValueError('day_of_week must be between 0 (Monday) and 6 (Sunday).')
        return value

    @model_validator(mode='after')
    def validate_range(self) -> 'AvailableTimeRequest':
        if self.start_time >= self.end_time:
            raise ValueError('start_time must be before end_time.')
        return self


class AvailableTimeResponse(BaseModel):
    id: int
    doctor_id: int
    day_of_week: int
    start_time: time
    end_time: time
    is_active: bool

    class Config:
        from_attributes = True


class DoctorSlotsResponse(BaseModel):
    doctor_id: int
    date: date
    time_band: str | None = None
    available_slots: list[time]


class DoctorAvailabilityResponse(BaseModel):
    doctor_id: int
    doctor_name: str
    specialty: str
    date: date
    available_slots: list[time]
    consultation_fee: Decimal | None = None

    class Config:
        from_attributes = True


def normalize_time_band(time_band: str | None) -> str | None:
    if time_band is None:
        return None
    normalized = time_band.strip().lower()
    return normalized or None


def get_rule(db: Session, doctor_id: int, rule_id: int) -> DoctorAvailableTime:
    rule = db.query(DoctorAvailableTime).filter(
        DoctorAvailableTime.id == rule_id,
        DoctorAvailableTime.doctor_id == doctor_id,
    ).first()
    if rule is None:
        raise NotFound('Available time not found.')
    return rule


def require_doctor(repository: ClinicRepository, doctor_id: int) -> None:
    if repository.find_doctor(doctor_id) is None:
        raise NotFound('Doctor not found.')


@router.get('', response_model=list[DoctorAvailabilityResponse])
def list_doctor_availability(
    on_date: date = Query(..., alias='date'),
    specialty: str | None = Query(default=None),
    time_band: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        engine = SlotAvailabilityEngine(ClinicRepository(db))
        return engine.doctor_availability(on_date, specialty=specialty, time_band=normalize_time_band(time_band))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/slots', response_model=DoctorSlotsResponse)
def list_doctor_slots(
    doctor_id: int,
    on_date: date = Query(..., alias='date'),
    time_band: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    band = normalize_time_band(time_band)
    try:
        repository = ClinicRepository(db)
        require_doctor(repository, doctor_id)
        slots = SlotAvailabilityEngine(repository).available_slots(doctor_id, on_date, time_band=band)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return DoctorSlotsResponse(doctor_id=doctor_id, date=on_date, time_band=band, available_slots=slots)


@router.get('/doctors/{doctor_id}/rules', response_model=list[AvailableTimeResponse])
def list_available_times(doctor_id: int, db: Session = Depends(get_db)):
    try:
        return db.query(DoctorAvailableTime).filter(
            DoctorAvailableTime.doctor_id == doctor_id,
        ).order_by(DoctorAvailableTime.day_of_week.asc(), DoctorAvailableTime.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post(
    '/doctors/{doctor_id}/rules',
    response_model=AvailableTimeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_available_time(
    doctor_id: int,
    data: AvailableTimeRequest,
    principal: TokenClaims = Depends(doctor_or_admin),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.DOCTOR, doctor_id)

    try:
        repository = ClinicRepository(db)
        require_doctor(repository, doctor_id)

        duplicate = db.query(DoctorAvailableTime).filter(
            DoctorAvailableTime.doctor_id == doctor_id,
            DoctorAvailableTime.day_of_week == data.day_of_week,
            DoctorAvailableTime.start_time == data.start_time,
            DoctorAvailableTime.end_time == data.end_time,
        ).first()
        if duplicate:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='This available time already exists.',
            )

        rule = DoctorAvailableTime(doctor_id=doctor_id, **data.model_dump())
        return repository.save(rule)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/doctors/{doctor_id}/rules/{rule_id}', response_model=AvailableTimeResponse)
def update_available_time(
    doctor_id: int,
    rule_id: int,
    data: AvailableTimeRequest,
    principal: TokenClaims = Depends(doctor_or_admin),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.DOCTOR, doctor_id)

    try:
        rule = get_rule(db, doctor_id, rule_id)
        for key, value in data.model_dump().items():
            setattr(rule, key, value)
        return ClinicRepository(db).save(rule)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/doctors/{doctor_id}/rules/{rule_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_available_time(
    doctor_id: int,
    rule_id: int,
    principal: TokenClaims = Depends(doctor_or_admin),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.DOCTOR, doctor_id)

    try:
        rule = get_rule(db, doctor_id, rule_id)
        db.delete(rule)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

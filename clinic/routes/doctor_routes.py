import logging
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ensure_self_or_admin, require_roles
from clinic.auth.passwords import hash_password
from clinic.auth.tokens import TokenClaims
from clinic.core.errors import NotFound
from clinic.core.validators import clean_text, normalize_email, require_text, validate_password
from clinic.database import database_unavailable, get_db
from clinic.models.appointment import Appointment
from clinic.models.user import Doctor, Role
from clinic.services.repository import ClinicRepository

router = APIRouter(tags=['doctors'])

logger = logging.getLogger(__name__)

MAX_EXPERIENCE_YEARS = 50


def _validate_experience(value: int | None) -> int | None:
    if value is not None and not 0 <= value <= MAX_EXPERIENCE_YEARS:
        raise ValueError(f'Experience years must be between 0 and {MAX_EXPERIENCE_YEARS}.')
    return value


def _validate_fee(value: Decimal | None) -> Decimal | None:
    if value is not None and value <= 0:
        raise ValueError('Consultation fee must be positive.')
    return value


class DoctorCreateRequest(BaseModel):
    name: str
    email: str
    password: str
    specialty: str
    phone: str | None = None
    qualification: str | None = None
    experience_years: int = 0
    consultation_fee: Decimal | None = None

    @field_validator('name', 'specialty')
    @classmethod
    def validate_required_text(cls, value: str, info: ValidationInfo) -> str:
        return require_text(value, 100, info.field_name.capitalize())

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password(value)

    @field_validator('qualification')
    @classmethod
    def validate_qualification(cls, value: str | None) -> str | None:
        return clean_text(value, 200, 'Qualification')

    @field_validator('experience_years')
    @classmethod
    def validate_experience_years(cls, value: int) -> int:
        return _validate_experience(value)

    @field_validator('consultation_fee')
    @classmethod
    def validate_consultation_fee(cls, value: Decimal | None) -> Decimal | None:
        return _validate_fee(value)


class DoctorUpdateRequest(BaseModel):
    name: str | None = None
    specialty: str | None = None
    phone: str | None = None
    qualification: str | None = None
    experience_years: int | None = None
    consultation_fee: Decimal | None = None
    password: str | None = None

    @field_validator('name', 'specialty')
    @classmethod
    def validate_optional_text(cls, value: str | None, info: ValidationInfo) -> str | None:
        return clean_text(value, 100, info.field_name.capitalize())

    @field_validator('password')
    @classmethod
    def check_password(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return validate_password(value)

    @field_validator('experience_years')
    @classmethod
    def validate_experience_years(cls, value: int | None) -> int | None:
        return _validate_experience(value)

    @field_validator('consultation_fee')
    @classmethod
    def validate_consultation_fee(cls, value: Decimal | None) -> Decimal | None:
        return _validate_fee(value)


class DoctorResponse(BaseModel):
    id: int
    name: str
    email: str
    specialty: str
    phone: str | None = None
    qualification: str | None = None
    experience_years: int | None = None
    consultation_fee: Decimal | None = None
    created_at: datetime
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


def get_doctor_or_404(db: Session, doctor_id: int) -> Doctor:
    doctor = ClinicRepository(db).find_doctor(doctor_id)
    if doctor is None:
        raise NotFound('Doctor not found.')
    return doctor


@router.get('', response_model=list[DoctorResponse])
def list_doctors(
    specialty: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    try:
        return ClinicRepository(db).find_doctors(specialty)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    try:
        return get_doctor_or_404(db, doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: DoctorCreateRequest,
    _admin: TokenClaims = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        if db.query(Doctor).filter(Doctor.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='A doctor with this email already exists.',
            )

        fields = data.model_dump(exclude={'password'})
        doctor = Doctor(**fields, hashed_password=hash_password(data.password))
        doctor = ClinicRepository(db).save(doctor)
        logger.info('Created doctor %s', doctor.id)
        return doctor
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{doctor_id}', response_model=DoctorResponse)
def update_doctor(
    doctor_id: int,
    data: DoctorUpdateRequest,
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.DOCTOR, doctor_id)

    try:
        doctor = get_doctor_or_404(db, doctor_id)
        for key, value in data.model_dump(exclude={'password'}, exclude_none=True).items():
            setattr(doctor, key, value)
        if data.password:
            doctor.hashed_password = hash_password(data.password)
        return ClinicRepository(db).save(doctor)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{doctor_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor(
    doctor_id: int,
    _admin: TokenClaims = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        doctor = get_doctor_or_404(db, doctor_id)
        if db.query(Appointment.id).filter(Appointment.doctor_id == doctor_id).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Doctors with appointment history cannot be deleted.',
            )

        db.delete(doctor)
        db.commit()
        logger.info('Deleted doctor %s', doctor_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

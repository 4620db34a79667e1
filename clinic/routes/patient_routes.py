import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ensure_self_or_admin, require_roles
from clinic.auth.passwords import hash_password
from clinic.auth.tokens import TokenClaims
from clinic.core.errors import NotFound
from clinic.core.validators import clean_text, normalize_email, require_text, validate_password
from clinic.database import database_unavailable, get_db
from clinic.models.user import Patient, Role
from clinic.services.repository import ClinicRepository

router = APIRouter(tags=['patients'])

logger = logging.getLogger(__name__)


def _validate_date_of_birth(value: date | None) -> date | None:
    if value is not None and value > date.today():
        raise ValueError('Date of birth cannot be in the future.')
    return value


class PatientRegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return require_text(value, 100, 'Name')

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def check_password(cls, value: str) -> str:
        return validate_password(value)

    @field_validator('address')
    @classmethod
    def validate_address(cls, value: str | None) -> str | None:
        return clean_text(value, 255, 'Address')

    @field_validator('date_of_birth')
    @classmethod
    def validate_date_of_birth(cls, value: date | None) -> date | None:
        return _validate_date_of_birth(value)


class PatientUpdateRequest(BaseModel):
    name: str | None = None
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        return clean_text(value, 100, 'Name')

    @field_validator('address')
    @classmethod
    def validate_address(cls, value: str | None) -> str | None:
        return clean_text(value, 255, 'Address')

    @field_validator('date_of_birth')
    @classmethod
    def validate_date_of_birth(cls, value: date | None) -> date | None:
        return _validate_date_of_birth(value)


class PatientResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    created_at: datetime

    class Config:
        from_attributes = True


def get_patient_or_404(db: Session, patient_id: int) -> Patient:
    patient = ClinicRepository(db).find_patient(patient_id)
    if patient is None:
        raise NotFound('Patient not found.')
    return patient


@router.post('/register', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def register_patient(data: PatientRegisterRequest, db: Session = Depends(get_db)):
    try:
        if db.query(Patient).filter(Patient.email == data.email).first():
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Email already exists.',
            )

        patient = Patient(
            **data.model_dump(exclude={'password'}),
            hashed_password=hash_password(data.password),
        )
        patient = ClinicRepository(db).save(patient)
        logger.info('Registered patient %s', patient.id)
        return patient
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('', response_model=list[PatientResponse])
def list_patients(
    name: str | None = Query(default=None),
    _admin: TokenClaims = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(Patient)
        if name and name.strip():
            query = query.filter(Patient.name.ilike(f'%{name.strip()}%'))
        return query.order_by(Patient.name.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{patient_id}', response_model=PatientResponse)
def get_patient(
    patient_id: int,
    principal: TokenClaims = Depends(require_roles(Role.PATIENT, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.PATIENT, patient_id)

    try:
        return get_patient_or_404(db, patient_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{patient_id}', response_model=PatientResponse)
def update_patient(
    patient_id: int,
    data: PatientUpdateRequest,
    principal: TokenClaims = Depends(require_roles(Role.PATIENT, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.PATIENT, patient_id)

    try:
        patient = get_patient_or_404(db, patient_id)
        for key, value in data.model_dump(exclude_none=True).items():
            setattr(patient, key, value)
        return ClinicRepository(db).save(patient)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

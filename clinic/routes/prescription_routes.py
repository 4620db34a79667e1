import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ensure_self_or_admin, get_current_principal, require_roles
from clinic.auth.tokens import TokenClaims
from clinic.core.errors import Forbidden, InvalidTransition, NotFound
from clinic.core.validators import clean_text, require_text
from clinic.database import database_unavailable, get_db
from clinic.models.appointment import AppointmentStatus
from clinic.models.prescription import Prescription, PrescriptionStatus
from clinic.models.user import Role
from clinic.services.repository import ClinicRepository

router = APIRouter(tags=['prescriptions'])

logger = logging.getLogger(__name__)

PRESCRIBABLE_STATUSES = {AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED}


class Medication(BaseModel):
    name: str
    dosage: str
    frequency: str | None = None
    duration: str | None = None

    @field_validator('name', 'dosage')
    @classmethod
    def validate_required(cls, value: str) -> str:
        return require_text(value, 200, 'Medication name and dosage')


class PrescriptionRequest(BaseModel):
    appointment_id: int
    medications: list[Medication]
    diagnosis: str | None = None
    notes: str | None = None
    next_visit: datetime | None = None

    @field_validator('medications')
    @classmethod
    def validate_medications(cls, value: list[Medication]) -> list[Medication]:
        if not value:
            raise ValueError('At least one medication is required.')
        return value

    @field_validator('diagnosis', 'notes')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return clean_text(value, 1000, 'Diagnosis and notes')


class PrescriptionResponse(BaseModel):
    id: int
    appointment_id: int
    doctor_id: int
    patient_id: int
    medications: list[Medication]
    diagnosis: str | None = None
    notes: str | None = None
    next_visit: datetime | None = None
    status: PrescriptionStatus
    prescribed_at: datetime

    class Config:
        from_attributes = True


def get_prescription_or_404(db: Session, prescription_id: int) -> Prescription:
    prescription = db.get(Prescription, prescription_id)
    if prescription is None:
        raise NotFound('Prescription not found.')
    return prescription


def ensure_can_view(principal: TokenClaims, prescription: Prescription) -> None:
    if principal.role == Role.ADMIN:
        return
    if principal.role == Role.DOCTOR and principal.user_id == prescription.doctor_id:
        return
    if principal.role == Role.PATIENT and principal.user_id == prescription.patient_id:
        return
    raise Forbidden('You do not have access to this prescription.')


@router.post('', response_model=PrescriptionResponse, status_code=status.HTTP_201_CREATED)
def create_prescription(
    data: PrescriptionRequest,
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR)),
    db: Session = Depends(get_db),
):
    try:
        repository = ClinicRepository(db)
        appointment = repository.find_appointment(data.appointment_id)
        if appointment is None:
            raise NotFound('Appointment not found.')
        if appointment.doctor_id != principal.user_id:
            raise Forbidden('Only the doctor on the appointment can prescribe.')
        if appointment.status not in PRESCRIBABLE_STATUSES:
            raise InvalidTransition(f'Cannot prescribe for a {appointment.status.value} appointment.')

        prescription = Prescription(
            appointment_id=appointment.id,
            doctor_id=appointment.doctor_id,
            patient_id=appointment.patient_id,
            medications=[medication.model_dump() for medication in data.medications],
            diagnosis=data.diagnosis,
            notes=data.notes,
            next_visit=data.next_visit,
            status=PrescriptionStatus.ACTIVE,
        )
        prescription = repository.save(prescription)
        logger.info('Prescription %s created for appointment %s', prescription.id, appointment.id)
        return prescription
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/patient/{patient_id}', response_model=list[PrescriptionResponse])
def list_patient_prescriptions(
    patient_id: int,
    principal: TokenClaims = Depends(require_roles(Role.PATIENT, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.PATIENT, patient_id)

    try:
        return db.query(Prescription).filter(
            Prescription.patient_id == patient_id,
        ).order_by(Prescription.prescribed_at.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}', response_model=list[PrescriptionResponse])
def list_doctor_prescriptions(
    doctor_id: int,
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.DOCTOR, doctor_id)

    try:
        return db.query(Prescription).filter(
            Prescription.doctor_id == doctor_id,
        ).order_by(Prescription.prescribed_at.desc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/appointment/{appointment_id}', response_model=list[PrescriptionResponse])
def list_appointment_prescriptions(
    appointment_id: int,
    principal: TokenClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        prescriptions = db.query(Prescription).filter(
            Prescription.appointment_id == appointment_id,
        ).order_by(Prescription.prescribed_at.desc()).all()
        for prescription in prescriptions:
            ensure_can_view(principal, prescription)
        return prescriptions
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{prescription_id}', response_model=PrescriptionResponse)
def get_prescription(
    prescription_id: int,
    principal: TokenClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        prescription = get_prescription_or_404(db, prescription_id)
        ensure_can_view(principal, prescription)
        return prescription
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{prescription_id}/status', response_model=PrescriptionResponse)
def update_prescription_status(
    prescription_id: int,
    new_status: PrescriptionStatus = Query(..., alias='status'),
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        prescription = get_prescription_or_404(db, prescription_id)
        ensure_can_view(principal, prescription)
        prescription.status = new_status
        return ClinicRepository(db).save(prescription)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{prescription_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_prescription(
    prescription_id: int,
    _admin: TokenClaims = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        prescription = get_prescription_or_404(db, prescription_id)
        db.delete(prescription)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

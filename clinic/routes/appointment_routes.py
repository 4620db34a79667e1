from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic.auth.dependencies import ensure_self_or_admin, get_current_principal, require_roles
from clinic.auth.tokens import TokenClaims
from clinic.core.errors import Forbidden, NotFound
from clinic.core.validators import clean_text
from clinic.database import database_unavailable, get_db
from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.models.user import Role
from clinic.services.booking import BookingConflictGuard
from clinic.services.lifecycle import AppointmentLifecycle, is_participant
from clinic.services.repository import ClinicRepository
from clinic.services.slots import day_bounds

router = APIRouter(tags=['appointments'])

MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 1000


class BookAppointmentRequest(BaseModel):
    doctor_id: int
    patient_id: int | None = None
    appointment_time: datetime
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return clean_text(value, MAX_REASON_LENGTH, 'Reason')


class CompleteAppointmentRequest(BaseModel):
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return clean_text(value, MAX_NOTES_LENGTH, 'Notes')


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    doctor_name: str | None = None
    doctor_specialty: str | None = None
    patient_id: int
    patient_name: str | None = None
    patient_email: str | None = None
    appointment_time: datetime
    end_time: datetime
    duration_minutes: int
    status: AppointmentStatus
    reason: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime | None = None


def to_response(appointment: Appointment) -> AppointmentResponse:
    doctor = appointment.doctor
    patient = appointment.patient
    return AppointmentResponse(
        id=appointment.id,
        doctor_id=appointment.doctor_id,
        doctor_name=doctor.name if doctor else None,
        doctor_specialty=doctor.specialty if doctor else None,
        patient_id=appointment.patient_id,
        patient_name=patient.name if patient else None,
        patient_email=patient.email if patient else None,
        appointment_time=appointment.appointment_time,
        end_time=appointment.end_time,
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        reason=appointment.reason,
        notes=appointment.notes,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
    )


def get_visible_appointment(repository: ClinicRepository, appointment_id: int, principal: TokenClaims) -> Appointment:
    appointment = repository.find_appointment(appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found.')
    if principal.role != Role.ADMIN and not is_participant(appointment, principal.email, principal.role):
        raise Forbidden('You do not have access to this appointment.')
    return appointment


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    principal: TokenClaims = Depends(require_roles(Role.PATIENT, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    patient_id = data.patient_id
    if principal.role == Role.PATIENT:
        if patient_id is not None and patient_id != principal.user_id:
            raise Forbidden('Patients can only book appointments for themselves.')
        patient_id = principal.user_id
    elif patient_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='patient_id is required.',
        )

    try:
        guard = BookingConflictGuard(ClinicRepository(db))
        appointment = guard.book(data.doctor_id, patient_id, data.appointment_time, data.reason)
        return to_response(appointment)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}', response_model=list[AppointmentResponse])
def list_doctor_appointments(
    doctor_id: int,
    on_date: date | None = Query(default=None, alias='date'),
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.DOCTOR, doctor_id)

    try:
        query = db.query(Appointment).filter(Appointment.doctor_id == doctor_id)
        if on_date is not None:
            start, end = day_bounds(on_date)
            query = query.filter(
                Appointment.appointment_time >= start,
                Appointment.appointment_time <= end,
            ).order_by(Appointment.appointment_time.asc())
        else:
            query = query.order_by(Appointment.appointment_time.desc())
        return [to_response(appointment) for appointment in query.all()]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/patient/{patient_id}', response_model=list[AppointmentResponse])
def list_patient_appointments(
    patient_id: int,
    upcoming: bool = Query(default=False),
    principal: TokenClaims = Depends(require_roles(Role.PATIENT, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    ensure_self_or_admin(principal, Role.PATIENT, patient_id)

    try:
        query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
        if upcoming:
            query = query.filter(
                Appointment.status == AppointmentStatus.SCHEDULED,
                Appointment.appointment_time > datetime.now(),
            ).order_by(Appointment.appointment_time.asc())
        else:
            query = query.order_by(Appointment.appointment_time.desc())
        return [to_response(appointment) for appointment in query.all()]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    principal: TokenClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        return to_response(get_visible_appointment(ClinicRepository(db), appointment_id, principal))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    principal: TokenClaims = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        lifecycle = AppointmentLifecycle(ClinicRepository(db))
        return to_response(lifecycle.cancel(appointment_id, principal.email, principal.role))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: CompleteAppointmentRequest,
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        repository = ClinicRepository(db)
        get_visible_appointment(repository, appointment_id, principal)
        return to_response(AppointmentLifecycle(repository).complete(appointment_id, data.notes))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    new_status: AppointmentStatus = Query(..., alias='status'),
    principal: TokenClaims = Depends(require_roles(Role.DOCTOR, Role.ADMIN)),
    db: Session = Depends(get_db),
):
    try:
        repository = ClinicRepository(db)
        get_visible_appointment(repository, appointment_id, principal)
        return to_response(AppointmentLifecycle(repository).update_status(appointment_id, new_status))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

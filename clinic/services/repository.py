"""Database access shared by the scheduling services."""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic.core.errors import SlotUnavailable
from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.models.availability import DoctorAvailableTime
from clinic.models.user import Doctor, Patient


class ClinicRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_doctor(self, doctor_id: int) -> Doctor | None:
        return self.db.get(Doctor, doctor_id)

    def find_patient(self, patient_id: int) -> Patient | None:
        return self.db.get(Patient, patient_id)

    def find_appointment(self, appointment_id: int) -> Appointment | None:
        return self.db.get(Appointment, appointment_id)

    def find_doctors(self, specialty: str | None = None) -> list[Doctor]:
        query = self.db.query(Doctor)
        if specialty and specialty.strip():
            query = query.filter(Doctor.specialty.ilike(f'%{specialty.strip()}%'))
        return query.order_by(Doctor.id.asc()).all()

    def lock_doctor(self, doctor_id: int) -> Doctor | None:
        """Load the doctor and hold the booking lock until commit or rollback.

        Backends with row locks lock the doctor row. SQLite has none, so the
        whole database write lock is taken up front with ``BEGIN IMMEDIATE``;
        a concurrent booking waits there before it reads any appointments.
        """
        if self.db.get_bind().dialect.name == 'sqlite':
            self.db.execute(text('BEGIN IMMEDIATE'))
        return self.db.query(Doctor).filter(Doctor.id == doctor_id).with_for_update().first()

    def active_rules_for(self, doctor_id: int, day_of_week: int) -> list[DoctorAvailableTime]:
        return self.db.query(DoctorAvailableTime).filter(
            DoctorAvailableTime.doctor_id == doctor_id,
            DoctorAvailableTime.day_of_week == day_of_week,
            DoctorAvailableTime.is_active.is_(True),
        ).order_by(DoctorAvailableTime.start_time.asc()).all()

    def find_scheduled_appointments_in_range(
        self,
        doctor_id: int,
        start: datetime,
        end: datetime,
    ) -> list[Appointment]:
        """Scheduled appointments for ``doctor_id`` with start in ``[start, end]``."""
        return self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.appointment_time >= start,
            Appointment.appointment_time <= end,
        ).order_by(Appointment.appointment_time.asc()).all()

    def insert_appointment(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise SlotUnavailable() from exc
        self.db.refresh(appointment)
        return appointment

    def save(self, entity):
        self.db.add(entity)
        self.db.commit()
        self.db.refresh(entity)
        return entity

    def rollback(self) -> None:
        self.db.rollback()

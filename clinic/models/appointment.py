"""Appointment model definitions."""

import enum
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import relationship

from clinic.database import Base

DEFAULT_DURATION_MINUTES = 30


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = 'SCHEDULED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    NO_SHOW = 'NO_SHOW'

    @property
    def is_terminal(self) -> bool:
        return self is not AppointmentStatus.SCHEDULED


class Appointment(Base):
    """Represents an appointment between a doctor and a patient."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index('idx_appointments_doctor_time', 'doctor_id', 'appointment_time'),
        # Only one scheduled appointment per doctor and start time; cancelled rows stay behind.
        Index(
            'uq_appointments_doctor_time_scheduled',
            'doctor_id',
            'appointment_time',
            unique=True,
            sqlite_where=text("status = 'SCHEDULED'"),
            postgresql_where=text("status = 'SCHEDULED'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    appointment_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, default=DEFAULT_DURATION_MINUTES, nullable=False)
    status = Column(
        Enum(AppointmentStatus, name='appointment_status', native_enum=False, length=20),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
    )
    reason = Column(Text)
    notes = Column(Text)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now)

    doctor = relationship("Doctor", back_populates="appointments")
    patient = relationship("Patient", back_populates="appointments")

    @property
    def end_time(self) -> datetime:
        return self.appointment_time + timedelta(minutes=self.duration_minutes or DEFAULT_DURATION_MINUTES)

    def is_upcoming(self, now: datetime) -> bool:
        return self.status == AppointmentStatus.SCHEDULED and self.appointment_time > now

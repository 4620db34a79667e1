"""Prescription model definitions."""

import enum
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, Text

from clinic.database import Base


class PrescriptionStatus(str, enum.Enum):
    ACTIVE = 'ACTIVE'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class Prescription(Base):
    """Medications a doctor prescribed during an appointment."""
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    medications = Column(JSON, nullable=False, default=list)
    diagnosis = Column(Text)
    notes = Column(Text)
    next_visit = Column(DateTime)
    status = Column(
        Enum(PrescriptionStatus, name='prescription_status', native_enum=False, length=20),
        default=PrescriptionStatus.ACTIVE,
        nullable=False,
    )
    prescribed_at = Column(DateTime, default=datetime.now, nullable=False)

"""User model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship

from clinic.database import Base


class Role(str, enum.Enum):
    ADMIN = 'ADMIN'
    DOCTOR = 'DOCTOR'
    PATIENT = 'PATIENT'


class Admin(Base):
    """Represents a clinic administrator."""
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class Doctor(Base):
    """Represents a doctor who can be booked by patients."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    specialty = Column(String(100), nullable=False)
    phone = Column(String(20))
    qualification = Column(String(200))
    experience_years = Column(Integer, default=0)
    consultation_fee = Column(Numeric(10, 2))
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    available_times = relationship(
        "DoctorAvailableTime",
        back_populates="doctor",
        cascade="all, delete-orphan",
    )
    appointments = relationship("Appointment", back_populates="doctor")


class Patient(Base):
    """Represents a registered patient."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    phone = Column(String(20))
    address = Column(String(255))
    date_of_birth = Column(Date)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    appointments = relationship("Appointment", back_populates="patient")


ACCOUNT_MODELS = {
    Role.ADMIN: Admin,
    Role.DOCTOR: Doctor,
    Role.PATIENT: Patient,
}

"""Availability model definitions."""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, Time
from sqlalchemy.orm import relationship

from clinic.database import Base


class DoctorAvailableTime(Base):
    """A doctor's recurring weekly working hours.

    ``day_of_week`` follows ``date.weekday()``: Monday is 0 and Sunday is 6.
    """
    __tablename__ = "doctor_available_times"
    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_available_times_day_of_week'),
        CheckConstraint('start_time < end_time', name='ck_available_times_range'),
        Index('idx_available_times_doctor_day', 'doctor_id', 'day_of_week', 'is_active'),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    doctor = relationship("Doctor", back_populates="available_times")

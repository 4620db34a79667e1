import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError

from clinic.core import config
from clinic.models.availability import DoctorAvailableTime
from clinic.services.repository import ClinicRepository

logger = logging.getLogger(__name__)

SLOT_MINUTES = config.SLOT_MINUTES
NOON = time(12, 0)
EVENING_START = time(17, 0)


@dataclass
class DoctorAvailability:
    doctor_id: int
    doctor_name: str
    specialty: str
    date: date
    available_slots: list[time] = field(default_factory=list)
    consultation_fee: Decimal | None = None


def generate_slot_starts(rules: Iterable[DoctorAvailableTime], on_date: date) -> list[datetime]:
    """Slot starts for every rule, stepping from each rule's start up to its end (exclusive).

    Overlapping rules yield the same start more than once.
    """
    starts: list[datetime] = []
    for rule in rules:
        current = datetime.combine(on_date, rule.start_time)
        rule_end = datetime.combine(on_date, rule.end_time)
        while current < rule_end:
            starts.append(current)
            current += timedelta(minutes=SLOT_MINUTES)
    return sorted(starts)


def is_in_time_band(slot: time, time_band: str) -> bool:
    band = time_band.strip().lower()
    if band == 'morning':
        return slot < NOON
    if band == 'afternoon':
        return NOON <= slot < EVENING_START
    if band == 'evening':
        return slot >= EVENING_START
    return True


def filter_by_time_band(slots: list[time], time_band: str | None) -> list[time]:
    if not time_band or not time_band.strip():
        return list(slots)
    return [slot for slot in slots if is_in_time_band(slot, time_band)]


def day_bounds(on_date: date) -> tuple[datetime, datetime]:
    return datetime.combine(on_date, time.min), datetime.combine(on_date, time.max)


class SlotAvailabilityEngine:
    """Computes the free slots of a doctor's day from weekly rules and bookings."""

    def __init__(self, repository: ClinicRepository):
        self.repository = repository

    def available_slots(
        self,
        doctor_id: int,
        on_date: date,
        time_band: str | None = None,
        now: datetime | None = None,
    ) -> list[time]:
        now = now or datetime.now()
        rules = self.repository.active_rules_for(doctor_id, on_date.weekday())
        if not rules:
            return []

        day_start, day_end = day_bounds(on_date)
        booked = {
            appointment.appointment_time
            for appointment in self.repository.find_scheduled_appointments_in_range(doctor_id, day_start, day_end)
        }

        slots = [
            start.time()
            for start in generate_slot_starts(rules, on_date)
            if start not in booked and start > now
        ]
        return filter_by_time_band(slots, time_band)

    def doctor_availability(
        self,
        on_date: date,
        specialty: str | None = None,
        time_band: str | None = None,
        now: datetime | None = None,
    ) -> list[DoctorAvailability]:
        now = now or datetime.now()
        results: list[DoctorAvailability] = []

        for doctor in self.repository.find_doctors(specialty):
            try:
                slots = self.available_slots(doctor.id, on_date, time_band=time_band, now=now)
            except SQLAlchemyError:
                logger.warning('Availability lookup failed for doctor %s on %s', doctor.id, on_date, exc_info=True)
                self.repository.rollback()
                slots = []

            if slots:
                results.append(
                    DoctorAvailability(
                        doctor_id=doctor.id,
                        doctor_name=doctor.name,
                        specialty=doctor.specialty,
                        date=on_date,
                        available_slots=slots,
                        consultation_fee=doctor.consultation_fee,
                    )
                )

        return results

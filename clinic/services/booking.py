import logging
from datetime import datetime, timedelta

from clinic.core.errors import ClinicError, NotFound, SlotUnavailable
from clinic.models.appointment import DEFAULT_DURATION_MINUTES, Appointment, AppointmentStatus
from clinic.services.repository import ClinicRepository
from clinic.services.slots import SLOT_MINUTES, generate_slot_starts

logger = logging.getLogger(__name__)

# One minute short of a slot: back-to-back bookings on slot boundaries stay allowed.
CONFLICT_WINDOW = timedelta(minutes=SLOT_MINUTES - 1)


def normalize_appointment_time(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class BookingConflictGuard:
    """Decides whether a doctor can take an appointment and books it."""

    def __init__(self, repository: ClinicRepository):
        self.repository = repository

    def is_time_available(self, doctor_id: int, proposed_time: datetime) -> bool:
        conflicts = self.repository.find_scheduled_appointments_in_range(
            doctor_id,
            proposed_time - CONFLICT_WINDOW,
            proposed_time + CONFLICT_WINDOW,
        )
        return not conflicts

    def _ensure_bookable(self, doctor_id: int, appointment_time: datetime, now: datetime) -> None:
        if appointment_time <= now:
            raise SlotUnavailable('Appointments must be scheduled in the future.')

        rules = self.repository.active_rules_for(doctor_id, appointment_time.weekday())
        if appointment_time not in generate_slot_starts(rules, appointment_time.date()):
            raise SlotUnavailable("The selected time is outside the doctor's available hours.")

        if not self.is_time_available(doctor_id, appointment_time):
            raise SlotUnavailable()

    def book(
        self,
        doctor_id: int,
        patient_id: int,
        appointment_time: datetime,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        now = now or datetime.now()
        appointment_time = normalize_appointment_time(appointment_time)

        if self.repository.find_patient(patient_id) is None:
            raise NotFound('Patient not found.')
        # Held until the insert commits so concurrent bookings for this doctor queue up.
        doctor = self.repository.lock_doctor(doctor_id)
        try:
            if doctor is None:
                raise NotFound('Doctor not found.')
            self._ensure_bookable(doctor_id, appointment_time, now)
        except ClinicError:
            self.repository.rollback()
            raise

        appointment = Appointment(
            doctor_id=doctor_id,
            patient_id=patient_id,
            appointment_time=appointment_time,
            duration_minutes=DEFAULT_DURATION_MINUTES,
            status=AppointmentStatus.SCHEDULED,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
        appointment = self.repository.insert_appointment(appointment)
        logger.info(
            'Booked appointment %s with doctor %s at %s',
            appointment.id,
            doctor_id,
            appointment_time.isoformat(),
        )
        return appointment

"""Status transitions of an appointment.

SCHEDULED is the only state an appointment can leave. COMPLETED, CANCELLED
and NO_SHOW are terminal, so every transition below first checks that the
appointment is still scheduled.
"""

import logging
from datetime import datetime, timedelta

from clinic.core import config
from clinic.core.errors import Forbidden, InvalidTransition, NotCancellable, NotFound
from clinic.models.appointment import Appointment, AppointmentStatus
from clinic.models.user import Role
from clinic.services.repository import ClinicRepository

logger = logging.getLogger(__name__)

CANCELLATION_NOTICE = timedelta(hours=config.CANCELLATION_NOTICE_HOURS)


def can_be_cancelled(appointment: Appointment, now: datetime) -> bool:
    return appointment.is_upcoming(now) and appointment.appointment_time - CANCELLATION_NOTICE > now


def is_participant(appointment: Appointment, actor_email: str, actor_role: Role) -> bool:
    email = actor_email.strip().lower()
    if actor_role == Role.PATIENT:
        return appointment.patient is not None and appointment.patient.email.lower() == email
    if actor_role == Role.DOCTOR:
        return appointment.doctor is not None and appointment.doctor.email.lower() == email
    return False


class AppointmentLifecycle:
    def __init__(self, repository: ClinicRepository):
        self.repository = repository

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self.repository.find_appointment(appointment_id)
        if appointment is None:
            raise NotFound('Appointment not found.')
        return appointment

    def cancel(
        self,
        appointment_id: int,
        actor_email: str,
        actor_role: Role | str,
        now: datetime | None = None,
    ) -> Appointment:
        now = now or datetime.now()
        actor_role = Role(actor_role)
        appointment = self._get(appointment_id)

        if actor_role != Role.ADMIN and not is_participant(appointment, actor_email, actor_role):
            raise Forbidden("You don't have permission to cancel this appointment.")

        if not can_be_cancelled(appointment, now):
            raise NotCancellable(
                'Only scheduled appointments at least '
                f'{config.CANCELLATION_NOTICE_HOURS} hours away can be cancelled.'
            )

        appointment.status = AppointmentStatus.CANCELLED
        appointment.updated_at = now
        appointment = self.repository.save(appointment)
        logger.info('Appointment %s cancelled by %s', appointment.id, actor_role.value)
        return appointment

    def complete(self, appointment_id: int, notes: str | None, now: datetime | None = None) -> Appointment:
        appointment = self._get(appointment_id)
        if appointment.status != AppointmentStatus.SCHEDULED:
            raise InvalidTransition(f'Cannot complete an appointment that is {appointment.status.value}.')

        appointment.status = AppointmentStatus.COMPLETED
        appointment.notes = notes
        appointment.updated_at = now or datetime.now()
        appointment = self.repository.save(appointment)
        logger.info('Appointment %s completed', appointment.id)
        return appointment

    def update_status(
        self,
        appointment_id: int,
        new_status: AppointmentStatus | str,
        now: datetime | None = None,
    ) -> Appointment:
        new_status = AppointmentStatus(new_status)
        appointment = self._get(appointment_id)

        if appointment.status == new_status:
            return appointment
        if appointment.status.is_terminal:
            raise InvalidTransition(
                f'Cannot change a {appointment.status.value} appointment to {new_status.value}.'
            )

        appointment.status = new_status
        appointment.updated_at = now or datetime.now()
        appointment = self.repository.save(appointment)
        logger.info('Appointment %s moved to %s', appointment.id, new_status.value)
        return appointment

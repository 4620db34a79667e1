from datetime import datetime, time, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from clinic.models.appointment import AppointmentStatus
from clinic.services.slots import SlotAvailabilityEngine, filter_by_time_band, generate_slot_starts

from conftest import BEFORE_MONDAY, MONDAY, add_appointment, add_doctor, add_rule


@pytest.fixture
def engine(repository):
    return SlotAvailabilityEngine(repository)


def test_generates_thirty_minute_slots_within_rule(engine, doctor) -> None:
    slots = engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY)

    assert slots == [time(9, 0), time(9, 30)]


def test_no_rules_for_weekday_yields_no_slots(engine, doctor) -> None:
    tuesday = MONDAY + timedelta(days=1)

    assert engine.available_slots(doctor.id, tuesday, now=BEFORE_MONDAY) == []


def test_inactive_rules_are_ignored(db, engine) -> None:
    doctor = add_doctor(db)
    add_rule(db, doctor, is_active=False)

    assert engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY) == []


def test_scheduled_appointment_removes_its_slot(db, engine, doctor, patient) -> None:
    add_appointment(db, doctor, patient, datetime.combine(MONDAY, time(9, 0)))

    assert engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY) == [time(9, 30)]


def test_cancelled_appointment_frees_its_slot(db, engine, doctor, patient) -> None:
    add_appointment(db, doctor, patient, datetime.combine(MONDAY, time(9, 0)), status=AppointmentStatus.CANCELLED)

    assert engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY) == [time(9, 0), time(9, 30)]


def test_other_doctors_bookings_do_not_interfere(db, engine, doctor, patient) -> None:
    other = add_doctor(db, email='wilson@clinic.test', name='Dr. Wilson')
    add_appointment(db, other, patient, datetime.combine(MONDAY, time(9, 0)))

    assert engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY) == [time(9, 0), time(9, 30)]


def test_slots_not_strictly_after_now_are_dropped(engine, doctor) -> None:
    now = datetime.combine(MONDAY, time(9, 0))

    assert engine.available_slots(doctor.id, MONDAY, now=now) == [time(9, 30)]


def test_slots_are_chronological_across_rules(db, engine) -> None:
    doctor = add_doctor(db)
    add_rule(db, doctor, start=time(14, 0), end=time(15, 0))
    add_rule(db, doctor, start=time(8, 0), end=time(9, 0))

    slots = engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY)

    assert slots == [time(8, 0), time(8, 30), time(14, 0), time(14, 30)]


def test_overlapping_rules_repeat_shared_slots(db, engine) -> None:
    doctor = add_doctor(db)
    add_rule(db, doctor, start=time(9, 0), end=time(10, 0))
    add_rule(db, doctor, start=time(9, 30), end=time(10, 30))

    slots = engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY)

    assert slots == [time(9, 0), time(9, 30), time(9, 30), time(10, 0)]


def test_rule_end_is_exclusive_for_partial_slot(db, engine) -> None:
    doctor = add_doctor(db)
    add_rule(db, doctor, start=time(9, 0), end=time(9, 45))

    assert engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY) == [time(9, 0), time(9, 30)]


def test_available_slots_is_repeatable(db, engine, doctor, patient) -> None:
    add_appointment(db, doctor, patient, datetime.combine(MONDAY, time(9, 30)))

    first = engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY)
    second = engine.available_slots(doctor.id, MONDAY, now=BEFORE_MONDAY)

    assert first == second == [time(9, 0)]


@pytest.mark.parametrize(
    ('time_band', 'expected'),
    [
        ('morning', [time(11, 30)]),
        ('afternoon', [time(12, 0), time(16, 30)]),
        ('Evening', [time(17, 0)]),
        ('night', [time(11, 30), time(12, 0), time(16, 30), time(17, 0)]),
        (None, [time(11, 30), time(12, 0), time(16, 30), time(17, 0)]),
        ('  ', [time(11, 30), time(12, 0), time(16, 30), time(17, 0)]),
    ],
)
def test_filter_by_time_band(time_band, expected) -> None:
    slots = [time(11, 30), time(12, 0), time(16, 30), time(17, 0)]

    assert filter_by_time_band(slots, time_band) == expected


def test_available_slots_applies_time_band(db, engine) -> None:
    doctor = add_doctor(db)
    add_rule(db, doctor, start=time(11, 0), end=time(13, 0))

    slots = engine.available_slots(doctor.id, MONDAY, time_band='afternoon', now=BEFORE_MONDAY)

    assert slots == [time(12, 0), time(12, 30)]


def test_generate_slot_starts_combines_date() -> None:
    class Rule:
        start_time = time(9, 0)
        end_time = time(10, 0)

    assert generate_slot_starts([Rule()], MONDAY) == [
        datetime.combine(MONDAY, time(9, 0)),
        datetime.combine(MONDAY, time(9, 30)),
    ]


def test_doctor_availability_filters_by_specialty(db, engine) -> None:
    cardio = add_doctor(db, email='heart@clinic.test', name='Dr. Heart', specialty='Cardiology')
    derm = add_doctor(db, email='skin@clinic.test', name='Dr. Skin', specialty='Dermatology')
    add_rule(db, cardio)
    add_rule(db, derm)

    results = engine.doctor_availability(MONDAY, specialty='cardio', now=BEFORE_MONDAY)

    assert [result.doctor_id for result in results] == [cardio.id]
    assert results[0].available_slots == [time(9, 0), time(9, 30)]
    assert results[0].specialty == 'Cardiology'


def test_doctor_availability_omits_doctors_without_free_slots(db, engine, doctor, patient) -> None:
    add_doctor(db, email='idle@clinic.test', name='Dr. Idle')
    add_appointment(db, doctor, patient, datetime.combine(MONDAY, time(9, 0)))
    add_appointment(db, doctor, patient, datetime.combine(MONDAY, time(9, 30)))

    assert engine.doctor_availability(MONDAY, now=BEFORE_MONDAY) == []


def test_doctor_availability_isolates_lookup_failures(db, engine, monkeypatch) -> None:
    broken = add_doctor(db, email='broken@clinic.test', name='Dr. Broken')
    healthy = add_doctor(db, email='ok@clinic.test', name='Dr. Ok')
    add_rule(db, broken)
    add_rule(db, healthy)
    original = engine.available_slots

    def flaky_available_slots(doctor_id, on_date, time_band=None, now=None):
        if doctor_id == broken.id:
            raise OperationalError('SELECT 1', {}, Exception('connection reset'))
        return original(doctor_id, on_date, time_band=time_band, now=now)

    monkeypatch.setattr(engine, 'available_slots', flaky_available_slots)

    results = engine.doctor_availability(MONDAY, now=BEFORE_MONDAY)

    assert [result.doctor_id for result in results] == [healthy.id]

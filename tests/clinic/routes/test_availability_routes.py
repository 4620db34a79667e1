from datetime import time

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from clinic.core.errors import Forbidden, NotFound
from clinic.models.availability import DoctorAvailableTime
from clinic.models.user import Role
from clinic.routes.availability_routes import (
    AvailableTimeRequest,
    create_available_time,
    delete_available_time,
    list_available_times,
    list_doctor_availability,
    list_doctor_slots,
    normalize_time_band,
    update_available_time,
)

from conftest import MONDAY, add_admin, add_doctor, add_rule, principal_for


def test_available_time_request_rejects_bad_day() -> None:
    with pytest.raises(ValidationError):
        AvailableTimeRequest(day_of_week=7, start_time=time(9, 0), end_time=time(10, 0))


def test_available_time_request_rejects_inverted_range() -> None:
    with pytest.raises(ValidationError):
        AvailableTimeRequest(day_of_week=0, start_time=time(10, 0), end_time=time(9, 0))


@pytest.mark.parametrize(('raw', 'expected'), [(' Morning ', 'morning'), ('', None), (None, None)])
def test_normalize_time_band(raw, expected) -> None:
    assert normalize_time_band(raw) == expected


def test_list_doctor_slots_for_future_monday(db, doctor) -> None:
    response = list_doctor_slots(doctor.id, on_date=MONDAY, time_band=None, db=db)

    assert response.doctor_id == doctor.id
    assert response.available_slots == [time(9, 0), time(9, 30)]


def test_list_doctor_slots_filters_by_band(db, doctor) -> None:
    response = list_doctor_slots(doctor.id, on_date=MONDAY, time_band='Afternoon', db=db)

    assert response.time_band == 'afternoon'
    assert response.available_slots == []


def test_list_doctor_slots_unknown_doctor(db) -> None:
    with pytest.raises(NotFound):
        list_doctor_slots(404, on_date=MONDAY, time_band=None, db=db)


def test_list_doctor_availability_groups_by_doctor(db, doctor) -> None:
    results = list_doctor_availability(on_date=MONDAY, specialty=None, time_band=None, db=db)

    assert len(results) == 1
    assert results[0].doctor_name == 'Dr. House'
    assert results[0].date == MONDAY


def test_doctor_manages_own_rules(db) -> None:
    doctor = add_doctor(db)
    principal = principal_for(doctor, Role.DOCTOR)

    created = create_available_time(
        doctor.id,
        AvailableTimeRequest(day_of_week=2, start_time=time(13, 0), end_time=time(15, 0)),
        principal=principal,
        db=db,
    )
    updated = update_available_time(
        doctor.id,
        created.id,
        AvailableTimeRequest(day_of_week=2, start_time=time(13, 0), end_time=time(14, 0), is_active=False),
        principal=principal,
        db=db,
    )

    assert updated.end_time == time(14, 0)
    assert updated.is_active is False
    assert [rule.id for rule in list_available_times(doctor.id, db=db)] == [created.id]

    delete_available_time(doctor.id, created.id, principal=principal, db=db)
    assert db.query(DoctorAvailableTime).count() == 0


def test_duplicate_rule_is_rejected(db, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_available_time(
            doctor.id,
            AvailableTimeRequest(day_of_week=0, start_time=time(9, 0), end_time=time(10, 0)),
            principal=principal_for(doctor, Role.DOCTOR),
            db=db,
        )

    assert exception_info.value.status_code == 409


def test_doctor_cannot_edit_another_doctors_rules(db, doctor) -> None:
    other = add_doctor(db, email='wilson@clinic.test', name='Dr. Wilson')
    rule = db.query(DoctorAvailableTime).filter(DoctorAvailableTime.doctor_id == doctor.id).first()

    with pytest.raises(Forbidden):
        delete_available_time(doctor.id, rule.id, principal=principal_for(other, Role.DOCTOR), db=db)


def test_admin_can_edit_any_doctors_rules(db) -> None:
    doctor = add_doctor(db)
    rule = add_rule(db, doctor)
    admin = add_admin(db)

    delete_available_time(doctor.id, rule.id, principal=principal_for(admin, Role.ADMIN), db=db)

    assert db.query(DoctorAvailableTime).count() == 0


def test_rule_lookup_is_scoped_to_doctor(db, doctor) -> None:
    other = add_doctor(db, email='wilson@clinic.test', name='Dr. Wilson')
    rule = db.query(DoctorAvailableTime).filter(DoctorAvailableTime.doctor_id == doctor.id).first()

    with pytest.raises(NotFound):
        delete_available_time(other.id, rule.id, principal=principal_for(other, Role.DOCTOR), db=db)

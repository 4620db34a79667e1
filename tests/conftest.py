import os
from datetime import date, datetime, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')

from clinic.auth.tokens import TokenAuthority, TokenClaims, TokenSettings  # noqa: E402
from clinic.database import Base  # noqa: E402
from clinic.models import appointment, availability, prescription, user  # noqa: E402,F401
from clinic.models.appointment import Appointment, AppointmentStatus  # noqa: E402
from clinic.models.availability import DoctorAvailableTime  # noqa: E402
from clinic.models.user import Admin, Doctor, Patient, Role  # noqa: E402
from clinic.services.repository import ClinicRepository  # noqa: E402

TEST_SECRET = 'test-secret-key-that-is-long-enough-for-hs256'

# 2030-01-07 is a Monday.
MONDAY = date(2030, 1, 7)
BEFORE_MONDAY = datetime(2030, 1, 1, 8, 0)


@pytest.fixture
def db():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def repository(db):
    return ClinicRepository(db)


@pytest.fixture
def authority() -> TokenAuthority:
    return TokenAuthority(TokenSettings(secret_key=TEST_SECRET))


def add_doctor(db, email='house@clinic.test', name='Dr. House', specialty='Diagnostics') -> Doctor:
    doctor = Doctor(name=name, email=email, hashed_password='not-a-real-hash', specialty=specialty)
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


def add_patient(db, email='alice@example.test', name='Alice') -> Patient:
    patient = Patient(name=name, email=email, hashed_password='not-a-real-hash')
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


def add_admin(db, email='root@clinic.test', username='root') -> Admin:
    admin = Admin(username=username, email=email, hashed_password='not-a-real-hash')
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin


def add_rule(db, doctor, day_of_week=0, start=time(9, 0), end=time(10, 0), is_active=True) -> DoctorAvailableTime:
    rule = DoctorAvailableTime(
        doctor_id=doctor.id,
        day_of_week=day_of_week,
        start_time=start,
        end_time=end,
        is_active=is_active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def add_appointment(db, doctor, patient, when, status=AppointmentStatus.SCHEDULED) -> Appointment:
    record = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        appointment_time=when,
        status=status,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def principal_for(account, role: Role) -> TokenClaims:
    now = datetime(2030, 1, 1)
    return TokenClaims(email=account.email, role=role, user_id=account.id, issued_at=now, expires_at=now)


@pytest.fixture
def doctor(db):
    doctor = add_doctor(db)
    add_rule(db, doctor)
    return doctor


@pytest.fixture
def patient(db):
    return add_patient(db)

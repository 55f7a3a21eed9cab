import os
from datetime import date, time, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from hospital_api.database import Base  # noqa: E402
from hospital_api.models.appointment import STATUS_SCHEDULED, Appointment  # noqa: E402
from hospital_api.models.department import Department  # noqa: E402
from hospital_api.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User  # noqa: E402

TABLES = [Department.__table__, User.__table__, Appointment.__table__]

WEEKDAY_HOURS = {
    'available': True,
    'start_time': '09:00',
    'end_time': '11:00',
}


def next_weekday(weekday: int) -> date:
    """A date on ``weekday`` (0=Monday) at least a week after today."""
    today = date.today()
    return today + timedelta(days=(weekday - today.weekday()) % 7 + 7)


@pytest.fixture
def monday() -> date:
    return next_weekday(0)


@pytest.fixture
def tuesday() -> date:
    return next_weekday(1)


@pytest.fixture
def db_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture
def db(db_engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def department(db) -> Department:
    cardiology = Department(name='Cardiology', description='Heart and vessels')
    db.add(cardiology)
    db.commit()
    db.refresh(cardiology)
    return cardiology


@pytest.fixture
def admin(db) -> User:
    return _add_user(db, email='admin@hospital.org', name='Ada Admin', role=ROLE_ADMIN)


@pytest.fixture
def patient(db) -> User:
    return _add_user(db, email='pat@example.org', name='Pat Patient', role=ROLE_PATIENT)


@pytest.fixture
def other_patient(db) -> User:
    return _add_user(db, email='sam@example.org', name='Sam Patient', role=ROLE_PATIENT)


@pytest.fixture
def doctor(db, department) -> User:
    return _add_user(
        db,
        email='dr.lee@hospital.org',
        name='Dr. Lee',
        role=ROLE_DOCTOR,
        department_id=department.id,
        specialization='Cardiology',
        schedule={'monday': dict(WEEKDAY_HOURS), 'tuesday': {'available': False}},
    )


@pytest.fixture
def other_doctor(db) -> User:
    return _add_user(
        db,
        email='dr.kim@hospital.org',
        name='Dr. Kim',
        role=ROLE_DOCTOR,
        schedule={'monday': {'available': True, 'start_time': '10:00', 'end_time': '12:00'}},
    )


def _add_user(db, **fields) -> User:
    user = User(hashed_password='', **fields)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def book(db):
    def _book(doctor: User, patient: User, on: date, start: time, end: time, status: str = STATUS_SCHEDULED) -> Appointment:
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=on,
            start_time=start,
            end_time=end,
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _book

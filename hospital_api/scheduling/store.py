"""Database-backed schedule and booking collaborators for slot computation."""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from threading import Lock
from typing import Iterator

from sqlalchemy.orm import Session

from hospital_api.models.appointment import STATUS_CANCELLED, Appointment
from hospital_api.models.user import ROLE_DOCTOR, User
from hospital_api.scheduling.slots import TimeInterval, WeeklySchedule, is_within_working_hours

logger = logging.getLogger(__name__)

_doctor_locks: dict[int, Lock] = {}
_doctor_locks_guard = Lock()


class DoctorNotFoundError(LookupError):
    def __init__(self, doctor_id: int):
        self.doctor_id = doctor_id
        super().__init__(f'Doctor {doctor_id} not found.')


class BookingConflictError(Exception):
    def __init__(self, conflicting_appointment: Appointment):
        self.conflicting_appointment = conflicting_appointment
        super().__init__(
            f'Doctor {conflicting_appointment.doctor_id} already has appointment '
            f'{conflicting_appointment.id} overlapping this interval.'
        )


class BookingRejectedError(Exception):
    """The booking can no longer be made, independent of other appointments."""


def _doctor_lock(doctor_id: int) -> Lock:
    with _doctor_locks_guard:
        return _doctor_locks.setdefault(doctor_id, Lock())


def get_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(User.id == doctor_id, User.role == ROLE_DOCTOR).first()
    if doctor is None:
        raise DoctorNotFoundError(doctor_id)
    return doctor


def list_doctors(db: Session) -> list[User]:
    return db.query(User).filter(User.role == ROLE_DOCTOR).order_by(User.name.asc(), User.id.asc()).all()


def schedule_for(doctor: User) -> WeeklySchedule:
    return WeeklySchedule.model_validate(doctor.schedule or {})


def get_weekly_schedule(db: Session, doctor_id: int) -> WeeklySchedule:
    return schedule_for(get_doctor(db, doctor_id))


def save_weekly_schedule(db: Session, doctor_id: int, schedule: WeeklySchedule) -> WeeklySchedule:
    doctor = get_doctor(db, doctor_id)
    doctor.schedule = schedule.model_dump(mode='json')
    db.commit()
    db.refresh(doctor)
    logger.info('Updated weekly schedule for doctor %s', doctor_id)
    return schedule_for(doctor)


def _active_appointments(db: Session, doctor_id: int, target_date: date):
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == target_date,
        Appointment.status != STATUS_CANCELLED,
    )


def get_booked_intervals(db: Session, doctor_id: int, target_date: date) -> list[TimeInterval]:
    appointments = _active_appointments(db, doctor_id, target_date).order_by(Appointment.start_time.asc()).all()
    return [
        TimeInterval(start_time=appointment.start_time, end_time=appointment.end_time)
        for appointment in appointments
    ]


def find_conflicting_appointment(
    db: Session,
    doctor_id: int,
    target_date: date,
    interval: TimeInterval,
    exclude_appointment_id: int | None = None,
) -> Appointment | None:
    query = _active_appointments(db, doctor_id, target_date).filter(
        Appointment.start_time < interval.end_time,
        Appointment.end_time > interval.start_time,
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)
    return query.order_by(Appointment.start_time.asc()).first()


def find_available_doctors(db: Session, target_date: date, interval: TimeInterval) -> list[User]:
    busy_doctor_ids = {
        doctor_id
        for (doctor_id,) in db.query(Appointment.doctor_id).filter(
            Appointment.appointment_date == target_date,
            Appointment.status != STATUS_CANCELLED,
            Appointment.start_time < interval.end_time,
            Appointment.end_time > interval.start_time,
        ).distinct()
    }

    return [
        doctor
        for doctor in list_doctors(db)
        if doctor.id not in busy_doctor_ids
        and is_within_working_hours(schedule_for(doctor), target_date, interval)
    ]


@contextmanager
def _booking_guard(db: Session, doctor_id: int) -> Iterator[User]:
    """Serialize writers for one doctor while bookings are re-checked.

    The in-process lock covers threads of this worker; the row lock on the
    doctor covers other workers on databases that support FOR UPDATE.
    """
    with _doctor_lock(doctor_id):
        try:
            doctor = (
                db.query(User)
                .filter(User.id == doctor_id, User.role == ROLE_DOCTOR)
                .with_for_update()
                .first()
            )
            if doctor is None:
                raise DoctorNotFoundError(doctor_id)
            yield doctor
        except Exception:
            db.rollback()
            raise


def insert_appointment_if_no_conflict(db: Session, appointment: Appointment) -> Appointment:
    interval = TimeInterval(start_time=appointment.start_time, end_time=appointment.end_time)

    with _booking_guard(db, appointment.doctor_id):
        conflict = find_conflicting_appointment(db, appointment.doctor_id, appointment.appointment_date, interval)
        if conflict is not None:
            logger.info(
                'Rejected booking for doctor %s on %s %s: overlaps appointment %s',
                appointment.doctor_id,
                appointment.appointment_date,
                interval.display,
                conflict.id,
            )
            raise BookingConflictError(conflict)

        db.add(appointment)
        db.commit()

    db.refresh(appointment)
    return appointment


def update_appointment_status(
    db: Session,
    appointment: Appointment,
    status: str,
    notes: str | None = None,
) -> Appointment:
    """Change the status, re-checking conflicts when a cancelled booking is revived."""
    if appointment.status == STATUS_CANCELLED and status != STATUS_CANCELLED:
        interval = TimeInterval(start_time=appointment.start_time, end_time=appointment.end_time)
        with _booking_guard(db, appointment.doctor_id) as doctor:
            conflict = find_conflicting_appointment(
                db,
                appointment.doctor_id,
                appointment.appointment_date,
                interval,
                exclude_appointment_id=appointment.id,
            )
            if conflict is not None:
                raise BookingConflictError(conflict)
            _ensure_still_bookable(doctor, appointment, interval)
            _apply_status(appointment, status, notes)
            db.commit()
    else:
        _apply_status(appointment, status, notes)
        db.commit()

    db.refresh(appointment)
    return appointment


def _apply_status(appointment: Appointment, status: str, notes: str | None) -> None:
    appointment.status = status
    if notes:
        appointment.notes = notes


def _ensure_still_bookable(doctor: User, appointment: Appointment, interval: TimeInterval) -> None:
    if datetime.combine(appointment.appointment_date, appointment.start_time) <= datetime.now():
        raise BookingRejectedError('Cannot book appointments in the past.')
    if not is_within_working_hours(schedule_for(doctor), appointment.appointment_date, interval):
        raise BookingRejectedError("Appointment is outside the doctor's working hours.")

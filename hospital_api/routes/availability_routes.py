import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_api.auth.dependencies import get_current_user
from hospital_api.core import config
from hospital_api.database import get_db
from hospital_api.models.user import ROLE_ADMIN, ROLE_DOCTOR, User
from hospital_api.routes.common import database_unavailable, department_names
from hospital_api.scheduling import store
from hospital_api.scheduling.slots import (
    WeeklySchedule,
    compute_available_slots,
    drop_started_slots,
    interval_starting_at,
    to_minute,
)
from hospital_api.scheduling.store import DoctorNotFoundError

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now()


class SlotResponse(BaseModel):
    start_time: time
    end_time: time
    display: str


class SlotAvailabilityResponse(BaseModel):
    doctor_id: int
    date: date
    slot_duration_minutes: int
    available: bool
    slots: list[SlotResponse]
    reason: str | None = None


class DoctorSummaryResponse(BaseModel):
    id: int
    name: str
    email: str
    specialization: str
    phone: str
    department_id: int | None = None
    department_name: str | None = None


class WeeklyScheduleResponse(BaseModel):
    doctor_id: int
    schedule: WeeklySchedule


def serialize_doctors(db: Session, doctors: list[User]) -> list[DoctorSummaryResponse]:
    names = department_names(db, (doctor.department_id for doctor in doctors))
    return [
        DoctorSummaryResponse(
            id=doctor.id,
            name=doctor.name or doctor.email,
            email=doctor.email,
            specialization=doctor.specialization or '',
            phone=doctor.phone or '',
            department_id=doctor.department_id,
            department_name=names.get(doctor.department_id),
        )
        for doctor in doctors
    ]


@router.get(
    '/doctors/{doctor_id}/slots',
    response_model=SlotAvailabilityResponse,
    dependencies=[Depends(get_current_user)],
)
def get_doctor_slots(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    try:
        schedule = store.get_weekly_schedule(db, doctor_id)
        booked_intervals = store.get_booked_intervals(db, doctor_id, slot_date)
    except DoctorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except SQLAlchemyError as exc:
        logger.exception('Failed to load schedule or bookings for doctor %s', doctor_id)
        raise database_unavailable() from exc

    now = _now()
    result = compute_available_slots(
        schedule,
        booked_intervals,
        slot_date,
        config.SLOT_DURATION_MINUTES,
        today=now.date(),
    )
    if slot_date == now.date():
        result = drop_started_slots(result, now.time())

    return SlotAvailabilityResponse(
        doctor_id=doctor_id,
        date=slot_date,
        slot_duration_minutes=config.SLOT_DURATION_MINUTES,
        available=result.available,
        slots=[
            SlotResponse(start_time=slot.start_time, end_time=slot.end_time, display=slot.display)
            for slot in result.slots
        ],
        reason=result.reason,
    )


@router.get(
    '/doctors',
    response_model=list[DoctorSummaryResponse],
    dependencies=[Depends(get_current_user)],
)
def list_available_doctors(
    slot_date: date | None = Query(default=None, alias='date'),
    slot_time: time | None = Query(default=None, alias='time'),
    db: Session = Depends(get_db),
):
    if (slot_date is None) != (slot_time is None):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Both date and time are required to filter doctors by availability.',
        )

    interval = None
    if slot_time is not None:
        if slot_time.tzinfo is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Time must be a local time without a UTC offset.',
            )
        try:
            interval = interval_starting_at(to_minute(slot_time), config.SLOT_DURATION_MINUTES)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='Requested time leaves no room for an appointment before midnight.',
            ) from exc

    try:
        if interval is None:
            doctors = store.list_doctors(db)
        else:
            doctors = store.find_available_doctors(db, slot_date, interval)

        return serialize_doctors(db, doctors)
    except SQLAlchemyError as exc:
        logger.exception('Failed to list available doctors.')
        raise database_unavailable() from exc


@router.get(
    '/doctors/{doctor_id}/schedule',
    response_model=WeeklyScheduleResponse,
    dependencies=[Depends(get_current_user)],
)
def get_doctor_schedule(doctor_id: int, db: Session = Depends(get_db)):
    try:
        schedule = store.get_weekly_schedule(db, doctor_id)
    except DoctorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except SQLAlchemyError as exc:
        logger.exception('Failed to load schedule for doctor %s', doctor_id)
        raise database_unavailable() from exc

    return WeeklyScheduleResponse(doctor_id=doctor_id, schedule=schedule)


@router.put('/doctors/{doctor_id}/schedule', response_model=WeeklyScheduleResponse)
def update_doctor_schedule(
    doctor_id: int,
    schedule: WeeklySchedule,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    is_own_schedule = current_user.role == ROLE_DOCTOR and current_user.id == doctor_id
    if current_user.role != ROLE_ADMIN and not is_own_schedule:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only the doctor or an admin can update this schedule.',
        )

    try:
        saved = store.save_weekly_schedule(db, doctor_id, schedule)
    except DoctorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to save schedule for doctor %s', doctor_id)
        raise database_unavailable() from exc

    return WeeklyScheduleResponse(doctor_id=doctor_id, schedule=saved)

import logging
from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_api.auth.dependencies import ensure_role, get_current_user
from hospital_api.core import config
from hospital_api.database import get_db
from hospital_api.models.appointment import (
    APPOINTMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_SCHEDULED,
    Appointment,
)
from hospital_api.models.department import Department
from hospital_api.models.user import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User
from hospital_api.routes.common import database_unavailable, department_names
from hospital_api.scheduling import store
from hospital_api.scheduling.slots import interval_starting_at, is_on_slot_grid, is_within_working_hours, to_minute
from hospital_api.scheduling.store import BookingConflictError, BookingRejectedError, DoctorNotFoundError

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

MAX_APPOINTMENT_TEXT_LENGTH = 600


def _normalize_text(value: str | None) -> str:
    if value is None:
        return ''

    normalized = value.strip()
    if len(normalized) > MAX_APPOINTMENT_TEXT_LENGTH:
        raise ValueError(f'Must be {MAX_APPOINTMENT_TEXT_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    patient_id: int
    doctor_id: int
    appointment_date: date
    start_time: time
    symptoms: str | None = None
    notes: str | None = None
    department_id: int | None = None

    @field_validator('start_time')
    @classmethod
    def truncate_start_time(cls, value: time) -> time:
        return to_minute(value)

    @field_validator('symptoms', 'notes')
    @classmethod
    def validate_text(cls, value: str | None) -> str:
        return _normalize_text(value)


class UpdateAppointmentStatusRequest(BaseModel):
    status: str
    notes: str | None = None

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str:
        return _normalize_text(value)


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    patient_name: str
    doctor_name: str
    department_id: int | None = None
    department_name: str | None = None
    appointment_date: date
    start_time: time
    end_time: time
    symptoms: str
    notes: str
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


def serialize_appointments(db: Session, appointments: list[Appointment]) -> list[AppointmentResponse]:
    user_ids = {appointment.patient_id for appointment in appointments}
    user_ids.update(appointment.doctor_id for appointment in appointments)
    users = {user.id: user for user in db.query(User).filter(User.id.in_(user_ids)).all()} if user_ids else {}
    departments = department_names(db, (appointment.department_id for appointment in appointments))

    def display_name(user_id: int, fallback: str) -> str:
        user = users.get(user_id)
        if user is None:
            return fallback
        return user.name or user.email

    return [
        AppointmentResponse(
            id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            patient_name=display_name(appointment.patient_id, 'Unknown Patient'),
            doctor_name=display_name(appointment.doctor_id, 'Unknown Doctor'),
            department_id=appointment.department_id,
            department_name=departments.get(appointment.department_id),
            appointment_date=appointment.appointment_date,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            symptoms=appointment.symptoms or '',
            notes=appointment.notes or '',
            status=appointment.status,
            created_at=appointment.created_at,
            updated_at=appointment.updated_at,
        )
        for appointment in appointments
    ]


def can_view_appointment(user: User, appointment: Appointment) -> bool:
    if user.role == ROLE_ADMIN:
        return True
    if user.role == ROLE_DOCTOR:
        return appointment.doctor_id == user.id
    return appointment.patient_id == user.id


def get_appointment_or_404(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Appointment not found.')
    return appointment


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role == ROLE_DOCTOR:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Doctors cannot book appointments.')

    if current_user.role == ROLE_PATIENT and current_user.id != data.patient_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='You can only create appointments for yourself.',
        )

    if datetime.combine(data.appointment_date, data.start_time) <= datetime.now():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Cannot book appointments in the past.',
        )

    try:
        interval = interval_starting_at(data.start_time, config.SLOT_DURATION_MINUTES)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Appointment must end on the day it starts.',
        ) from exc

    try:
        patient = db.query(User).filter(User.id == data.patient_id, User.role == ROLE_PATIENT).first()
        if patient is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Patient not found.')

        doctor = store.get_doctor(db, data.doctor_id)
        schedule = store.schedule_for(doctor)

        if not is_within_working_hours(schedule, data.appointment_date, interval):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Appointment is outside the doctor's working hours.",
            )

        if not is_on_slot_grid(schedule, data.appointment_date, data.start_time, config.SLOT_DURATION_MINUTES):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f'Appointments must start on a {config.SLOT_DURATION_MINUTES}-minute slot boundary.',
            )

        department_id = doctor.department_id
        if data.department_id is not None:
            department = db.query(Department).filter(Department.id == data.department_id).first()
            if department is None:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Department not found.')
            department_id = department.id

        appointment = store.insert_appointment_if_no_conflict(
            db,
            Appointment(
                patient_id=patient.id,
                doctor_id=doctor.id,
                department_id=department_id,
                appointment_date=data.appointment_date,
                start_time=interval.start_time,
                end_time=interval.end_time,
                symptoms=data.symptoms,
                notes=data.notes,
                status=STATUS_SCHEDULED,
            ),
        )

        logger.info(
            'Booked appointment %s for patient %s with doctor %s on %s %s',
            appointment.id,
            patient.id,
            doctor.id,
            appointment.appointment_date,
            interval.display,
        )
        return serialize_appointments(db, [appointment])[0]
    except DoctorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Doctor already has an appointment at this time.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create appointment.')
        raise database_unavailable() from exc


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_role(current_user, ROLE_ADMIN, detail='Only admins can view all appointments.')

    try:
        appointments = db.query(Appointment).order_by(
            Appointment.appointment_date.asc(),
            Appointment.start_time.asc(),
        ).all()
        return serialize_appointments(db, appointments)
    except SQLAlchemyError as exc:
        logger.exception('Failed to list appointments.')
        raise database_unavailable() from exc


@router.get('/me', response_model=list[AppointmentResponse])
def list_my_appointments(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_role(
        current_user,
        ROLE_PATIENT,
        ROLE_DOCTOR,
        detail='Only patients and doctors have their own appointments.',
    )
    owner_column = Appointment.doctor_id if current_user.role == ROLE_DOCTOR else Appointment.patient_id

    try:
        appointments = db.query(Appointment).filter(owner_column == current_user.id).order_by(
            Appointment.appointment_date.asc(),
            Appointment.start_time.asc(),
        ).all()
        return serialize_appointments(db, appointments)
    except SQLAlchemyError as exc:
        logger.exception('Failed to list appointments for user %s', current_user.id)
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        appointment = get_appointment_or_404(db, appointment_id)
        if not can_view_appointment(current_user, appointment):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied.')
        return serialize_appointments(db, [appointment])[0]
    except SQLAlchemyError as exc:
        logger.exception('Failed to load appointment %s', appointment_id)
        raise database_unavailable() from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateAppointmentStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if data.status not in APPOINTMENT_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Valid status is required ({', '.join(APPOINTMENT_STATUSES)}).",
        )

    try:
        appointment = get_appointment_or_404(db, appointment_id)

        if not can_view_appointment(current_user, appointment):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied.')

        if current_user.role == ROLE_PATIENT and data.status != STATUS_CANCELLED:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only cancel their appointments.',
            )

        appointment = store.update_appointment_status(db, appointment, data.status, data.notes)
        logger.info('Appointment %s moved to %s by user %s', appointment.id, appointment.status, current_user.id)
        return serialize_appointments(db, [appointment])[0]
    except BookingConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Doctor already has another appointment at this time.',
        ) from exc
    except BookingRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DoctorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Doctor not found.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update appointment %s', appointment_id)
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_role(current_user, ROLE_ADMIN, detail='Only admins can delete appointments.')

    try:
        appointment = get_appointment_or_404(db, appointment_id)
        db.delete(appointment)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to delete appointment %s', appointment_id)
        raise database_unavailable() from exc

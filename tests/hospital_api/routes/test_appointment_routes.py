from datetime import date, time, timedelta

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from hospital_api.models.appointment import STATUS_CANCELLED, STATUS_CONFIRMED, Appointment
from hospital_api.routes.appointment_routes import (
    CreateAppointmentRequest,
    UpdateAppointmentStatusRequest,
    create_appointment,
    delete_appointment,
    get_appointment,
    list_appointments,
    list_my_appointments,
    update_appointment_status,
)
from hospital_api.routes.availability_routes import get_doctor_slots


def booking_request(patient, doctor, on: date, start: time = time(9, 30), **extra) -> CreateAppointmentRequest:
    return CreateAppointmentRequest(
        patient_id=patient.id,
        doctor_id=doctor.id,
        appointment_date=on,
        start_time=start,
        **extra,
    )


def test_create_appointment_request_normalizes_fields(patient, doctor, monday) -> None:
    request = booking_request(patient, doctor, monday, time(9, 30, 42), symptoms='  cough  ', notes=None)

    assert request.start_time == time(9, 30)
    assert request.symptoms == 'cough'
    assert request.notes == ''


def test_create_appointment_request_rejects_long_notes(patient, doctor, monday) -> None:
    with pytest.raises(ValidationError):
        booking_request(patient, doctor, monday, notes='x' * 601)


def test_patient_books_own_appointment(db, patient, doctor, department, monday) -> None:
    response = create_appointment(booking_request(patient, doctor, monday, symptoms='Chest pain'), db=db, current_user=patient)

    assert response.status == 'scheduled'
    assert response.start_time == time(9, 30)
    assert response.end_time == time(10, 0)
    assert response.patient_name == 'Pat Patient'
    assert response.doctor_name == 'Dr. Lee'
    assert response.department_id == department.id
    assert response.department_name == 'Cardiology'
    assert response.symptoms == 'Chest pain'


def test_admin_books_for_any_patient(db, admin, patient, doctor, monday) -> None:
    response = create_appointment(booking_request(patient, doctor, monday), db=db, current_user=admin)

    assert response.patient_id == patient.id


def test_patient_cannot_book_for_someone_else(db, patient, other_patient, doctor, monday) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(other_patient, doctor, monday), db=db, current_user=patient)

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'You can only create appointments for yourself.'


def test_doctor_cannot_book(db, patient, doctor, monday) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, doctor, monday), db=db, current_user=doctor)

    assert exception_info.value.status_code == 403


def test_create_appointment_rejects_past_date(db, patient, doctor) -> None:
    yesterday = date.today() - timedelta(days=1)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, doctor, yesterday), db=db, current_user=patient)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Cannot book appointments in the past.'


def test_create_appointment_rejects_unknown_doctor(db, patient, other_patient, monday) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, other_patient, monday), db=db, current_user=patient)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor not found.'


def test_create_appointment_rejects_unknown_department(db, patient, doctor, monday) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, doctor, monday, department_id=999), db=db, current_user=patient)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Department not found.'


@pytest.mark.parametrize(
    ('day_fixture', 'start'),
    [
        ('tuesday', time(9, 30)),  # day off
        ('monday', time(10, 45)),  # runs past closing
        ('monday', time(8, 30)),  # before opening
    ],
)
def test_create_appointment_rejects_outside_working_hours(db, patient, doctor, day_fixture, start, request) -> None:
    on = request.getfixturevalue(day_fixture)

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, doctor, on, start), db=db, current_user=patient)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == "Appointment is outside the doctor's working hours."


def test_create_appointment_rejects_off_grid_start(db, patient, doctor, monday) -> None:
    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, doctor, monday, time(9, 15)), db=db, current_user=patient)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Appointments must start on a 30-minute slot boundary.'


def test_create_appointment_rejects_double_booking(db, patient, other_patient, doctor, monday, book) -> None:
    book(doctor, other_patient, monday, time(9, 30), time(10, 0))

    with pytest.raises(HTTPException) as exception_info:
        create_appointment(booking_request(patient, doctor, monday), db=db, current_user=patient)

    assert exception_info.value.status_code == 409
    assert db.query(Appointment).count() == 1


def test_create_appointment_reuses_cancelled_slot(db, patient, other_patient, doctor, monday, book) -> None:
    book(doctor, other_patient, monday, time(9, 30), time(10, 0), status=STATUS_CANCELLED)

    response = create_appointment(booking_request(patient, doctor, monday), db=db, current_user=patient)

    assert response.status == 'scheduled'


def test_list_appointments_is_admin_only(db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_appointments(db=db, current_user=patient)

    assert exception_info.value.status_code == 403


def test_list_appointments_orders_by_date_and_time(db, admin, patient, doctor, monday, tuesday, book) -> None:
    later = book(doctor, patient, tuesday, time(9, 0), time(9, 30))
    second = book(doctor, patient, monday, time(10, 0), time(10, 30))
    first = book(doctor, patient, monday, time(9, 0), time(9, 30))

    response = list_appointments(db=db, current_user=admin)

    assert [item.id for item in response] == [first.id, second.id, later.id]


def test_list_my_appointments_scopes_to_caller(db, patient, other_patient, doctor, monday, book) -> None:
    mine = book(doctor, patient, monday, time(9, 0), time(9, 30))
    book(doctor, other_patient, monday, time(10, 0), time(10, 30))

    patient_view = list_my_appointments(db=db, current_user=patient)
    doctor_view = list_my_appointments(db=db, current_user=doctor)

    assert [item.id for item in patient_view] == [mine.id]
    assert len(doctor_view) == 2


def test_list_my_appointments_rejects_admin(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_my_appointments(db=db, current_user=admin)

    assert exception_info.value.status_code == 403


def test_get_appointment_hides_other_patients_bookings(db, patient, other_patient, doctor, monday, book) -> None:
    appointment = book(doctor, other_patient, monday, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=appointment.id, db=db, current_user=patient)

    assert exception_info.value.status_code == 403
    assert get_appointment(appointment_id=appointment.id, db=db, current_user=doctor).id == appointment.id


def test_get_appointment_returns_not_found(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_appointment(appointment_id=404, db=db, current_user=admin)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Appointment not found.'


def test_update_status_rejects_unknown_status(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=1,
            data=UpdateAppointmentStatusRequest(status='postponed'),
            db=db,
            current_user=admin,
        )

    assert exception_info.value.status_code == 400


def test_doctor_confirms_own_appointment(db, patient, doctor, monday, book) -> None:
    appointment = book(doctor, patient, monday, time(9, 0), time(9, 30))

    response = update_appointment_status(
        appointment_id=appointment.id,
        data=UpdateAppointmentStatusRequest(status=' Confirmed ', notes='See you soon'),
        db=db,
        current_user=doctor,
    )

    assert response.status == STATUS_CONFIRMED
    assert response.notes == 'See you soon'


def test_patient_can_only_cancel(db, patient, doctor, monday, book) -> None:
    appointment = book(doctor, patient, monday, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=appointment.id,
            data=UpdateAppointmentStatusRequest(status='confirmed'),
            db=db,
            current_user=patient,
        )
    assert exception_info.value.status_code == 403

    response = update_appointment_status(
        appointment_id=appointment.id,
        data=UpdateAppointmentStatusRequest(status='cancelled'),
        db=db,
        current_user=patient,
    )
    assert response.status == STATUS_CANCELLED


def test_reactivating_into_taken_slot_conflicts(db, admin, patient, other_patient, doctor, monday, book) -> None:
    cancelled = book(doctor, patient, monday, time(9, 0), time(9, 30), status=STATUS_CANCELLED)
    book(doctor, other_patient, monday, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=cancelled.id,
            data=UpdateAppointmentStatusRequest(status='scheduled'),
            db=db,
            current_user=admin,
        )

    assert exception_info.value.status_code == 409


def test_cancelling_reopens_slot(db, patient, doctor, monday, book) -> None:
    appointment = book(doctor, patient, monday, time(9, 0), time(9, 30))
    before = get_doctor_slots(doctor_id=doctor.id, slot_date=monday, db=db)

    update_appointment_status(
        appointment_id=appointment.id,
        data=UpdateAppointmentStatusRequest(status='cancelled'),
        db=db,
        current_user=patient,
    )
    after = get_doctor_slots(doctor_id=doctor.id, slot_date=monday, db=db)

    assert '09:00 - 09:30' not in [slot.display for slot in before.slots]
    assert '09:00 - 09:30' in [slot.display for slot in after.slots]


def test_delete_appointment_is_admin_only(db, admin, patient, doctor, monday, book) -> None:
    appointment = book(doctor, patient, monday, time(9, 0), time(9, 30))

    with pytest.raises(HTTPException) as exception_info:
        delete_appointment(appointment_id=appointment.id, db=db, current_user=patient)
    assert exception_info.value.status_code == 403

    delete_appointment(appointment_id=appointment.id, db=db, current_user=admin)

    assert db.query(Appointment).filter(Appointment.id == appointment.id).first() is None


def test_create_appointment_request_rejects_offset_aware_start(patient, doctor, monday) -> None:
    with pytest.raises(ValidationError):
        CreateAppointmentRequest(
            patient_id=patient.id,
            doctor_id=doctor.id,
            appointment_date=monday,
            start_time='09:30:00Z',
        )


def test_reactivating_past_appointment_is_rejected(db, admin, patient, doctor, book) -> None:
    last_week = date.today() - timedelta(days=7)
    cancelled = book(doctor, patient, last_week, time(9, 0), time(9, 30), status=STATUS_CANCELLED)

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=cancelled.id,
            data=UpdateAppointmentStatusRequest(status='scheduled'),
            db=db,
            current_user=admin,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Cannot book appointments in the past.'


def test_reactivating_outside_current_hours_is_rejected(db, patient, doctor, monday, book) -> None:
    cancelled = book(doctor, patient, monday, time(10, 30), time(11, 0), status=STATUS_CANCELLED)
    doctor.schedule = {'monday': {'available': True, 'start_time': '09:00', 'end_time': '10:00'}}
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        update_appointment_status(
            appointment_id=cancelled.id,
            data=UpdateAppointmentStatusRequest(status='confirmed'),
            db=db,
            current_user=doctor,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == "Appointment is outside the doctor's working hours."
    db.refresh(cancelled)
    assert cancelled.status == STATUS_CANCELLED

"""Appointment model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, func
from hospital_api.database import Base

STATUS_SCHEDULED = "scheduled"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED)


class Appointment(Base):
    """Represents a scheduled appointment.

    Any status other than ``cancelled`` keeps the interval blocked for the doctor.
    """
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_doctor_id_appointment_date", "doctor_id", "appointment_date"),
        Index("ix_appointments_patient_id_appointment_date", "patient_id", "appointment_date"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    symptoms = Column(String, default="")
    notes = Column(String, default="")
    status = Column(String, nullable=False, default=STATUS_SCHEDULED)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

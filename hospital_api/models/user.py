"""User model definitions."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, func
from hospital_api.database import Base

ROLE_ADMIN = "admin"
ROLE_DOCTOR = "doctor"
ROLE_PATIENT = "patient"


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    hashed_password = Column(String)
    role = Column(String, index=True)  # admin/doctor/patient
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    specialization = Column(String)
    phone = Column(String)
    # Weekly working hours, doctors only: {"monday": {"available": ..., "start_time": "09:00", ...}}
    schedule = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

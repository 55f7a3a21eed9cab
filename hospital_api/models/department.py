"""Department model definitions."""

from sqlalchemy import Column, DateTime, Integer, String, func
from hospital_api.database import Base


class Department(Base):
    """Represents a hospital department."""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, default="")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

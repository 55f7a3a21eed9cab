import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from hospital_api.auth.dependencies import ensure_role, get_current_user
from hospital_api.database import get_db
from hospital_api.models.appointment import Appointment
from hospital_api.models.department import Department
from hospital_api.models.user import ROLE_ADMIN, ROLE_DOCTOR, User
from hospital_api.routes.common import database_unavailable

router = APIRouter(tags=['departments'])

logger = logging.getLogger(__name__)

MAX_DEPARTMENT_DESCRIPTION_LENGTH = 500
DEPARTMENT_HAS_APPOINTMENTS_DETAIL = 'Department is still referenced by appointments.'


class DepartmentRequest(BaseModel):
    name: str
    description: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Department name is required.')
        return normalized

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str:
        normalized = (value or '').strip()
        if len(normalized) > MAX_DEPARTMENT_DESCRIPTION_LENGTH:
            raise ValueError(f'Description must be {MAX_DEPARTMENT_DESCRIPTION_LENGTH} characters or fewer.')
        return normalized


class DepartmentResponse(BaseModel):
    id: int
    name: str
    description: str
    doctor_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _doctor_count(db: Session, department_id: int) -> int:
    return db.query(User).filter(User.department_id == department_id, User.role == ROLE_DOCTOR).count()


def _to_response(db: Session, department: Department) -> DepartmentResponse:
    return DepartmentResponse(
        id=department.id,
        name=department.name,
        description=department.description or '',
        doctor_count=_doctor_count(db, department.id),
        created_at=department.created_at,
        updated_at=department.updated_at,
    )


def _find_by_name(db: Session, name: str, exclude_id: int | None = None) -> Department | None:
    query = db.query(Department).filter(func.lower(Department.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Department.id != exclude_id)
    return query.first()


def _get_department_or_404(db: Session, department_id: int) -> Department:
    department = db.query(Department).filter(Department.id == department_id).first()
    if department is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Department not found.')
    return department


@router.get('', response_model=list[DepartmentResponse], dependencies=[Depends(get_current_user)])
def list_departments(db: Session = Depends(get_db)):
    try:
        departments = db.query(Department).order_by(Department.name.asc()).all()
        return [_to_response(db, department) for department in departments]
    except SQLAlchemyError as exc:
        logger.exception('Failed to list departments.')
        raise database_unavailable() from exc


@router.get('/{department_id}', response_model=DepartmentResponse, dependencies=[Depends(get_current_user)])
def get_department(department_id: int, db: Session = Depends(get_db)):
    try:
        return _to_response(db, _get_department_or_404(db, department_id))
    except SQLAlchemyError as exc:
        logger.exception('Failed to load department %s', department_id)
        raise database_unavailable() from exc


@router.post('', response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
def create_department(
    data: DepartmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_role(current_user, ROLE_ADMIN, detail='Only admins can manage departments.')

    try:
        if _find_by_name(db, data.name) is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Department with this name already exists.',
            )

        department = Department(name=data.name, description=data.description)
        db.add(department)
        db.commit()
        db.refresh(department)
        return _to_response(db, department)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Department with this name already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create department.')
        raise database_unavailable() from exc


@router.put('/{department_id}', response_model=DepartmentResponse)
def update_department(
    department_id: int,
    data: DepartmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_role(current_user, ROLE_ADMIN, detail='Only admins can manage departments.')

    try:
        department = _get_department_or_404(db, department_id)
        if _find_by_name(db, data.name, exclude_id=department_id) is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Department with this name already exists.',
            )

        department.name = data.name
        department.description = data.description
        db.commit()
        db.refresh(department)
        return _to_response(db, department)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='Department with this name already exists.',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update department %s', department_id)
        raise database_unavailable() from exc


@router.delete('/{department_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_department(
    department_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_role(current_user, ROLE_ADMIN, detail='Only admins can manage departments.')

    try:
        department = _get_department_or_404(db, department_id)
        if _doctor_count(db, department_id) > 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail='Department still has doctors assigned.',
            )
        if db.query(Appointment).filter(Appointment.department_id == department_id).count() > 0:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=DEPARTMENT_HAS_APPOINTMENTS_DETAIL,
            )

        db.delete(department)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=DEPARTMENT_HAS_APPOINTMENTS_DETAIL,
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to delete department %s', department_id)
        raise database_unavailable() from exc

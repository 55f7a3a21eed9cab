from typing import Iterable

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from hospital_api.models.department import Department

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def department_names(db: Session, department_ids: Iterable[int | None]) -> dict[int, str]:
    ids = {department_id for department_id in department_ids if department_id is not None}
    if not ids:
        return {}

    return {
        department.id: department.name
        for department in db.query(Department).filter(Department.id.in_(ids)).all()
    }

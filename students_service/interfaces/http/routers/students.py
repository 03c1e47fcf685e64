from fastapi import APIRouter, Depends, Query, status

from ....application.dto import PageRequest
from ....config import settings
from ....infrastructure.repositories import StudentRepository
from ..authz import require_roles
from ..deps import get_student_repository
from ..schemas import (
    EmptyResp,
    ErrorResp,
    StudentCreate,
    StudentListResp,
    StudentResp,
    StudentUpdate,
)

router = APIRouter(
    prefix="/api/students",
    tags=["students"],
    responses={
        401: {"model": ErrorResp, "description": "Unauthorized"},
        403: {"model": ErrorResp, "description": "Forbidden"},
        408: {"model": ErrorResp, "description": "Request timeout"},
        429: {"model": ErrorResp, "description": "Too many requests"},
    },
)

can_read = Depends(require_roles(*settings.STUDENT_READ_ROLES))
can_write = Depends(require_roles(*settings.STUDENT_WRITE_ROLES))


@router.get("", response_model=StudentListResp, dependencies=[can_read])
def list_students(repo: StudentRepository = Depends(get_student_repository),
                  page: int = Query(1, ge=1, description="Page number"),
                  limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, description="Number of items per page"),
                  search: str | None = Query(None, description="Search term for name or email")):
    result = repo.list(search, PageRequest.build(page, limit, settings.MAX_PAGE_SIZE))
    return {
        "success": True,
        "data": result.items,
        "pagination": {"total": result.total, "page": result.request.page, "pages": result.pages},
    }


@router.get("/{student_id}", response_model=StudentResp, dependencies=[can_read],
            responses={400: {"model": ErrorResp}, 404: {"model": ErrorResp}})
def get_student(student_id: str, repo: StudentRepository = Depends(get_student_repository)):
    return {"success": True, "data": repo.get_by_id(student_id)}


# --- Изменение данных:

@router.post("", response_model=StudentResp, status_code=status.HTTP_201_CREATED, dependencies=[can_write],
             responses={400: {"model": ErrorResp}})
def create_student(payload: StudentCreate, repo: StudentRepository = Depends(get_student_repository)):
    return {"success": True, "data": repo.create(payload.model_dump())}


@router.put("/{student_id}", response_model=StudentResp, dependencies=[can_write],
            responses={400: {"model": ErrorResp}, 404: {"model": ErrorResp}})
def update_student(student_id: str, payload: StudentUpdate,
                   repo: StudentRepository = Depends(get_student_repository)):
    # только переданные поля; остальные берутся из текущей записи
    return {"success": True, "data": repo.update_by_id(student_id, payload.model_dump(exclude_unset=True))}


@router.delete("/{student_id}", response_model=EmptyResp, dependencies=[can_write],
               responses={400: {"model": ErrorResp}, 404: {"model": ErrorResp}})
def delete_student(student_id: str, repo: StudentRepository = Depends(get_student_repository)):
    repo.delete_by_id(student_id)
    return {"success": True, "data": {}}

from fastapi import Depends
from sqlalchemy.orm import Session

from ...infrastructure.db import get_db
from ...infrastructure.repositories import StudentRepository, UserRepository


def get_student_repository(db: Session = Depends(get_db)) -> StudentRepository:
    return StudentRepository(db)


def get_user_repository(db: Session = Depends(get_db)) -> UserRepository:
    return UserRepository(db)

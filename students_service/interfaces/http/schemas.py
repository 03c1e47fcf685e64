from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, EmailStr, Field, StringConstraints

# строка из одних пробелов считается пустой
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class StudentCreate(BaseModel):
    name: RequiredText
    age: int = Field(ge=0)
    grade: RequiredText
    email: EmailStr


class StudentUpdate(BaseModel):
    name: RequiredText | None = None
    age: int | None = Field(default=None, ge=0)
    grade: RequiredText | None = None
    email: EmailStr | None = None


class StudentOut(BaseModel):
    id: str
    name: str
    age: int
    grade: str
    email: str
    created_at: datetime = Field(alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class Pagination(BaseModel):
    total: int
    page: int
    pages: int


class StudentResp(BaseModel):
    success: bool = True
    data: StudentOut


class StudentListResp(BaseModel):
    success: bool = True
    data: list[StudentOut]
    pagination: Pagination


class EmptyResp(BaseModel):
    success: bool = True
    data: dict = Field(default_factory=dict)


class ErrorResp(BaseModel):
    success: bool = False
    message: str
    errors: list[str] | None = None


class RegisterReq(BaseModel):
    name: str
    email: EmailStr
    password: str


class LoginReq(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    id: int
    name: str
    email: str
    role: str
    class Config: from_attributes = True


class UserResp(BaseModel):
    success: bool = True
    data: UserOut


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenResp(BaseModel):
    success: bool = True
    data: TokenOut

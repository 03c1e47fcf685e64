from fastapi import APIRouter, Depends, status

from ....application.dto import RegisterUserInput
from ....application.use_cases.register_user import RegisterUser
from ....domain.entities import Principal
from ....domain.errors import InvalidCredentialError
from ....infrastructure.repositories import UserRepository
from ....infrastructure.security import PasswordHasher, create_access_token
from ..authz import get_current_principal
from ..deps import get_user_repository
from ..schemas import RegisterReq, LoginReq, UserResp, TokenResp, ErrorResp

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=UserResp, status_code=status.HTTP_201_CREATED,
             responses={400: {"model": ErrorResp}})
def register(payload: RegisterReq, users: UserRepository = Depends(get_user_repository)):
    uc = RegisterUser(repo=users, hasher=PasswordHasher())
    user = uc.execute(RegisterUserInput(name=payload.name, email=payload.email, password=payload.password))
    return {"success": True, "data": user}


@router.post("/login", response_model=TokenResp, responses={401: {"model": ErrorResp}})
def login(payload: LoginReq, users: UserRepository = Depends(get_user_repository)):
    found = users.get_credentials(payload.email.lower())
    if not found or not PasswordHasher().verify(payload.password, found[1]):
        raise InvalidCredentialError("Invalid credentials")
    user, _ = found
    token = create_access_token(sub=str(user.id))
    return {"success": True, "data": {"access_token": token, "token_type": "bearer"}}


@router.get("/me", response_model=UserResp, responses={401: {"model": ErrorResp}})
def me(principal: Principal = Depends(get_current_principal)):
    return {"success": True, "data": principal}

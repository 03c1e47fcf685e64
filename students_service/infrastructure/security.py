from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError, ExpiredSignatureError
from ..config import settings
from ..domain.errors import InvalidCredentialError, ExpiredCredentialError

pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class PasswordHasher:
    def hash(self, plain: str) -> str: return pwd.hash(plain)
    def verify(self, plain: str, hashed: str) -> bool: return pwd.verify(plain, hashed)


def create_access_token(sub: str, minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    if minutes is None:
        minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {"sub": sub, "iat": now, "exp": now + timedelta(minutes=minutes)}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> str:
    """Возвращает id пользователя (sub) из токена.

    Подпись проверяется раньше срока действия, поэтому просроченный токен с
    корректной подписью даёт ExpiredCredentialError, а испорченный даёт
    InvalidCredentialError.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as e:
        raise ExpiredCredentialError() from e
    except JWTError as e:
        raise InvalidCredentialError() from e
    sub = payload.get("sub")
    if not sub:
        raise InvalidCredentialError()
    return sub

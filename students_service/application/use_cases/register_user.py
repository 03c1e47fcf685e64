from ...domain.entities import User, Role
from ...domain.errors import DuplicateKeyError, ValidationFailure
from ..dto import RegisterUserInput


class IUserRepository:
    def get_by_email(self, email: str) -> User | None: ...
    def create(self, name: str, email: str, password_hash: str, role: str = Role.USER.value) -> User: ...


class IPasswordHasher:
    def hash(self, plain: str) -> str: ...


class RegisterUser:
    def __init__(self, repo: IUserRepository, hasher: IPasswordHasher):
        self.repo = repo
        self.hasher = hasher

    def execute(self, data: RegisterUserInput) -> User:
        name = data.name.strip()
        email = data.email.strip().lower()
        problems = []
        if not name:
            problems.append("name is required")
        if len(data.password) < 6:
            problems.append("password must be at least 6 characters")
        if problems:
            raise ValidationFailure(errors=problems)
        if self.repo.get_by_email(email):
            raise DuplicateKeyError("Email already registered")
        pwd_hash = self.hasher.hash(data.password)
        return self.repo.create(name, email, pwd_hash)


class EnsureAdmin:
    """Создаёт администратора, если пользователя с таким email ещё нет."""

    def __init__(self, repo: IUserRepository, hasher: IPasswordHasher):
        self.repo = repo
        self.hasher = hasher

    def execute(self, name: str, email: str, password: str) -> User:
        email = email.strip().lower()
        existing = self.repo.get_by_email(email)
        if existing:
            return existing
        return self.repo.create(name.strip(), email, self.hasher.hash(password), Role.ADMIN.value)

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./students.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_OPERATION_TIMEOUT_SECONDS: float = 5.0

    SECRET_KEY: str = "dev-secret-students"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    REQUEST_TIMEOUT_SECONDS: float = 30.0
    DATA_REQUEST_TIMEOUT_SECONDS: float = 15.0  # для /api/students

    RATE_LIMIT: str = "100/15 minutes"
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    CORS_ORIGINS: list[str] = ["*"]
    MAX_BODY_BYTES: int = 100 * 1024

    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 100

    STUDENT_READ_ROLES: list[str] = ["admin", "user"]
    STUDENT_WRITE_ROLES: list[str] = ["admin"]

    # администратор, создаваемый при старте, если задан
    ADMIN_EMAIL: str | None = None
    ADMIN_PASSWORD: str | None = None
    ADMIN_NAME: str = "Administrator"

    LOG_LEVEL: str = "INFO"
    HOST: str = "0.0.0.0"
    PORT: int = 10000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

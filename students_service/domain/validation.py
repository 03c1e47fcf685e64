from typing import Any

from email_validator import EmailNotValidError, validate_email

from .errors import ValidationFailure

STUDENT_FIELDS = ("name", "age", "grade", "email")


def _required_text(field: str, value: Any, problems: list[str]) -> str | None:
    if value is None:
        problems.append(f"{field} is required")
        return None
    if not isinstance(value, str):
        problems.append(f"{field} must be a string")
        return None
    value = value.strip()
    if not value:
        problems.append(f"{field} is required")
        return None
    return value


def validate_student(fields: dict[str, Any]) -> dict[str, Any]:
    """Проверяет полный набор полей студента и возвращает нормализованные значения.

    Собирает все нарушения сразу, а не только первое. Email приводится к нижнему
    регистру, строки обрезаются по краям.
    """
    problems: list[str] = []

    name = _required_text("name", fields.get("name"), problems)
    grade = _required_text("grade", fields.get("grade"), problems)

    age = fields.get("age")
    if age is None:
        problems.append("age is required")
    elif isinstance(age, bool) or not isinstance(age, int):
        problems.append("age must be an integer")
    elif age < 0:
        problems.append(f"age ({age}) is less than minimum allowed value (0)")

    email = _required_text("email", fields.get("email"), problems)
    if email is not None:
        try:
            email = validate_email(email, check_deliverability=False).normalized.lower()
        except EmailNotValidError:
            problems.append(f"{email} is not a valid email address!")

    if problems:
        raise ValidationFailure(errors=problems)
    return {"name": name, "age": age, "grade": grade, "email": email}

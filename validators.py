import re
from typing import Any

from bson import ObjectId

from errors import ValidationError

_CURRENCY_RE = re.compile(r"^[A-Za-z]{3}$")


def is_valid_id(value: Any) -> bool:
    return isinstance(value, (str, ObjectId)) and ObjectId.is_valid(value)


def validate_id(value: Any, message: str = "Invalid ID") -> ObjectId:
    if not is_valid_id(value):
        raise ValidationError(message)
    return ObjectId(value)


def validate_password(password: str) -> None:
    # at least 8 chars and one digit
    if password is None or len(password) < 8:
        raise ValidationError("Password must be at least 8 characters long")
    if not re.search(r"[0-9]", password):
        raise ValidationError("Password must contain at least one number")


def parse_currency(code: str) -> str:
    if not code or not _CURRENCY_RE.match(code.strip()):
        raise ValidationError(f"Invalid currency code: {code}")
    return code.strip().upper()

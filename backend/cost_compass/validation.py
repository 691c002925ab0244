from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from .permissions import is_valid_access_level, is_valid_permission, is_valid_role
from .time_utils import parse_iso_datetime


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., permission already assigned)."""


class NotFoundError(ValueError):
    """404-level missing entity (e.g., property access row not found)."""


def require_fields(data: dict | None, *names: str) -> dict:
    """Return data if every named field is present and non-empty, else raise."""
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")
    missing = [name for name in names if data.get(name) in (None, "", [])]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return data


def parse_int(value: Any, field: str) -> int:
    """Strict integer parsing: rejects bools, floats and decimal strings."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lstrip("-").isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def parse_int_list(values: Any, field: str) -> list[int]:
    if not isinstance(values, list) or not values:
        raise ValidationError(f"{field} must be a non-empty list")
    return [parse_int(v, field) for v in values]


def parse_optional_datetime(value: Any, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 string")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def validate_role(role: Any) -> str:
    if not is_valid_role(role):
        raise ValidationError(f"Invalid role: {role}")
    return role


def validate_access_level(level: Any) -> str:
    if not is_valid_access_level(level):
        raise ValidationError(f"Invalid access level: {level}")
    return level


def validate_permission_names(names: Iterable[Any]) -> list[str]:
    """All names must be catalog keys; reports every unknown one."""
    names = list(names)
    unknown = [name for name in names if not is_valid_permission(name)]
    if unknown:
        raise ValidationError(f"Unknown permissions: {', '.join(map(str, unknown))}")
    return names

"""Per-kind coercion of record field values.

Each declared field kind has one coercer that either returns the value in
its stored form or raises FieldValueError. ``None`` is never coerced; it
means "no value" for every kind.
"""

from __future__ import annotations

import copy
import math
import re
from datetime import date, datetime
from typing import Any, Callable, Dict

from .canonical_json import JsonValueError, check_json_value


FIELD_KINDS = ("string", "number", "boolean", "date", "email", "json")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_TRUE_WORDS = {"true", "1", "yes"}
_FALSE_WORDS = {"false", "0", "no"}


class FieldValueError(ValueError):
    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


def _coerce_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise FieldValueError("string", "must be a string")


def _coerce_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise FieldValueError("number", "must be a number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise FieldValueError("number", "must be a finite number")
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            raise FieldValueError("number", "must be a number") from None
        if not math.isfinite(parsed):
            raise FieldValueError("number", "must be a finite number")
        return parsed
    raise FieldValueError("number", "must be a number")


def _coerce_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise FieldValueError("boolean", "must be a boolean")


def _coerce_date(value: Any) -> str:
    # datetime is a date subclass; check it first
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise FieldValueError("date", "must be an ISO-8601 date string")
    text = value.strip()
    try:
        return date.fromisoformat(text).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).isoformat()
    except ValueError:
        raise FieldValueError("date", "must be an ISO-8601 date string") from None


def _coerce_email(value: Any) -> str:
    if not isinstance(value, str):
        raise FieldValueError("email", "must be an email address")
    text = value.strip()
    if not _EMAIL_RE.match(text):
        raise FieldValueError("email", "must be an email address")
    return text


def _coerce_json(value: Any) -> Any:
    try:
        check_json_value(value)
    except JsonValueError as exc:
        raise FieldValueError("json", f"must be JSON-serializable ({exc})") from None
    return copy.deepcopy(value)


_COERCERS: Dict[str, Callable[[Any], Any]] = {
    "string": _coerce_string,
    "number": _coerce_number,
    "boolean": _coerce_boolean,
    "date": _coerce_date,
    "email": _coerce_email,
    "json": _coerce_json,
}


def coerce_value(kind: str, value: Any) -> Any:
    if value is None:
        return None
    coercer = _COERCERS.get(kind)
    if coercer is None:
        raise FieldValueError(kind, f"unknown field type: {kind}")
    return coercer(value)

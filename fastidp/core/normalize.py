from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from fastidp.errors import ValidationError

_COUNTRY_CODE_RE = re.compile(r"^[A-Za-z]{2}$")


def clean_str(value: Any, *, max_len: Optional[int] = None) -> Optional[str]:
    if value is None:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None
    if max_len is not None and len(trimmed) > max_len:
        raise ValidationError(f"Value too long (max {max_len})")
    return trimmed


def normalize_email(s: str) -> str:
    s = (s or "").strip().lower()
    if "@" not in s or len(s) > 254:
        raise ValidationError("Invalid email", field="email")
    return s


def normalize_country_code(value: Any) -> Optional[str]:
    cleaned = clean_str(value)
    if not cleaned or not _COUNTRY_CODE_RE.match(cleaned):
        return None
    return cleaned.upper()


def as_int(value: Any, default: int = 0) -> int:
    # DynamoDB hands numbers back as Decimal
    if value is None:
        return default
    if isinstance(value, Decimal):
        return int(value)
    return int(value)


def from_ddb(value: Any) -> Any:
    """Return ``value`` with every DynamoDB ``Decimal`` turned into int or float."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_ddb(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [from_ddb(v) for v in value]
    return value


def dollars_str_to_cents(s: Any) -> Optional[int]:
    if s is None or s == "":
        return None
    try:
        d = Decimal(str(s)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return int(d * 100)
    except (InvalidOperation, ValueError):
        return None

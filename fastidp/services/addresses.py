from __future__ import annotations

from typing import Any, Dict, Optional

from fastidp.core.normalize import clean_str
from fastidp.errors import ValidationError
from fastidp.services import easypost

MAX_ADDRESS_LINE_LEN = 120

# Coarse ZIP ranges used to catch obvious state/ZIP mismatches.
STATE_ZIP_RANGES = {
    "TX": (73301, 88595),
    "OK": (73001, 74966),
    "CA": (90001, 96162),
    "NY": (10001, 14925),
    "FL": (32003, 34997),
}


def zip_mismatch(state: Optional[str], zip_code: Optional[str]) -> bool:
    rng = STATE_ZIP_RANGES.get((state or "").upper())
    if not rng or not zip_code:
        return False
    try:
        zip_num = int(str(zip_code)[:5])
    except ValueError:
        return False
    lo, hi = rng
    return zip_num < lo or zip_num > hi


def normalize_address_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {
        "street1": clean_str(data.get("street1"), max_len=MAX_ADDRESS_LINE_LEN),
        "street2": clean_str(data.get("street2"), max_len=MAX_ADDRESS_LINE_LEN),
        "city": clean_str(data.get("city"), max_len=MAX_ADDRESS_LINE_LEN),
        "state": clean_str(data.get("state"), max_len=MAX_ADDRESS_LINE_LEN),
        "zip": clean_str(data.get("zip"), max_len=MAX_ADDRESS_LINE_LEN),
        "country": (clean_str(data.get("country"), max_len=2) or "US").upper(),
    }
    missing = [f for f in ("street1", "city", "state", "zip") if not out.get(f)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            code="MISSING_FIELDS",
            fields=missing,
        )
    return out


def validate_address(data: Dict[str, Any]) -> Dict[str, Any]:
    submitted = normalize_address_payload(data)
    address = easypost.verify_address(submitted)

    delivery = (address.get("verifications") or {}).get("delivery") or {}
    errors = delivery.get("errors") or []

    has_valid_address = all(address.get(k) for k in ("street1", "city", "state", "zip"))
    was_standardized = any(
        address.get(k) != submitted.get(k) for k in ("street1", "city", "state", "zip")
    )
    mismatch = zip_mismatch(address.get("state"), address.get("zip"))
    deliverable = delivery.get("success") is True or (has_valid_address and not errors and not mismatch)

    verified = {
        "street1": address.get("street1"),
        "street2": address.get("street2"),
        "city": address.get("city"),
        "state": address.get("state"),
        "zip": address.get("zip"),
        "country": address.get("country"),
    }
    suggestions = []
    if was_standardized:
        suggestions.append({**verified, "street2": address.get("street2") or ""})

    return {
        "deliverable": deliverable,
        "verifiedAddress": verified,
        "suggestions": suggestions,
        "errors": errors,
        "zipMismatch": mismatch,
    }

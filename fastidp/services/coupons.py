from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from fastidp.core.time import now_ts
from fastidp.errors import ValidationError
from fastidp.services.payments import ensure_stripe_configured, to_plain_dict

logger = logging.getLogger(__name__)


class InvalidCouponError(ValidationError):
    def __init__(self, message: str, **extra: Any):
        super().__init__(message, code="INVALID_COUPON", valid=False, **extra)


def _find_promotion_code(code: str) -> Optional[Any]:
    try:
        found = stripe.PromotionCode.list(code=code, active=True, limit=1)
    except stripe.StripeError:
        logger.info("promotion code lookup failed for %r; trying as coupon id", code)
        return None
    data = to_plain_dict(found).get("data") or []
    return data[0] if data else None


def validate_coupon(code: str) -> Dict[str, Any]:
    """Resolve a human-entered code to a usable coupon.

    The code is tried as an active promotion code first, then as a raw
    coupon id.
    """
    ensure_stripe_configured()
    promotion = _find_promotion_code(code)
    coupon = None
    if promotion is not None:
        # top-level "coupon" on older API versions, nested under "promotion" on newer ones
        coupon_ref = promotion.get("coupon") or (promotion.get("promotion") or {}).get("coupon")
        coupon_id = coupon_ref.get("id") if hasattr(coupon_ref, "get") else coupon_ref
        try:
            coupon = to_plain_dict(stripe.Coupon.retrieve(coupon_id))
        except stripe.StripeError:
            logger.warning("promotion code %r points at missing coupon %r", code, coupon_id)
            coupon = None

    if coupon is None:
        try:
            coupon = to_plain_dict(stripe.Coupon.retrieve(code))
        except stripe.StripeError as exc:
            raise InvalidCouponError(
                "Invalid coupon code",
                details="Coupon or promotion code not found",
            ) from exc

    now = now_ts()
    if not coupon.get("valid"):
        raise InvalidCouponError("Invalid coupon code")
    redeem_by = coupon.get("redeem_by")
    if redeem_by and redeem_by < now:
        raise InvalidCouponError("Coupon has expired")
    if promotion is not None:
        expires_at = promotion.get("expires_at")
        if expires_at and expires_at < now:
            raise InvalidCouponError("Promotion code has expired")

    return {
        "valid": True,
        "coupon": {
            "id": coupon.get("id"),
            "name": coupon.get("name"),
            "percent_off": coupon.get("percent_off"),
            "amount_off": coupon.get("amount_off"),
            "currency": coupon.get("currency"),
            "duration": coupon.get("duration"),
            "duration_in_months": coupon.get("duration_in_months"),
        },
        "promotionCode": promotion.get("code") if promotion is not None else None,
        "promotionCodeId": promotion.get("id") if promotion is not None else None,
    }

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from fastidp.models import ValidateCouponReq
from fastidp.services.coupons import InvalidCouponError, validate_coupon

router = APIRouter(prefix="/api", tags=["coupons"])


@router.post("/validate-coupon")
def validate_coupon_route(body: ValidateCouponReq) -> Dict[str, Any]:
    code = (body.coupon_code or "").strip()
    if not code:
        raise InvalidCouponError("Missing coupon code")
    return validate_coupon(code)

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from fastapi import HTTPException

from fastidp.core.settings import S
from fastidp.errors import ProviderError

logger = logging.getLogger(__name__)

# EasyPost error code -> (status, message, suggestion)
_ERROR_MAP = {
    "ADDRESS.VERIFY.FAILURE": (
        400,
        "Address verification failed. Please check the shipping address.",
        "Verify customer address is complete and valid",
    ),
    "SHIPMENT.POSTAGE.FAILURE": (
        502,
        "Failed to purchase shipping label from carriers.",
        "Check EasyPost account and carrier connections",
    ),
    "RATE.ERROR": (
        422,
        "No shipping rates available for this destination.",
        "Customer address may be in unsupported area",
    ),
}


def _require_easypost_config() -> None:
    if not S.easypost_api_key:
        raise HTTPException(501, "EasyPost is not configured")


def _raise_for_response(r: requests.Response) -> None:
    try:
        err = (r.json() or {}).get("error") or {}
    except ValueError:
        err = {}
    code = err.get("code")
    message = err.get("message") or r.text[:500]

    if r.status_code == 429 or "rate-limited" in (message or ""):
        raise ProviderError(
            "Shipping provider rate limit exceeded; try again later",
            code="PROVIDER_RATE_LIMITED",
            status_code=429,
            provider_code=code,
        )
    if code in _ERROR_MAP:
        status, friendly, suggestion = _ERROR_MAP[code]
        raise ProviderError(friendly, status_code=status, provider_code=code, suggestion=suggestion)
    if code and "INVALID_PARAMETER" in code:
        raise ProviderError(
            "Invalid address format. Please check your address and try again.",
            status_code=400,
            provider_code=code,
        )
    status = 400 if 400 <= r.status_code < 500 else 502
    raise ProviderError(f"EasyPost error: {message}", status_code=status, provider_code=code)


def _request(method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    _require_easypost_config()
    url = f"{S.easypost_base_url}{path}"
    try:
        r = requests.request(
            method,
            url,
            auth=(S.easypost_api_key, ""),
            headers={"Accept": "application/json"},
            json=payload,
            timeout=30,
        )
    except requests.RequestException as exc:
        raise ProviderError(f"EasyPost unreachable: {exc}", status_code=502) from exc
    if r.status_code not in (200, 201):
        _raise_for_response(r)
    return r.json()


def to_easypost_address(address: Dict[str, Any]) -> Dict[str, Any]:
    out = {
        "name": address.get("name"),
        "company": address.get("company"),
        "street1": address.get("street1"),
        "street2": address.get("street2") or "",
        "city": address.get("city"),
        "state": address.get("state"),
        "zip": address.get("zip") or address.get("postal_code"),
        "country": address.get("country") or "US",
        "phone": address.get("phone"),
        "email": address.get("email"),
    }
    return {k: v for k, v in out.items() if v is not None}


def verify_address(address: Dict[str, Any]) -> Dict[str, Any]:
    payload = {"address": to_easypost_address(address), "verify": ["delivery"]}
    return _request("POST", "/addresses", payload)


def create_address(address: Dict[str, Any]) -> Dict[str, Any]:
    return _request("POST", "/addresses", {"address": to_easypost_address(address)})


def create_parcel(parcel: Dict[str, Any]) -> Dict[str, Any]:
    body = {k: parcel.get(k) for k in ("length", "width", "height", "weight") if parcel.get(k) is not None}
    return _request("POST", "/parcels", {"parcel": body})


def create_shipment(
    to_address_id: str,
    parcel_id: str,
    options: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    opts = {"label_format": "PDF", "label_size": "4x6", **(options or {})}
    shipment: Dict[str, Any] = {
        "to_address": {"id": to_address_id},
        "parcel": {"id": parcel_id},
        "options": opts,
    }
    if S.easypost_from_address_id:
        shipment["from_address"] = {"id": S.easypost_from_address_id}
    return _request("POST", "/shipments", {"shipment": shipment})


def buy_shipment(shipment_id: str, rate: Dict[str, Any]) -> Dict[str, Any]:
    return _request("POST", f"/shipments/{shipment_id}/buy", {"rate": {"id": rate["id"]}})


class EasyPostShipper:
    """Adapter handed to the rate selector for the purchase step."""

    def buy_shipment(self, shipment_id: str, rate: Dict[str, Any]) -> Dict[str, Any]:
        return buy_shipment(shipment_id, rate)


def shipment_rates(shipment: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(shipment.get("rates") or [])

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter

from fastidp.core.settings import S
from fastidp.core.time import now_iso
from fastidp.metrics import record_label_purchased
from fastidp.models import ShippingLabelReq, ValidateAddressReq
from fastidp.services import applications as lifecycle
from fastidp.services import easypost
from fastidp.services.addresses import validate_address
from fastidp.services.rates import RateQuote, purchase_best_rate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["shipping"])


@router.post("/validate-address")
def validate_address_route(body: ValidateAddressReq) -> Dict[str, Any]:
    return validate_address(body.model_dump())


def _label_record(
    application_id: str,
    selected: RateQuote,
    purchased: Dict[str, Any],
    to_address: Dict[str, Any],
) -> Dict[str, Any]:
    postage = purchased.get("postage_label") or {}
    tracker = purchased.get("tracker") or {}
    return {
        "application_id": application_id,
        "shipment_id": purchased.get("id"),
        "tracking_code": purchased.get("tracking_code"),
        "tracking_url": tracker.get("public_url"),
        "label_url": postage.get("label_url"),
        "label_pdf_url": postage.get("label_pdf_url"),
        "rate": selected.summary(),
        "addresses": {
            "to": {k: to_address.get(k) for k in ("name", "street1", "street2", "city", "state", "zip")},
        },
        "created_at": purchased.get("created_at"),
        "purchased_at": now_iso(),
    }


@router.post("/create-shipping-label")
def create_shipping_label(body: ShippingLabelReq) -> Dict[str, Any]:
    application_id = body.application_id
    max_days = body.max_delivery_days or S.default_max_delivery_days

    lifecycle.claim_label_purchase(application_id)
    try:
        to_address = easypost.create_address(body.to_address.model_dump(exclude_none=True))
        parcel = easypost.create_parcel(body.parcel.model_dump(exclude_none=True))
        shipment = easypost.create_shipment(to_address["id"], parcel["id"], body.options)
        quotes = [RateQuote.from_provider(r) for r in easypost.shipment_rates(shipment)]
        logger.info("shipment %s for %s returned %d rates", shipment.get("id"), application_id, len(quotes))
        selected, purchased = purchase_best_rate(easypost.EasyPostShipper(), shipment["id"], quotes, max_days)
    except Exception:
        lifecycle.release_label_claim(application_id)
        raise

    record_label_purchased(selected.carrier)
    label = _label_record(application_id, selected, purchased, to_address)
    # postage is already paid for; a failed write must not hide the label
    lifecycle.attach_shipping_label(application_id, label)

    logger.info(
        "label purchased for %s: %s %s, tracking %s",
        application_id,
        selected.carrier,
        selected.service,
        label["tracking_code"],
    )
    return {"success": True, **label}

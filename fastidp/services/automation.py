"""Fire-and-forget notification of paid orders to the fulfillment automation.

The automation scenario (Make.com) receives a flattened JSON view of the
application. A failure here is logged and counted but never raised: the
payment webhook must still answer 200.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from fastidp.core.normalize import as_int, from_ddb
from fastidp.core.settings import S
from fastidp.core.time import now_iso
from fastidp.metrics import AUTOMATION_FAILURES

logger = logging.getLogger(__name__)


def build_automation_payload(
    application: Mapping[str, Any],
    form_data: Mapping[str, Any],
    session: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    session = session or {}
    fd = form_data
    amount_total = session.get("amount_total")
    if amount_total is None:
        amount_total = application.get("amount_paid_cents", application.get("quoted_total_cents"))
    ts = now_iso()

    return {
        "application_id": application.get("application_id"),
        "payment_status": application.get("payment_status"),
        "fulfillment_type": application.get("fulfillment_type"),
        "stripe_session_id": session.get("id") or application.get("stripe_session_id"),
        "stripe_payment_intent_id": session.get("payment_intent") or application.get("stripe_payment_intent_id"),
        "customer_email": session.get("customer_email") or fd.get("email"),
        "amount_total": as_int(amount_total) / 100 if amount_total is not None else None,
        "currency": session.get("currency") or application.get("currency"),
        "personal_info": {
            "first_name": fd.get("firstName"),
            "middle_name": fd.get("middleName"),
            "last_name": fd.get("lastName"),
            "email": fd.get("email"),
            "phone": fd.get("phone"),
            "date_of_birth": fd.get("dateOfBirth"),
        },
        "license_info": {
            "license_number": fd.get("licenseNumber"),
            "license_state": fd.get("licenseState"),
            "license_expiration": fd.get("licenseExpiration"),
        },
        "address_info": {
            "street_address": fd.get("streetAddress"),
            "street_address_2": fd.get("streetAddress2"),
            "city": fd.get("city"),
            "state": fd.get("state"),
            "zip_code": fd.get("zipCode"),
        },
        "shipping_info": {
            "category": fd.get("shippingCategory"),
            "recipient_name": fd.get("recipientName"),
            "recipient_phone": fd.get("recipientPhone"),
            "street_address": fd.get("shippingStreetAddress"),
            "street_address_2": fd.get("shippingStreetAddress2"),
            "city": fd.get("shippingCity"),
            "state": fd.get("shippingState"),
            "postal_code": fd.get("shippingPostalCode"),
            "country": application.get("shipping_country") or fd.get("shippingCountry"),
            "international_full_address": application.get("international_full_address"),
            "international_local_address": application.get("international_local_address"),
            "international_delivery_instructions": application.get("international_delivery_instructions"),
            "pccc_code": application.get("pccc_code"),
        },
        "selections": {
            "license_types": fd.get("licenseTypes"),
            "selected_permits": fd.get("selectedPermits"),
            "processing_option": fd.get("processingOption"),
            "shipping_category": fd.get("shippingCategory"),
        },
        "additional_info": {
            "birthplace_city": fd.get("birthplaceCity"),
            "birthplace_state": fd.get("birthplaceState"),
            "drive_abroad": fd.get("driveAbroad"),
            "departure_date": fd.get("departureDate"),
            "permit_effective_date": fd.get("permitEffectiveDate"),
        },
        "file_urls": from_ddb(application.get("file_urls") or {}),
        "timestamps": {
            "created_at": from_ddb(application.get("created_at")),
            "payment_completed_at": ts,
        },
    }


def trigger_automation(payload: Dict[str, Any]) -> bool:
    if not S.automation_webhook_url:
        logger.info("automation webhook not configured; would send %s", json.dumps(payload, default=str))
        return False
    try:
        r = requests.post(
            S.automation_webhook_url,
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=S.automation_timeout_seconds,
        )
    except requests.RequestException:
        logger.exception("automation trigger failed for %s", payload.get("application_id"))
        AUTOMATION_FAILURES.inc()
        return False
    if r.status_code >= 300:
        logger.error(
            "automation trigger for %s returned %s: %s",
            payload.get("application_id"),
            r.status_code,
            r.text[:500],
        )
        AUTOMATION_FAILURES.inc()
        return False
    logger.info("automation triggered for %s", payload.get("application_id"))
    return True


def notify_order_completed(
    application: Mapping[str, Any],
    form_data: Mapping[str, Any],
    session: Optional[Mapping[str, Any]] = None,
) -> bool:
    # Runs after the payment transition is committed; nothing may escape.
    try:
        payload = build_automation_payload(application, form_data, session)
        return trigger_automation(payload)
    except Exception:
        logger.exception("automation notification failed for %s", application.get("application_id"))
        AUTOMATION_FAILURES.inc()
        return False

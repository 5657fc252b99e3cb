"""Application records and their payment state machine.

``payment_status`` moves ``pending -> completed`` or ``pending -> expired``
and never leaves a terminal state. Every transition is a conditional
DynamoDB update on ``payment_status = :pending``, so duplicate or concurrent
webhook deliveries cannot apply a transition twice.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from botocore.exceptions import ClientError

from fastidp.core.normalize import as_int, clean_str, normalize_country_code, normalize_email
from fastidp.core.tables import T
from fastidp.core.settings import S
from fastidp.core.time import now_ts
from fastidp.errors import (
    ApplicationNotFoundError,
    DuplicateApplicationError,
    InvalidStateError,
    ValidationError,
)
from fastidp.metrics import APPLICATIONS_SAVED, record_payment_transition
from fastidp.services.automation import notify_order_completed
from fastidp.services.fulfillment import FulfillmentRouter
from fastidp.services.pricing import PriceQuote, PricingEngine
from fastidp.services.uploads import REQUIRED_DOCUMENT_CATEGORIES

logger = logging.getLogger(__name__)

PENDING = "pending"
COMPLETED = "completed"
EXPIRED = "expired"
TEST_COMPLETED = "test_completed"

# webhook outcomes
ALREADY_PROCESSED = "already_processed"
NOT_FOUND = "not_found"

LABEL_PURCHASING = "purchasing"
LABEL_PURCHASED = "purchased"

PAID_STATUSES = (COMPLETED, TEST_COMPLETED)

_APPLICATION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Checked in order; the first missing one is reported.
REQUIRED_FORM_FIELDS = (
    ("email", "Email"),
    ("firstName", "First name"),
    ("lastName", "Last name"),
    ("selectedPermits", "At least one permit"),
    ("processingOption", "Processing option"),
)

_DOCUMENT_LABELS = {
    "driversLicense": "Driver's license image",
    "passportPhoto": "Passport photo",
}


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response["Error"]["Code"] == "ConditionalCheckFailedException"


def validate_application(
    application_id: Optional[str],
    form_data: Mapping[str, Any],
    file_categories: Iterable[str],
) -> None:
    if not clean_str(application_id):
        raise ValidationError("Application ID is required", code="MISSING_FIELD", field="applicationId")
    if not _APPLICATION_ID_RE.match(str(application_id)):
        raise ValidationError("Application ID is malformed", field="applicationId")

    for name, label in REQUIRED_FORM_FIELDS:
        value = form_data.get(name)
        present = bool(value) if isinstance(value, (list, tuple)) else bool(clean_str(value))
        if not present:
            raise ValidationError(f"{label} is required", code="MISSING_FIELD", field=name)

    normalize_email(form_data.get("email"))

    provided = set(file_categories)
    for category in REQUIRED_DOCUMENT_CATEGORIES:
        if category not in provided:
            raise ValidationError(
                f"{_DOCUMENT_LABELS[category]} is required",
                code="MISSING_FIELD",
                field=category,
            )


def _international_fields(form_data: Mapping[str, Any]) -> Dict[str, Any]:
    out = {
        "international_full_address": clean_str(form_data.get("internationalFullAddress")),
        "international_local_address": clean_str(form_data.get("internationalLocalAddress")),
        "international_delivery_instructions": clean_str(form_data.get("internationalDeliveryInstructions")),
        "shipping_country": normalize_country_code(form_data.get("shippingCountry")),
        "pccc_code": clean_str(form_data.get("pcccCode")),
    }
    return {k: v for k, v in out.items() if v is not None}


def load_form_data(item: Mapping[str, Any]) -> Dict[str, Any]:
    raw = item.get("form_data")
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    return json.loads(raw)


def create_application(
    application_id: str,
    form_data: Mapping[str, Any],
    file_refs: Mapping[str, List[Dict[str, Any]]],
    *,
    engine: PricingEngine,
    fulfillment: FulfillmentRouter,
    quote: Optional[PriceQuote] = None,
) -> Dict[str, Any]:
    """Insert a new pending application; the id must not exist yet."""
    quote = quote or engine.quote_form(form_data)
    category = form_data.get("shippingCategory")
    fulfillment_type = fulfillment.determine_fulfillment(
        category,
        form_data.get("shippingCountry"),
        form_data.get("internationalFullAddress"),
    )

    ts = now_ts()
    item: Dict[str, Any] = {
        "application_id": application_id,
        "form_data": json.dumps(form_data),
        "file_urls": dict(file_refs),
        "customer_email": normalize_email(form_data.get("email")),
        "payment_status": PENDING,
        "fulfillment_type": fulfillment_type,
        "quoted_total_cents": quote.total_cents,
        "currency": quote.currency,
        "created_at": ts,
        "updated_at": ts,
    }
    if category:
        item["shipping_category"] = category
    if category == "international":
        item.update(_international_fields(form_data))

    try:
        T.applications.put_item(Item=item, ConditionExpression="attribute_not_exists(application_id)")
    except ClientError as exc:
        if _is_conditional_failure(exc):
            raise DuplicateApplicationError(application_id) from exc
        raise

    APPLICATIONS_SAVED.labels(fulfillment_type=fulfillment_type).inc()
    logger.info(
        "saved application %s (fulfillment=%s, total=%s)",
        application_id,
        fulfillment_type,
        quote.total_cents,
    )
    return item


def get_application(application_id: str) -> Dict[str, Any]:
    item = T.applications.get_item(Key={"application_id": application_id}).get("Item")
    if not item:
        raise ApplicationNotFoundError(application_id)
    return item


def application_exists(application_id: str) -> bool:
    resp = T.applications.get_item(
        Key={"application_id": application_id},
        ProjectionExpression="application_id",
    )
    return "Item" in resp


def find_by_session_id(session_id: str) -> Optional[Dict[str, Any]]:
    resp = T.applications.query(
        IndexName=S.applications_session_index,
        KeyConditionExpression="stripe_session_id = :sid",
        ExpressionAttributeValues={":sid": session_id},
        Limit=1,
    )
    items = resp.get("Items", [])
    return items[0] if items else None


def require_pending(item: Mapping[str, Any]) -> None:
    status = item.get("payment_status")
    if status != PENDING:
        raise InvalidStateError(f"Application {item.get('application_id')} is already {status}")


def _update(
    application_id: str,
    sets: Dict[str, Any],
    *,
    condition: str = "attribute_exists(application_id)",
    values: Optional[Dict[str, Any]] = None,
    remove: Iterable[str] = (),
) -> bool:
    """Apply a conditional update; returns False when the condition did not hold."""
    names: Dict[str, str] = {}
    expr_values: Dict[str, Any] = dict(values or {})
    parts: List[str] = []
    for i, (attr, value) in enumerate(sets.items()):
        names[f"#s{i}"] = attr
        expr_values[f":s{i}"] = value
        parts.append(f"#s{i} = :s{i}")
    expr = "SET " + ", ".join(parts)
    removed = list(remove)
    if removed:
        for i, attr in enumerate(removed):
            names[f"#r{i}"] = attr
        expr += " REMOVE " + ", ".join(f"#r{i}" for i in range(len(removed)))

    try:
        T.applications.update_item(
            Key={"application_id": application_id},
            UpdateExpression=expr,
            ConditionExpression=condition,
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=expr_values,
        )
        return True
    except ClientError as exc:
        if _is_conditional_failure(exc):
            return False
        raise


def attach_session_id(application_id: str, session_id: str) -> bool:
    try:
        ok = _update(application_id, {"stripe_session_id": session_id, "updated_at": now_ts()})
    except ClientError:
        logger.exception("could not record checkout session %s on %s", session_id, application_id)
        return False
    if not ok:
        logger.warning("application %s vanished before session %s was recorded", application_id, session_id)
    return ok


def attach_payment_intent(application_id: str, payment_intent_id: str) -> bool:
    try:
        ok = _update(application_id, {"stripe_payment_intent_id": payment_intent_id, "updated_at": now_ts()})
    except ClientError:
        logger.exception("could not record payment intent %s on %s", payment_intent_id, application_id)
        return False
    if not ok:
        logger.warning("application %s vanished before intent %s was recorded", application_id, payment_intent_id)
    return ok


def mark_completed(
    session_id: str,
    payment_intent_id: Optional[str] = None,
    session: Optional[Mapping[str, Any]] = None,
) -> str:
    """Move the application behind ``session_id`` to completed.

    Returns ``completed`` for the delivery that applied the transition,
    ``already_processed`` for any later one and ``not_found`` when no
    application references the session. Automation runs only on ``completed``.
    """
    app = find_by_session_id(session_id)
    if not app:
        logger.warning("no application found for checkout session %s", session_id)
        record_payment_transition(COMPLETED, NOT_FOUND)
        return NOT_FOUND

    ts = now_ts()
    sets: Dict[str, Any] = {"payment_status": COMPLETED, "payment_completed_at": ts, "updated_at": ts}
    if payment_intent_id:
        sets["stripe_payment_intent_id"] = payment_intent_id
    amount_total = (session or {}).get("amount_total")
    if amount_total is not None:
        sets["amount_paid_cents"] = as_int(amount_total)

    applied = _update(
        app["application_id"],
        sets,
        condition="payment_status = :pending",
        values={":pending": PENDING},
    )
    if not applied:
        logger.info(
            "application %s already %s; ignoring completion for %s",
            app["application_id"],
            app.get("payment_status"),
            session_id,
        )
        record_payment_transition(COMPLETED, ALREADY_PROCESSED)
        return ALREADY_PROCESSED

    record_payment_transition(COMPLETED, COMPLETED)
    logger.info("application %s payment completed", app["application_id"])

    updated = {**app, **sets}
    try:
        form_data = load_form_data(updated)
    except ValueError:
        logger.exception("stored form data for %s is not valid JSON", app["application_id"])
        form_data = {}
    notify_order_completed(updated, form_data, session)
    return COMPLETED


def mark_expired(session_id: str) -> str:
    app = find_by_session_id(session_id)
    if not app:
        logger.warning("no application found for expired session %s", session_id)
        record_payment_transition(EXPIRED, NOT_FOUND)
        return NOT_FOUND

    ts = now_ts()
    applied = _update(
        app["application_id"],
        {"payment_status": EXPIRED, "updated_at": ts},
        condition="payment_status = :pending",
        values={":pending": PENDING},
    )
    if not applied:
        record_payment_transition(EXPIRED, ALREADY_PROCESSED)
        return ALREADY_PROCESSED

    record_payment_transition(EXPIRED, EXPIRED)
    logger.info("application %s checkout expired", app["application_id"])
    return EXPIRED


def mark_test_completed(application_id: str) -> Dict[str, Any]:
    ts = now_ts()
    applied = _update(
        application_id,
        {"payment_status": TEST_COMPLETED, "payment_completed_at": ts, "updated_at": ts},
        condition="attribute_exists(application_id) AND payment_status = :pending",
        values={":pending": PENDING},
    )
    if not applied:
        item = get_application(application_id)
        raise InvalidStateError(f"Application {application_id} is already {item.get('payment_status')}")
    logger.warning("application %s marked test_completed", application_id)
    return get_application(application_id)


def claim_label_purchase(application_id: str) -> Dict[str, Any]:
    """Reserve the single label purchase for a paid application."""
    item = get_application(application_id)
    if item.get("payment_status") not in PAID_STATUSES:
        raise InvalidStateError(
            f"Application {application_id} is not paid (status: {item.get('payment_status')})"
        )
    claimed = _update(
        application_id,
        {"label_status": LABEL_PURCHASING, "updated_at": now_ts()},
        condition="attribute_exists(application_id) AND attribute_not_exists(label_status)",
    )
    if not claimed:
        raise InvalidStateError(f"A shipping label for {application_id} was already purchased or is in progress")
    return item


def release_label_claim(application_id: str) -> None:
    try:
        _update(
            application_id,
            {"updated_at": now_ts()},
            condition="label_status = :purchasing",
            values={":purchasing": LABEL_PURCHASING},
            remove=("label_status",),
        )
    except ClientError:
        logger.exception("could not release label claim on %s", application_id)


def attach_shipping_label(application_id: str, label: Dict[str, Any]) -> bool:
    try:
        ok = _update(
            application_id,
            {"label_status": LABEL_PURCHASED, "shipping_label": label, "updated_at": now_ts()},
            condition="label_status = :purchasing",
            values={":purchasing": LABEL_PURCHASING},
        )
    except ClientError:
        logger.exception("label for %s purchased but not recorded", application_id)
        return False
    if not ok:
        logger.warning("label claim on %s was lost before the label was recorded", application_id)
    return ok

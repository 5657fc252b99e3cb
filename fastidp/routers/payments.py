from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from fastidp.core.settings import S
from fastidp.metrics import WEBHOOK_EVENTS
from fastidp.models import CheckoutReq, PaymentIntentReq
from fastidp.services import applications as lifecycle
from fastidp.services.payments import construct_event, create_checkout_session, create_payment_intent, to_plain_dict
from fastidp.services.pricing import get_pricing_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])


@router.get("/config")
def payments_config() -> Dict[str, str]:
    if not S.stripe_publishable_key:
        raise HTTPException(500, "Missing STRIPE_PUBLISHABLE_KEY")
    return {"publishableKey": S.stripe_publishable_key, "currency": S.stripe_default_currency}


@router.post("/create-payment-intent")
def create_payment_intent_route(body: PaymentIntentReq) -> Dict[str, Any]:
    app = lifecycle.get_application(body.application_id)
    lifecycle.require_pending(app)
    form_data = lifecycle.load_form_data(app)

    # always priced from the stored application, never from the client
    engine = get_pricing_engine()
    quote = engine.quote_form(form_data)
    intent = create_payment_intent(body.application_id, form_data, quote, engine.config)
    lifecycle.attach_payment_intent(body.application_id, intent["id"])

    return {
        "clientSecret": intent["client_secret"],
        "paymentIntentId": intent["id"],
        "pricing": quote.to_dict(),
    }


@router.post("/create-checkout")
def create_checkout_route(body: CheckoutReq) -> Dict[str, Any]:
    app = lifecycle.get_application(body.application_id)
    lifecycle.require_pending(app)
    form_data = lifecycle.load_form_data(app)

    engine = get_pricing_engine()
    quote = engine.quote_form(form_data)
    session = create_checkout_session(
        body.application_id,
        form_data,
        quote,
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )
    lifecycle.attach_session_id(body.application_id, session["id"])

    return {"success": True, "checkoutUrl": session["url"], "sessionId": session["id"]}


@router.post("/webhook")
async def stripe_webhook(req: Request) -> Dict[str, Any]:
    payload = await req.body()
    event = construct_event(payload, req.headers.get("stripe-signature"))

    event_type = event["type"]
    obj = to_plain_dict(event["data"]["object"])
    WEBHOOK_EVENTS.labels(event_type=event_type).inc()

    if event_type == "checkout.session.completed":
        outcome = lifecycle.mark_completed(obj["id"], obj.get("payment_intent"), obj)
    elif event_type == "checkout.session.expired":
        outcome = lifecycle.mark_expired(obj["id"])
    elif event_type == "payment_intent.succeeded":
        logger.info(
            "payment intent %s succeeded for application %s",
            obj.get("id"),
            (obj.get("metadata") or {}).get("applicationId"),
        )
        outcome = "logged"
    else:
        logger.info("ignoring unhandled event type %s", event_type)
        outcome = "ignored"

    return {"received": True, "outcome": outcome}

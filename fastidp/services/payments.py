from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import stripe
from fastapi import HTTPException

from fastidp.core.settings import S
from fastidp.errors import IntegrityError, ProviderError
from fastidp.services.pricing import PriceQuote, PricingConfig

logger = logging.getLogger(__name__)


def ensure_stripe_configured() -> None:
    if not S.stripe_secret_key:
        raise HTTPException(501, "Stripe is not configured")
    stripe.api_key = S.stripe_secret_key


def to_plain_dict(obj: Any) -> Dict[str, Any]:
    """Flatten a Stripe object into plain dicts and lists.

    Current SDKs no longer subclass ``dict`` for ``StripeObject``, so
    everything read from Stripe passes through here before ``.get`` is used.
    """
    fn = getattr(obj, "to_dict", None)
    if callable(fn):
        return fn()
    fn = getattr(obj, "to_dict_recursive", None)
    if callable(fn):
        return fn()
    return dict(obj)


def _dollars(cents: int) -> str:
    return f"${cents / 100:.2f}"


def customer_name(form_data: Mapping[str, Any]) -> str:
    return " ".join(p for p in (form_data.get("firstName"), form_data.get("lastName")) if p)


def product_summary(quote: PriceQuote, config: PricingConfig) -> List[str]:
    summary: List[str] = []
    for item in quote.line_items:
        if item.id.startswith("permit:"):
            permit = config.permit_for(item.id.split(":", 1)[1])
            short = permit.short_name if permit else item.name
            summary.extend([f"{short} ({_dollars(item.unit_amount_cents)})"] * item.quantity)
        elif item.id.startswith("tier:"):
            summary.append(f"{item.name} ({_dollars(item.unit_amount_cents)})")
    return summary


def payment_metadata(
    application_id: str,
    form_data: Mapping[str, Any],
    quote: PriceQuote,
    config: PricingConfig,
) -> Dict[str, str]:
    """Descriptive metadata shown on the payment in the Stripe dashboard.

    Stripe only accepts string values here.
    """
    summary = product_summary(quote, config)
    meta: Dict[str, str] = {
        "applicationId": application_id,
        "customer_email": form_data.get("email") or "",
        "customer_name": customer_name(form_data),
        "total_amount": _dollars(quote.total_cents),
        "product_summary": ", ".join(summary),
        "permit_count": str(quote.permit_count),
        "processing_type": form_data.get("processingOption") or "not_selected",
        "shipping_category": form_data.get("shippingCategory") or "not_selected",
    }
    n = 0
    for value in form_data.get("selectedPermits") or []:
        permit = config.permit_for(value)
        if permit is None:
            continue
        n += 1
        meta[f"permit_{n}"] = permit.name
        meta[f"permit_{n}_price"] = _dollars(permit.unit_amount_cents)
    return meta


def create_payment_intent(
    application_id: str,
    form_data: Mapping[str, Any],
    quote: PriceQuote,
    config: PricingConfig,
) -> Any:
    ensure_stripe_configured()
    summary = product_summary(quote, config)
    kwargs: Dict[str, Any] = {
        "amount": quote.total_cents,
        "currency": quote.currency,
        "payment_method_types": ["card"],
        "metadata": payment_metadata(application_id, form_data, quote, config),
        "description": f"IDP Application: {', '.join(summary)} - {customer_name(form_data)}",
    }
    if form_data.get("email"):
        kwargs["receipt_email"] = form_data["email"]
    try:
        return stripe.PaymentIntent.create(**kwargs)
    except stripe.StripeError as exc:
        logger.exception("payment intent creation failed for %s", application_id)
        raise ProviderError(f"Payment provider error: {exc.user_message or exc}", code="PAYMENT_PROVIDER_ERROR") from exc


def checkout_line_items(quote: PriceQuote) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for item in quote.line_items:
        if item.unit_amount_cents <= 0:
            continue
        product_data: Dict[str, Any] = {"name": item.name}
        if item.description:
            product_data["description"] = item.description
        price_data: Dict[str, Any] = {"currency": quote.currency, "unit_amount": item.unit_amount_cents}
        if item.stripe_product_id:
            price_data["product"] = item.stripe_product_id
        else:
            price_data["product_data"] = product_data
        items.append({"price_data": price_data, "quantity": item.quantity})
    return items


def create_checkout_session(
    application_id: str,
    form_data: Mapping[str, Any],
    quote: PriceQuote,
    *,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> Any:
    ensure_stripe_configured()
    kwargs: Dict[str, Any] = {
        "mode": "payment",
        "payment_method_types": ["card"],
        "line_items": checkout_line_items(quote),
        "success_url": success_url or S.stripe_success_url,
        "cancel_url": cancel_url or S.stripe_cancel_url,
        "client_reference_id": application_id,
        "metadata": {
            "application_id": application_id,
            "customer_email": form_data.get("email") or "",
        },
        "billing_address_collection": "required",
    }
    if form_data.get("email"):
        kwargs["customer_email"] = form_data["email"]
    try:
        return stripe.checkout.Session.create(**kwargs)
    except stripe.StripeError as exc:
        logger.exception("checkout session creation failed for %s", application_id)
        raise ProviderError(f"Payment provider error: {exc.user_message or exc}", code="PAYMENT_PROVIDER_ERROR") from exc


def construct_event(payload: bytes, sig_header: Optional[str]) -> Any:
    ensure_stripe_configured()
    if not S.stripe_webhook_secret:
        raise HTTPException(501, "Stripe webhook secret not configured")
    if not sig_header:
        raise IntegrityError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=S.stripe_webhook_secret)
    except stripe.SignatureVerificationError as exc:
        raise IntegrityError(f"Webhook signature verification failed: {exc}") from exc
    except ValueError as exc:
        raise IntegrityError(f"Invalid webhook payload: {exc}") from exc

"""Price computation for IDP applications.

All price tables live in a single :class:`PricingConfig`. The same config is
used by the save-application, payment-intent and checkout handlers, so the
amount shown to the customer and the amount charged cannot drift apart.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from fastidp.core.settings import S
from fastidp.errors import ValidationError

logger = logging.getLogger(__name__)

PROCESSING_SPEEDS = ("standard", "fast", "fastest")
SHIPPING_CATEGORIES = ("domestic", "international", "military")

UNKNOWN_TIER_ZERO_FEE = "zero_fee"
UNKNOWN_TIER_REJECT = "reject"


@dataclass(frozen=True)
class PermitProduct:
    id: str
    name: str
    short_name: str
    unit_amount_cents: int
    stripe_product_id: Optional[str] = None


@dataclass(frozen=True)
class TierPrice:
    amount_cents: int
    name: str
    description: str


DEFAULT_PERMITS: Tuple[PermitProduct, ...] = (
    PermitProduct(
        id="idp_international",
        name="International Driving Permit",
        short_name="IDP",
        unit_amount_cents=2000,
    ),
    PermitProduct(
        id="idp_brazil_uruguay",
        name="IAPD (Brazil / Uruguay only)",
        short_name="IAPD",
        unit_amount_cents=2000,
    ),
)

_STANDARD = ("Standard Processing & Shipping", "3-5 business days processing & standard shipping")
_FAST = ("Fast Processing & Shipping", "1-2 business days processing & expedited shipping")
_FASTEST = ("Fastest Processing & Shipping", "Same-day processing & overnight shipping")


def _tiers(standard: int, fast: int, fastest: int) -> Dict[str, TierPrice]:
    return {
        "standard": TierPrice(standard, *_STANDARD),
        "fast": TierPrice(fast, *_FAST),
        "fastest": TierPrice(fastest, *_FASTEST),
    }


DEFAULT_TIER_TABLE: Dict[str, Dict[str, TierPrice]] = {
    "domestic": _tiers(5800, 10800, 16800),
    "international": _tiers(9800, 14800, 19800),
    "military": _tiers(4900, 8900, 11900),
}

# Destinations the carrier integration can ship to without a human in the loop.
DEFAULT_AUTOMATED_DESTINATIONS: FrozenSet[str] = frozenset({
    "US", "CA", "GB", "AU", "NZ", "IE",
    "DE", "FR", "IT", "ES", "NL", "BE", "CH", "AT", "PT", "GR",
    "SE", "NO", "DK", "FI",
    "JP", "KR", "IL", "AE", "MX",
})


@dataclass(frozen=True)
class PricingConfig:
    permits: Tuple[PermitProduct, ...] = DEFAULT_PERMITS
    tier_table: Mapping[str, Mapping[str, TierPrice]] = field(default_factory=lambda: DEFAULT_TIER_TABLE)
    tax_rate: Decimal = Decimal("0.0775")
    tax_label: str = "Tax"
    min_total_cents: int = 50
    booklet_fee_cents: int = 0
    unknown_tier_policy: str = UNKNOWN_TIER_ZERO_FEE
    currency: str = "usd"
    automated_destinations: FrozenSet[str] = DEFAULT_AUTOMATED_DESTINATIONS

    def permit_for(self, value: str) -> Optional[PermitProduct]:
        for permit in self.permits:
            if value in (permit.id, permit.name):
                return permit
        return None


def pricing_config_from_settings() -> PricingConfig:
    policy = S.unknown_tier_policy
    if policy not in (UNKNOWN_TIER_ZERO_FEE, UNKNOWN_TIER_REJECT):
        raise ValueError(f"Unsupported PRICING_UNKNOWN_TIER_POLICY: {policy}")
    return PricingConfig(
        tax_rate=Decimal(S.tax_rate),
        min_total_cents=S.min_total_cents,
        booklet_fee_cents=S.booklet_fee_cents,
        unknown_tier_policy=policy,
        currency=S.stripe_default_currency,
    )


@dataclass(frozen=True)
class LineItem:
    id: str
    name: str
    unit_amount_cents: int
    quantity: int = 1
    description: Optional[str] = None
    stripe_product_id: Optional[str] = None

    @property
    def amount_cents(self) -> int:
        return self.unit_amount_cents * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "unitAmountCents": self.unit_amount_cents,
            "quantity": self.quantity,
        }
        if self.description:
            out["description"] = self.description
        return out


@dataclass(frozen=True)
class PriceQuote:
    line_items: Tuple[LineItem, ...]
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    currency: str = "usd"

    @property
    def permit_count(self) -> int:
        return sum(item.quantity for item in self.line_items if item.id.startswith("permit:"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineItems": [item.to_dict() for item in self.line_items],
            "subtotalCents": self.subtotal_cents,
            "taxCents": self.tax_cents,
            "totalCents": self.total_cents,
            "currency": self.currency,
        }


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PricingEngine:
    """Pure mapping from a selection to a :class:`PriceQuote`."""

    def __init__(self, config: PricingConfig):
        self.config = config

    def tier_price(self, processing_speed: Optional[str], shipping_category: Optional[str]) -> Optional[TierPrice]:
        row = self.config.tier_table.get(shipping_category or "")
        if row is None:
            return None
        return row.get(processing_speed or "")

    def compute_price(
        self,
        selected_permits: Iterable[str],
        processing_speed: Optional[str],
        shipping_category: Optional[str],
    ) -> PriceQuote:
        cfg = self.config
        items: List[LineItem] = []

        counts: Dict[str, int] = {}
        for value in selected_permits or []:
            permit = cfg.permit_for(value)
            if permit is None:
                logger.warning("ignoring unrecognized permit %r", value)
                continue
            counts[permit.id] = counts.get(permit.id, 0) + 1
        for permit in cfg.permits:
            qty = counts.get(permit.id)
            if qty:
                items.append(LineItem(
                    id=f"permit:{permit.id}",
                    name=permit.name,
                    unit_amount_cents=permit.unit_amount_cents,
                    quantity=qty,
                    stripe_product_id=permit.stripe_product_id,
                ))

        tier = self.tier_price(processing_speed, shipping_category)
        if tier is None:
            if cfg.unknown_tier_policy == UNKNOWN_TIER_REJECT:
                raise ValidationError(
                    f"Unsupported processing/shipping combination: {processing_speed!r}/{shipping_category!r}",
                    code="UNSUPPORTED_TIER",
                )
            logger.warning(
                "no processing/shipping fee for speed=%r category=%r",
                processing_speed,
                shipping_category,
            )
        elif tier.amount_cents > 0:
            items.append(LineItem(
                id=f"tier:{shipping_category}:{processing_speed}",
                name=tier.name,
                unit_amount_cents=tier.amount_cents,
                description=tier.description,
            ))

        subtotal = sum(item.amount_cents for item in items)
        tax = round_half_up(Decimal(subtotal) * cfg.tax_rate)
        items.append(LineItem(id="tax", name=cfg.tax_label, unit_amount_cents=tax))
        total = subtotal + tax

        # Booklet fee is collected on behalf of the issuer and is not taxed.
        if cfg.booklet_fee_cents > 0:
            items.append(LineItem(id="booklet", name="IDP Booklet Fee", unit_amount_cents=cfg.booklet_fee_cents))
            total += cfg.booklet_fee_cents

        if total < cfg.min_total_cents:
            raise ValidationError(
                "Order total too low",
                code="TOTAL_BELOW_MINIMUM",
                total_cents=total,
                min_total_cents=cfg.min_total_cents,
            )

        return PriceQuote(
            line_items=tuple(items),
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=total,
            currency=cfg.currency,
        )

    def quote_form(self, form_data: Mapping[str, Any]) -> PriceQuote:
        return self.compute_price(
            form_data.get("selectedPermits") or [],
            form_data.get("processingOption"),
            form_data.get("shippingCategory"),
        )


_ENGINE: Optional[PricingEngine] = None


def get_pricing_engine() -> PricingEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = PricingEngine(pricing_config_from_settings())
    return _ENGINE

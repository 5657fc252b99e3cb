"""Shipping rate selection.

Picks the fastest carrier rate that meets a delivery deadline and hands it to
the shipping provider for purchase. Buying a label costs money, so callers are
responsible for making sure this runs at most once per shipment.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from fastidp.core.normalize import dollars_str_to_cents
from fastidp.errors import NoQualifyingRateError

logger = logging.getLogger(__name__)

UNKNOWN_DELIVERY_DAYS = 999
# unparseable prices sort after every real one
UNKNOWN_RATE_CENTS = 10 ** 9

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_delivery_days(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return UNKNOWN_DELIVERY_DAYS
    if isinstance(value, int):
        return value or UNKNOWN_DELIVERY_DAYS
    m = _LEADING_INT.match(str(value))
    if not m:
        return UNKNOWN_DELIVERY_DAYS
    days = int(m.group(1))
    # 0 is falsy in the carrier feed and means "unknown" there
    return days or UNKNOWN_DELIVERY_DAYS


def parse_delivery_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class RateQuote:
    carrier: str
    service: str
    rate_cents: int
    delivery_days: int
    delivery_date: Optional[datetime] = None
    rate_id: Optional[str] = None
    currency: str = "USD"
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_provider(cls, rate: Dict[str, Any]) -> "RateQuote":
        cents = dollars_str_to_cents(rate.get("rate"))
        return cls(
            carrier=str(rate.get("carrier") or ""),
            service=str(rate.get("service") or ""),
            rate_cents=cents if cents is not None else UNKNOWN_RATE_CENTS,
            delivery_days=parse_delivery_days(rate.get("delivery_days")),
            delivery_date=parse_delivery_date(rate.get("delivery_date")),
            rate_id=rate.get("id"),
            currency=str(rate.get("currency") or "USD"),
            raw=dict(rate),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier,
            "service": self.service,
            "rate": self.raw.get("rate", f"{self.rate_cents / 100:.2f}"),
            "rate_cents": self.rate_cents if self.rate_cents != UNKNOWN_RATE_CENTS else None,
            "currency": self.currency,
            "delivery_days": self.raw.get("delivery_days", self.delivery_days),
            "delivery_date": self.raw.get("delivery_date"),
            "estimated_delivery": self.raw.get("est_delivery_date"),
        }


def _compare(a: RateQuote, b: RateQuote) -> int:
    if a.delivery_days != b.delivery_days:
        return a.delivery_days - b.delivery_days
    if a.delivery_date and b.delivery_date and a.delivery_date != b.delivery_date:
        try:
            return -1 if a.delivery_date < b.delivery_date else 1
        except TypeError:
            # naive vs aware timestamps; fall through to price
            pass
    return a.rate_cents - b.rate_cents


def select_best_rate(quotes: Iterable[RateQuote], max_delivery_days: int) -> RateQuote:
    qualifying = [q for q in quotes if q.delivery_days <= max_delivery_days]
    if not qualifying:
        raise NoQualifyingRateError(
            f"No shipping rates available that meet {max_delivery_days} day requirement",
            max_delivery_days=max_delivery_days,
        )
    return sorted(qualifying, key=cmp_to_key(_compare))[0]


class LabelPurchaser(Protocol):
    def buy_shipment(self, shipment_id: str, rate: Dict[str, Any]) -> Dict[str, Any]: ...


def purchase_best_rate(
    provider: LabelPurchaser,
    shipment_id: str,
    quotes: List[RateQuote],
    max_delivery_days: int,
) -> Tuple[RateQuote, Dict[str, Any]]:
    selected = select_best_rate(quotes, max_delivery_days)
    logger.info(
        "selected rate carrier=%s service=%s rate_cents=%s days=%s of %d quotes",
        selected.carrier,
        selected.service,
        selected.rate_cents,
        selected.delivery_days,
        len(quotes),
    )
    purchased = provider.buy_shipment(shipment_id, selected.raw)
    return selected, purchased

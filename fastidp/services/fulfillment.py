from __future__ import annotations

import logging
from typing import Optional

from fastidp.services.countries import resolve_destination
from fastidp.services.pricing import PricingConfig

logger = logging.getLogger(__name__)

AUTOMATED = "automated"
MANUAL = "manual"


class FulfillmentRouter:
    """Decide whether the carrier integration can ship an order unattended."""

    def __init__(self, config: PricingConfig):
        self.config = config

    def determine_fulfillment(
        self,
        category: Optional[str],
        explicit_country_code: Optional[str] = None,
        free_text_address: Optional[str] = None,
    ) -> str:
        if category in ("domestic", "military"):
            return AUTOMATED
        if category != "international":
            logger.warning("unknown shipping category %r routed to manual fulfillment", category)
            return MANUAL

        code = resolve_destination(explicit_country_code, free_text_address)
        if code is None:
            logger.info("international destination unresolved; routing to manual fulfillment")
            return MANUAL
        if code in self.config.automated_destinations:
            return AUTOMATED
        return MANUAL

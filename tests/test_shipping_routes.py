import unittest
from contextlib import ExitStack
from types import SimpleNamespace
from unittest.mock import patch

from fastidp.errors import InvalidStateError, NoQualifyingRateError, ProviderError, ValidationError
from fastidp.models import ShippingLabelReq, ValidateAddressReq
from fastidp.routers import shipping as routes
from fastidp.services import applications as lifecycle
from fastidp.services import easypost

from conftest import FakeApplicationsTable


def label_request(**overrides):
    payload = {
        "application_id": "app_1",
        "to_address": {
            "name": "Jane Doe",
            "street1": "1600 Pennsylvania Ave NW",
            "city": "Washington",
            "state": "DC",
            "zip": "20500",
        },
        "parcel": {"length": 9, "width": 6, "height": 0.5, "weight": 4},
    }
    payload.update(overrides)
    return ShippingLabelReq.model_validate(payload)


RATES = [
    {"id": "rate_cheap", "carrier": "USPS", "service": "Ground", "rate": "8.00", "delivery_days": 2},
    {"id": "rate_mid", "carrier": "USPS", "service": "Priority", "rate": "10.00", "delivery_days": 2},
    {"id": "rate_fast", "carrier": "UPS", "service": "NextDayAir", "rate": "50.00", "delivery_days": 1},
    {"id": "rate_slow", "carrier": "USPS", "service": "Media", "rate": "3.00", "delivery_days": 9},
]

PURCHASED = {
    "id": "shp_1",
    "tracking_code": "1Z999",
    "tracker": {"public_url": "https://track.easypost.com/1Z999"},
    "postage_label": {"label_url": "https://labels/1.png", "label_pdf_url": "https://labels/1.pdf"},
    "created_at": "2026-10-17T12:00:00Z",
}


class ShippingLabelRouteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = FakeApplicationsTable()
        self.table.items["app_1"] = {"application_id": "app_1", "payment_status": "completed"}
        tables_stub = SimpleNamespace(applications=self.table)
        self.stack = ExitStack()
        self.stack.enter_context(patch.object(lifecycle, "T", tables_stub))
        self.create_address = self.stack.enter_context(
            patch.object(easypost, "create_address", return_value={"id": "adr_1", "name": "Jane Doe", "street1": "1600 Pennsylvania Ave NW", "city": "Washington", "state": "DC", "zip": "20500"})
        )
        self.create_parcel = self.stack.enter_context(patch.object(easypost, "create_parcel", return_value={"id": "prcl_1"}))
        self.create_shipment = self.stack.enter_context(
            patch.object(easypost, "create_shipment", return_value={"id": "shp_1", "rates": RATES})
        )
        self.buy = self.stack.enter_context(patch.object(easypost, "buy_shipment", return_value=PURCHASED))

    def tearDown(self) -> None:
        self.stack.close()

    def test_buys_fastest_rate_and_records_label(self):
        resp = routes.create_shipping_label(label_request(max_delivery_days=3))

        self.assertTrue(resp["success"])
        self.assertEqual(resp["tracking_code"], "1Z999")
        self.assertEqual(resp["tracking_url"], "https://track.easypost.com/1Z999")
        self.assertEqual(resp["rate"]["carrier"], "UPS")
        self.buy.assert_called_once_with("shp_1", RATES[2])
        self.create_shipment.assert_called_once_with("adr_1", "prcl_1", {})

        stored = self.table.items["app_1"]
        self.assertEqual(stored["label_status"], "purchased")
        self.assertEqual(stored["shipping_label"]["label_pdf_url"], "https://labels/1.pdf")

    def test_default_deadline_is_five_days(self):
        rates = [{"id": "r", "carrier": "USPS", "service": "Ground", "rate": "4.00", "delivery_days": 5}]
        self.create_shipment.return_value = {"id": "shp_1", "rates": rates}
        routes.create_shipping_label(label_request())
        self.buy.assert_called_once_with("shp_1", rates[0])

    def test_second_purchase_is_refused(self):
        routes.create_shipping_label(label_request())
        with self.assertRaises(InvalidStateError):
            routes.create_shipping_label(label_request())
        self.assertEqual(self.buy.call_count, 1)

    def test_unpaid_application_is_refused(self):
        self.table.items["app_1"]["payment_status"] = "pending"
        with self.assertRaises(InvalidStateError):
            routes.create_shipping_label(label_request())
        self.create_address.assert_not_called()

    def test_test_completed_application_can_ship(self):
        self.table.items["app_1"]["payment_status"] = "test_completed"
        resp = routes.create_shipping_label(label_request())
        self.assertTrue(resp["success"])

    def test_no_qualifying_rate_releases_claim(self):
        self.create_shipment.return_value = {"id": "shp_1", "rates": [RATES[3]]}
        with self.assertRaises(NoQualifyingRateError):
            routes.create_shipping_label(label_request(max_delivery_days=3))
        self.buy.assert_not_called()
        self.assertNotIn("label_status", self.table.items["app_1"])

    def test_provider_failure_releases_claim(self):
        self.buy.side_effect = ProviderError("postage failed", status_code=502, provider_code="SHIPMENT.POSTAGE.FAILURE")
        with self.assertRaises(ProviderError):
            routes.create_shipping_label(label_request())
        self.assertNotIn("label_status", self.table.items["app_1"])
        # a retry is allowed after a failed purchase
        self.buy.side_effect = None
        resp = routes.create_shipping_label(label_request())
        self.assertTrue(resp["success"])


class ValidateAddressRouteTests(unittest.TestCase):
    def test_deliverable_and_standardized(self):
        verified = {
            "street1": "1600 PENNSYLVANIA AVE NW",
            "street2": "",
            "city": "WASHINGTON",
            "state": "DC",
            "zip": "20500-0005",
            "country": "US",
            "verifications": {"delivery": {"success": True, "errors": []}},
        }
        with patch.object(easypost, "verify_address", return_value=verified) as verify:
            resp = routes.validate_address_route(ValidateAddressReq(
                street1="1600 Pennsylvania Ave NW", city="Washington", state="DC", zip="20500",
            ))
        verify.assert_called_once()
        self.assertTrue(resp["deliverable"])
        self.assertEqual(resp["verifiedAddress"]["zip"], "20500-0005")
        self.assertEqual(len(resp["suggestions"]), 1)
        self.assertFalse(resp["zipMismatch"])

    def test_zip_state_mismatch_is_not_deliverable(self):
        verified = {
            "street1": "1 MAIN ST",
            "city": "AUSTIN",
            "state": "TX",
            "zip": "90210",
            "country": "US",
            "verifications": {"delivery": {"success": False, "errors": []}},
        }
        with patch.object(easypost, "verify_address", return_value=verified):
            resp = routes.validate_address_route(ValidateAddressReq(
                street1="1 Main St", city="Austin", state="TX", zip="90210",
            ))
        self.assertFalse(resp["deliverable"])
        self.assertTrue(resp["zipMismatch"])

    def test_missing_fields(self):
        with patch.object(easypost, "verify_address") as verify:
            with self.assertRaises(ValidationError) as ctx:
                routes.validate_address_route(ValidateAddressReq(street1="1 Main St", city="Austin"))
        verify.assert_not_called()
        self.assertEqual(ctx.exception.extra["fields"], ["state", "zip"])


if __name__ == "__main__":
    unittest.main()

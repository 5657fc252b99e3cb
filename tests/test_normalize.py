import unittest
from decimal import Decimal

from fastidp.core.normalize import (
    as_int,
    clean_str,
    dollars_str_to_cents,
    from_ddb,
    normalize_country_code,
    normalize_email,
)
from fastidp.errors import ValidationError


class TestNormalizeEmail(unittest.TestCase):
    def test_normalize_email_strips_and_lowercases(self):
        self.assertEqual(normalize_email("  Test@Example.COM "), "test@example.com")

    def test_normalize_email_rejects_invalid(self):
        with self.assertRaises(ValidationError) as ctx:
            normalize_email("invalid-email")
        self.assertEqual(ctx.exception.extra["field"], "email")


class TestCleanStr(unittest.TestCase):
    def test_blank_is_none(self):
        self.assertIsNone(clean_str("   "))
        self.assertIsNone(clean_str(None))

    def test_trims(self):
        self.assertEqual(clean_str("  Paris "), "Paris")

    def test_rejects_too_long(self):
        with self.assertRaises(ValidationError):
            clean_str("abcdef", max_len=3)


class TestCountryCode(unittest.TestCase):
    def test_uppercases_two_letter_codes(self):
        self.assertEqual(normalize_country_code(" de "), "DE")

    def test_rejects_names_and_digits(self):
        self.assertIsNone(normalize_country_code("Germany"))
        self.assertIsNone(normalize_country_code("D1"))
        self.assertIsNone(normalize_country_code(None))


class TestNumbers(unittest.TestCase):
    def test_as_int_handles_dynamodb_decimals(self):
        self.assertEqual(as_int(Decimal("8405")), 8405)
        self.assertEqual(as_int(None, default=7), 7)

    def test_from_ddb_converts_nested_decimals(self):
        item = {"size": Decimal("2048"), "files": [{"ratio": Decimal("1.5")}], "name": "a.png"}
        self.assertEqual(from_ddb(item), {"size": 2048, "files": [{"ratio": 1.5}], "name": "a.png"})
        self.assertIsInstance(from_ddb(item)["size"], int)

    def test_dollars_str_to_cents(self):
        self.assertEqual(dollars_str_to_cents("12.34"), 1234)
        self.assertEqual(dollars_str_to_cents("7.005"), 701)
        self.assertEqual(dollars_str_to_cents(8), 800)

    def test_dollars_str_to_cents_rejects_garbage(self):
        self.assertIsNone(dollars_str_to_cents("free"))
        self.assertIsNone(dollars_str_to_cents(""))
        self.assertIsNone(dollars_str_to_cents(None))


if __name__ == "__main__":
    unittest.main()

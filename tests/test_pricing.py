import unittest
from decimal import Decimal

from core.pricing import (
    LICENSE_COMMERCIAL,
    LICENSE_EXTENDED,
    LICENSE_PREVIEW,
    LICENSE_STANDARD,
    from_minor_units,
    get_license_pricing,
    get_pricing_catalog,
    is_free_tier,
    license_capabilities,
    normalize_license_tier,
    tiers_covering,
    to_minor_units,
)


class PricingTestCase(unittest.TestCase):
    def test_prices(self):
        self.assertEqual(get_license_pricing(LICENSE_PREVIEW)["price"], Decimal("0.00"))
        self.assertEqual(get_license_pricing(LICENSE_STANDARD)["price"], Decimal("29.99"))
        self.assertEqual(get_license_pricing(LICENSE_COMMERCIAL)["price"], Decimal("99.99"))
        self.assertEqual(get_license_pricing(LICENSE_EXTENDED)["price"], Decimal("199.99"))

    def test_normalize_tier(self):
        self.assertEqual(normalize_license_tier(" commercial "), LICENSE_COMMERCIAL)
        self.assertIsNone(normalize_license_tier("PLATINUM"))
        self.assertIsNone(normalize_license_tier(None))
        with self.assertRaises(KeyError):
            get_license_pricing("PLATINUM")

    def test_free_tier(self):
        self.assertTrue(is_free_tier(LICENSE_PREVIEW))
        self.assertFalse(is_free_tier(LICENSE_STANDARD))

    def test_capabilities(self):
        self.assertEqual(
            license_capabilities(LICENSE_STANDARD),
            {"commercial_use": False, "resale_allowed": False, "modification_allowed": True},
        )
        commercial = license_capabilities(LICENSE_COMMERCIAL)
        self.assertTrue(commercial["commercial_use"])
        self.assertFalse(commercial["resale_allowed"])
        extended = license_capabilities(LICENSE_EXTENDED)
        self.assertTrue(extended["commercial_use"])
        self.assertTrue(extended["resale_allowed"])

    def test_tiers_covering(self):
        self.assertEqual(tiers_covering(LICENSE_COMMERCIAL), [LICENSE_COMMERCIAL, LICENSE_EXTENDED])
        self.assertEqual(len(tiers_covering(LICENSE_PREVIEW)), 4)

    def test_minor_units(self):
        self.assertEqual(to_minor_units(Decimal("29.99")), 2999)
        self.assertEqual(to_minor_units(Decimal("199.99")), 19999)
        self.assertEqual(from_minor_units(9999), Decimal("99.99"))

    def test_catalog(self):
        catalog = get_pricing_catalog()
        self.assertEqual([x["tier"] for x in catalog], [LICENSE_PREVIEW, LICENSE_STANDARD, LICENSE_COMMERCIAL, LICENSE_EXTENDED])
        self.assertTrue(catalog[0]["is_free"])
        self.assertEqual(catalog[1]["price_text"], "$29.99")


if __name__ == "__main__":
    unittest.main()

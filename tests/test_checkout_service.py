import unittest
from decimal import Decimal

from core.checkout_service import build_return_urls, create_checkout
from core.errors import AssetUnavailable, DuplicateEntitlement, Unauthenticated, UpstreamFailure, Validation
from core.license_service import issue_license
from core.models.asset import ASSET_STATUS_PENDING
from core.models.order import (
    Order,
    ORDER_STATUS_PENDING,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PROCESSING,
)
from tests.support import FakeGateway, identity_of, make_database, seed_asset, seed_user


class CheckoutServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.db = make_database()
        self.session = self.db.get_session()
        self.gateway = FakeGateway()
        self.user = seed_user(self.session)
        self.asset = seed_asset(self.session)
        self.identity = identity_of(self.user)

    def tearDown(self):
        self.session.close()
        self.db.dispose()

    def _orders(self):
        return self.session.query(Order).all()

    def test_standard_checkout_creates_pending_order(self):
        result = create_checkout(self.session, self.gateway, self.identity, self.asset.id, "STANDARD")
        self.assertTrue(result["success"])
        self.assertFalse(result["isFree"])
        self.assertEqual(result["amount"], 29.99)
        self.assertEqual(result["currency"], "USD")
        self.assertTrue(result["sessionUrl"].startswith("https://checkout.stripe.test/"))

        order = self.session.query(Order).filter(Order.id == result["orderId"]).first()
        self.assertEqual(order.subtotal, Decimal("29.99"))
        self.assertEqual(order.total_amount, Decimal("29.99"))
        self.assertEqual(order.status, ORDER_STATUS_PENDING)
        self.assertEqual(order.payment_status, PAYMENT_STATUS_PROCESSING)
        self.assertEqual(order.stripe_session_id, result["sessionId"])
        self.assertTrue(order.order_number.startswith("PLS-"))
        self.assertEqual(len(order.items), 1)
        self.assertEqual(order.items[0].item_title, "Modern Villa Plan")

        sent = self.gateway.sessions[0]
        self.assertEqual(sent["amount_minor"], 2999)
        self.assertEqual(
            sent["metadata"],
            {"orderId": order.id, "assetId": self.asset.id, "licenseTier": "STANDARD", "userId": self.user.id},
        )

    def test_tier_is_case_insensitive(self):
        result = create_checkout(self.session, self.gateway, self.identity, self.asset.id, "commercial")
        self.assertEqual(result["licenseTier"], "COMMERCIAL")
        self.assertEqual(result["amount"], 99.99)

    def test_free_tier_never_creates_order(self):
        result = create_checkout(self.session, self.gateway, self.identity, self.asset.id, "PREVIEW")
        self.assertTrue(result["isFree"])
        self.assertEqual(self._orders(), [])
        self.assertEqual(self.gateway.sessions, [])

    def test_requires_identity(self):
        with self.assertRaises(Unauthenticated):
            create_checkout(self.session, self.gateway, None, self.asset.id, "STANDARD")
        self.assertEqual(self._orders(), [])

    def test_unapproved_or_missing_asset(self):
        pending = seed_asset(self.session, title="Draft", status=ASSET_STATUS_PENDING)
        inactive = seed_asset(self.session, title="Retired", is_active=False)
        for asset_id in (pending.id, inactive.id, "no-such-asset"):
            with self.assertRaises(AssetUnavailable):
                create_checkout(self.session, self.gateway, self.identity, asset_id, "STANDARD")
        self.assertEqual(self._orders(), [])

    def test_unknown_tier(self):
        with self.assertRaises(Validation):
            create_checkout(self.session, self.gateway, self.identity, self.asset.id, "PLATINUM")

    def test_duplicate_entitlement(self):
        first = create_checkout(self.session, self.gateway, self.identity, self.asset.id, "STANDARD")
        order = self.session.query(Order).filter(Order.id == first["orderId"]).first()
        issue_license(self.session, order, order.items[0], self.user.id)
        self.session.commit()

        with self.assertRaises(DuplicateEntitlement):
            create_checkout(self.session, self.gateway, self.identity, self.asset.id, "STANDARD")
        self.assertEqual(len(self._orders()), 1)

        # a different tier is a different entitlement
        other = create_checkout(self.session, self.gateway, self.identity, self.asset.id, "EXTENDED")
        self.assertTrue(other["success"])

    def test_gateway_failure_leaves_order_pending_with_note(self):
        gateway = FakeGateway(fail=True)
        with self.assertRaises(UpstreamFailure):
            create_checkout(self.session, gateway, self.identity, self.asset.id, "STANDARD")
        orders = self._orders()
        self.assertEqual(len(orders), 1)
        self.assertEqual(orders[0].status, ORDER_STATUS_PENDING)
        self.assertEqual(orders[0].payment_status, PAYMENT_STATUS_PENDING)
        self.assertIn("Payment session failed", orders[0].internal_notes)
        self.assertIsNone(orders[0].stripe_session_id)

    def test_return_urls(self):
        success, cancel = build_return_urls("https://plans.test/", "o-1", "a-1")
        self.assertEqual(success, "https://plans.test/purchase/success?session_id={CHECKOUT_SESSION_ID}&order_id=o-1")
        self.assertEqual(cancel, "https://plans.test/gallery/a-1?checkout=cancelled")


if __name__ == "__main__":
    unittest.main()

import unittest

from fastapi.testclient import TestClient

from core.config import API_BASE
from core.models.order import Order
from core.security import CSRF_COOKIE_NAME, CSRF_HEADER_NAME, RateLimiter, csrf_token_hash, generate_csrf_token
from tests.support import (
    FakeGateway,
    FakeMailer,
    FakeStorage,
    checkout_completed_event,
    encode_event,
    make_database,
    seed_asset,
    seed_user,
    sign_payload,
)
from web import create_app


class ApiFlowTestCase(unittest.TestCase):
    def setUp(self):
        self.db = make_database()
        self.gateway = FakeGateway()
        self.mailer = FakeMailer()
        self.storage = FakeStorage()
        self.limiters = {
            "checkout": RateLimiter(max_requests=50, window_seconds=900, name="checkout"),
            "download": RateLimiter(max_requests=50, window_seconds=900, name="download"),
        }
        app = create_app(
            database=self.db,
            gateway=self.gateway,
            mailer=self.mailer,
            storage=self.storage,
            rate_limiters=self.limiters,
            start_jobs=False,
        )
        self.client = TestClient(app)
        session = self.db.get_session()
        try:
            self.user = seed_user(session, email="alice@example.com", password="pw-alice-1")
            self.other = seed_user(session, email="bob@example.com", password="pw-bob-1")
            self.asset = seed_asset(session)
        finally:
            session.close()

    def tearDown(self):
        self.client.close()
        self.db.dispose()

    def _token(self, email: str, password: str) -> str:
        resp = self.client.post(f"{API_BASE}/auth/login", data={"username": email, "password": password})
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["access_token"]

    def _headers(self, token: str = "", csrf: bool = True) -> dict:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if csrf:
            value = generate_csrf_token()
            headers[CSRF_HEADER_NAME] = value
            headers["Cookie"] = f"{CSRF_COOKIE_NAME}={csrf_token_hash(value, token)}"
        return headers

    def _checkout(self, token: str, tier: str = "STANDARD"):
        return self.client.post(
            f"{API_BASE}/checkout",
            json={"assetId": self.asset.id, "licenseTier": tier},
            headers=self._headers(token),
        )

    def _deliver(self, event: dict):
        payload = encode_event(event)
        return self.client.post(
            f"{API_BASE}/webhooks/stripe",
            content=payload,
            headers={"stripe-signature": sign_payload(payload), "Content-Type": "application/json"},
        )

    def _order(self, order_id: str) -> Order:
        session = self.db.get_session()
        try:
            return session.query(Order).filter(Order.id == order_id).first()
        finally:
            session.close()

    def test_login_rejects_bad_password(self):
        resp = self.client.post(f"{API_BASE}/auth/login", data={"username": "alice@example.com", "password": "nope"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["code"], "unauthenticated")

    def test_purchase_webhook_download_flow(self):
        token = self._token("alice@example.com", "pw-alice-1")

        resp = self._checkout(token)
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["amount"], 29.99)
        order_id = body["orderId"]

        # not yet entitled
        resp = self.client.get(f"{API_BASE}/download/{self.asset.id}?license=STANDARD", headers=self._headers(token, csrf=False))
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["code"], "not_entitled")

        resp = self._deliver(checkout_completed_event(self._order(order_id)))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"received": True})

        resp = self.client.get(f"{API_BASE}/download/{self.asset.id}?license=STANDARD", headers=self._headers(token, csrf=False))
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.content, b"%PDF-plan-bytes")
        self.assertEqual(resp.headers["content-type"], "application/pdf")
        self.assertTrue(resp.headers["content-disposition"].startswith('attachment; filename="Modern_Villa_Plan_standard_'))
        self.assertEqual(resp.headers["cache-control"], "private, no-cache")
        self.assertNotIn("x-license-type", resp.headers)

        resp = self.client.get(f"{API_BASE}/orders/{order_id}", headers=self._headers(token, csrf=False))
        self.assertEqual(resp.status_code, 200)
        detail = resp.json()["data"]
        self.assertEqual(detail["fulfillment_status"], "FULFILLED")
        self.assertEqual(len(detail["licenses"]), 1)
        self.assertEqual(detail["licenses"][0]["download_count"], 1)

        resp = self.client.get(f"{API_BASE}/licenses", headers=self._headers(token, csrf=False))
        self.assertEqual(len(resp.json()["data"]), 1)

        # second purchase of the same entitlement
        resp = self._checkout(token)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "duplicate_entitlement")

        other_token = self._token("bob@example.com", "pw-bob-1")
        resp = self.client.get(f"{API_BASE}/orders/{order_id}", headers=self._headers(other_token, csrf=False))
        self.assertEqual(resp.status_code, 404)

    def test_checkout_gates(self):
        token = self._token("alice@example.com", "pw-alice-1")

        resp = self.client.post(
            f"{API_BASE}/checkout",
            json={"assetId": self.asset.id, "licenseTier": "STANDARD"},
            headers=self._headers(token, csrf=False),
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["code"], "csrf")

        resp = self.client.post(
            f"{API_BASE}/checkout",
            json={"assetId": self.asset.id, "licenseTier": "STANDARD"},
            headers=self._headers(""),
        )
        self.assertEqual(resp.status_code, 401)

        resp = self.client.post(f"{API_BASE}/checkout", json={"licenseTier": "STANDARD"}, headers=self._headers(token))
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "validation")

        resp = self.client.post(
            f"{API_BASE}/checkout", json={"assetId": "missing", "licenseTier": "STANDARD"}, headers=self._headers(token)
        )
        self.assertEqual(resp.status_code, 404)

        resp = self._checkout(token, tier="PREVIEW")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["isFree"])

    def test_checkout_rate_limit(self):
        self.limiters["checkout"] = RateLimiter(max_requests=1, window_seconds=900, name="checkout")
        token = self._token("alice@example.com", "pw-alice-1")
        self.assertEqual(self._checkout(token, tier="PREVIEW").status_code, 200)
        resp = self._checkout(token, tier="PREVIEW")
        self.assertEqual(resp.status_code, 429)
        self.assertIn("retry-after", resp.headers)
        self.assertEqual(resp.headers["x-ratelimit-limit"], "1")

    def test_gateway_failure_is_generic_500(self):
        self.gateway.fail = True
        token = self._token("alice@example.com", "pw-alice-1")
        resp = self._checkout(token)
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["error"], "Internal server error")

    def test_webhook_signature_required(self):
        resp = self.client.post(f"{API_BASE}/webhooks/stripe", content=b'{"id": "evt_x", "type": "x"}')
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(
            f"{API_BASE}/webhooks/stripe",
            content=b'{"id": "evt_x", "type": "x"}',
            headers={"stripe-signature": "t=1,v1=00"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "invalid_signature")
        resp = self.client.post(
            f"{API_BASE}/webhooks/stripe",
            content=b"\xff\xfe{}",
            headers={"stripe-signature": "t=1,v1=deadbeef"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["code"], "invalid_signature")

    def test_anonymous_downloads(self):
        resp = self.client.get(f"{API_BASE}/download/{self.asset.id}?license=PREVIEW")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.headers["x-license-type"], "preview")

        resp = self.client.get(f"{API_BASE}/download/{self.asset.id}")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["code"], "authentication_required")

        resp = self.client.get(f"{API_BASE}/download/missing?license=PREVIEW")
        self.assertEqual(resp.status_code, 404)

    def test_catalog_and_admin_sweep(self):
        resp = self.client.get(f"{API_BASE}/catalog/licenses")
        self.assertEqual(len(resp.json()["data"]), 4)

        token = self._token("alice@example.com", "pw-alice-1")
        resp = self.client.post(f"{API_BASE}/orders/sweep", headers=self._headers(token, csrf=False))
        self.assertEqual(resp.status_code, 403)


if __name__ == "__main__":
    unittest.main()

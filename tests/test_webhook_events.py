import unittest

from core.errors import EventDecodeError, InvalidSignature
from core.payment_gateway import PaymentGateway, StripeGateway
from core.webhook_events import (
    ChargeDisputeCreated,
    CheckoutCompleted,
    PaymentIntentFailed,
    UnhandledEvent,
    decode_event,
)


def _checkout_event(metadata):
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_1", "payment_intent": "pi_1", "amount_total": 2999, "currency": "usd", "metadata": metadata}},
    }


class DecodeEventTestCase(unittest.TestCase):
    def test_checkout_completed(self):
        event = decode_event(
            _checkout_event({"orderId": "o1", "assetId": "a1", "licenseTier": "STANDARD", "userId": "u1", "extra": "x"})
        )
        self.assertIsInstance(event, CheckoutCompleted)
        self.assertEqual(event.event_id, "evt_1")
        self.assertEqual(event.object.metadata.order_id, "o1")
        self.assertEqual(event.object.amount_total, 2999)

    def test_missing_metadata_field_fails_closed(self):
        with self.assertRaises(EventDecodeError) as ctx:
            decode_event(_checkout_event({"orderId": "o1", "assetId": "a1", "licenseTier": ""}))
        fields = ctx.exception.detail["fields"]
        self.assertIn("object.metadata.userId", fields)
        self.assertIn("object.metadata.licenseTier", fields)

    def test_payment_failed_and_dispute(self):
        failed = decode_event(
            {"id": "evt_2", "type": "payment_intent.payment_failed", "data": {"object": {"id": "pi_2", "metadata": {"orderId": "o2"}}}}
        )
        self.assertIsInstance(failed, PaymentIntentFailed)
        self.assertEqual(failed.object.metadata.order_id, "o2")

        dispute = decode_event(
            {"id": "evt_3", "type": "charge.dispute.created", "data": {"object": {"id": "dp_1", "payment_intent": "pi_2"}}}
        )
        self.assertIsInstance(dispute, ChargeDisputeCreated)
        self.assertEqual(dispute.object.reason, "")

        with self.assertRaises(EventDecodeError):
            decode_event({"id": "evt_4", "type": "charge.dispute.created", "data": {"object": {"id": "dp_2"}}})

    def test_unhandled_and_malformed_envelopes(self):
        event = decode_event({"id": "evt_5", "type": "invoice.paid", "data": {}})
        self.assertIsInstance(event, UnhandledEvent)
        self.assertEqual(event.kind, "invoice.paid")
        with self.assertRaises(EventDecodeError):
            decode_event({"type": "checkout.session.completed"})
        with self.assertRaises(EventDecodeError):
            decode_event({"id": "evt_6", "type": "payment_intent.succeeded"})


class GatewayContractTestCase(unittest.TestCase):
    def test_incomplete_gateway_cannot_be_built(self):
        class HalfGateway(PaymentGateway):
            def verify_event(self, payload, signature):
                return {}

        with self.assertRaises(TypeError):
            HalfGateway()

    def test_undecodable_body_is_an_invalid_signature(self):
        gateway = StripeGateway(secret_key="sk_test_x", webhook_secret="whsec_x")
        with self.assertRaises(InvalidSignature) as ctx:
            gateway.verify_event(b"\xff\xfe{}", "t=1,v1=deadbeef")
        self.assertEqual(ctx.exception.message, "Malformed payload")


if __name__ == "__main__":
    unittest.main()

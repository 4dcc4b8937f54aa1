"""
Typed decoding of payment-gateway webhook events.

The gateway sends a loosely typed JSON envelope; handlers only ever see one of
the models below. A recognised event type missing any field its handler needs
raises EventDecodeError instead of reaching the handler half-filled.
"""

from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.errors import EventDecodeError

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
CHARGE_DISPUTE_CREATED = "charge.dispute.created"

HANDLED_EVENT_TYPES = (
    CHECKOUT_COMPLETED,
    PAYMENT_INTENT_SUCCEEDED,
    PAYMENT_INTENT_FAILED,
    CHARGE_DISPUTE_CREATED,
)


class _GatewayObject(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CheckoutMetadata(_GatewayObject):
    order_id: str = Field(alias="orderId", min_length=1)
    asset_id: str = Field(alias="assetId", min_length=1)
    license_tier: str = Field(alias="licenseTier", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


class OrderRefMetadata(_GatewayObject):
    order_id: str = Field(alias="orderId", min_length=1)


class CheckoutSessionObject(_GatewayObject):
    id: str = Field(min_length=1)
    payment_intent: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: CheckoutMetadata


class PaymentIntentObject(_GatewayObject):
    id: str = Field(min_length=1)
    metadata: OrderRefMetadata


class DisputeObject(_GatewayObject):
    id: str = Field(min_length=1)
    payment_intent: str = Field(min_length=1)
    reason: str = ""


class CheckoutCompleted(_GatewayObject):
    kind: Literal["checkout.session.completed"]
    event_id: str
    object: CheckoutSessionObject


class PaymentIntentSucceeded(_GatewayObject):
    kind: Literal["payment_intent.succeeded"]
    event_id: str
    object: PaymentIntentObject


class PaymentIntentFailed(_GatewayObject):
    kind: Literal["payment_intent.payment_failed"]
    event_id: str
    object: PaymentIntentObject


class ChargeDisputeCreated(_GatewayObject):
    kind: Literal["charge.dispute.created"]
    event_id: str
    object: DisputeObject


class UnhandledEvent(_GatewayObject):
    kind: str
    event_id: str


HandledEvent = Annotated[
    Union[CheckoutCompleted, PaymentIntentSucceeded, PaymentIntentFailed, ChargeDisputeCreated],
    Field(discriminator="kind"),
]
_handled_adapter = TypeAdapter(HandledEvent)

GatewayEvent = Union[CheckoutCompleted, PaymentIntentSucceeded, PaymentIntentFailed, ChargeDisputeCreated, UnhandledEvent]


def envelope_id_and_type(raw: Dict):
    event_id = str((raw or {}).get("id") or "").strip()
    event_type = str((raw or {}).get("type") or "").strip()
    if not event_id or not event_type:
        raise EventDecodeError("event id or type missing")
    return event_id, event_type


def decode_event(raw: Dict) -> GatewayEvent:
    event_id, event_type = envelope_id_and_type(raw)
    if event_type not in HANDLED_EVENT_TYPES:
        return UnhandledEvent(kind=event_type, event_id=event_id)
    data = raw.get("data") if isinstance(raw.get("data"), dict) else {}
    try:
        return _handled_adapter.validate_python(
            {"kind": event_type, "event_id": event_id, "object": data.get("object") or {}}
        )
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in e.errors()})
        raise EventDecodeError(
            f"{event_type} is missing required fields",
            detail={"event_id": event_id, "fields": fields},
        ) from e

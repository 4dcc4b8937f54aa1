from .base import (
    Base,
    Column,
    String,
    DateTime,
    Integer,
    Numeric,
    Text,
    ForeignKey,
    relationship,
)

ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_CONFIRMED = "CONFIRMED"
ORDER_STATUS_CANCELLED = "CANCELLED"

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PROCESSING = "PROCESSING"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_FAILED = "FAILED"
PAYMENT_STATUS_REFUNDED = "REFUNDED"

FULFILLMENT_STATUS_PENDING = "PENDING"
FULFILLMENT_STATUS_PROCESSING = "PROCESSING"
FULFILLMENT_STATUS_FULFILLED = "FULFILLED"
FULFILLMENT_STATUS_CANCELLED = "CANCELLED"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(255), primary_key=True, index=True)
    order_number = Column(String(64), unique=True, index=True, nullable=False)
    user_id = Column(String(255), ForeignKey("users.id"), index=True, nullable=False)

    status = Column(String(20), index=True, nullable=False, default=ORDER_STATUS_PENDING)
    payment_status = Column(String(20), index=True, nullable=False, default=PAYMENT_STATUS_PENDING)
    fulfillment_status = Column(String(20), index=True, nullable=False, default=FULFILLMENT_STATUS_PENDING)

    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    # billing snapshot, copied at order time
    billing_email = Column(String(255), nullable=False)
    billing_name = Column(String(255), default="")
    billing_street = Column(String(255), nullable=True)
    billing_city = Column(String(120), nullable=True)
    billing_state = Column(String(120), nullable=True)
    billing_zip = Column(String(32), nullable=True)
    billing_country = Column(String(2), nullable=True)
    customer_ip = Column(String(64), nullable=True)

    stripe_session_id = Column(String(255), unique=True, index=True, nullable=True)
    stripe_payment_intent_id = Column(String(255), index=True, nullable=True)

    internal_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, index=True)
    updated_at = Column(DateTime)
    completed_at = Column(DateTime, nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")
    licenses = relationship("License", back_populates="order", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(255), primary_key=True, index=True)
    order_id = Column(String(255), ForeignKey("orders.id"), index=True, nullable=False)
    asset_id = Column(String(255), ForeignKey("assets.id"), index=True, nullable=False)
    license_tier = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    # title/description snapshot so later catalog edits leave history untouched
    item_title = Column(String(200), nullable=False)
    item_description = Column(Text, default="")
    item_type = Column(String(20), default="IMAGE")
    created_at = Column(DateTime)

    order = relationship("Order", back_populates="items")

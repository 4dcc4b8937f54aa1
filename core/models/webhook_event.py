from .base import Base, Column, String, DateTime, Integer, Text

WEBHOOK_STATUS_RECEIVED = "received"
WEBHOOK_STATUS_PROCESSED = "processed"
WEBHOOK_STATUS_IGNORED = "ignored"
WEBHOOK_STATUS_FAILED = "failed"


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(64), primary_key=True)
    event_id = Column(String(255), unique=True, index=True, nullable=False)
    event_type = Column(String(120), index=True, nullable=False)
    status = Column(String(20), index=True, nullable=False, default=WEBHOOK_STATUS_RECEIVED)
    attempts = Column(Integer, nullable=False, default=0)
    order_id = Column(String(255), index=True, nullable=True)
    last_error = Column(Text, nullable=True)
    received_at = Column(DateTime)
    processed_at = Column(DateTime, nullable=True)

from .base import (
    Base,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    relationship,
)


class License(Base):
    __tablename__ = "licenses"
    # one license per purchased asset of an order; webhook redelivery hits this
    __table_args__ = (UniqueConstraint("order_id", "asset_id", name="uq_license_order_asset"),)

    id = Column(String(255), primary_key=True, index=True)
    license_key = Column(String(80), unique=True, index=True, nullable=False)
    license_tier = Column(String(20), index=True, nullable=False)
    user_id = Column(String(255), ForeignKey("users.id"), index=True, nullable=False)
    order_id = Column(String(255), ForeignKey("orders.id"), index=True, nullable=False)
    asset_id = Column(String(255), ForeignKey("assets.id"), index=True, nullable=False)

    commercial_use = Column(Boolean, nullable=False, default=False)
    resale_allowed = Column(Boolean, nullable=False, default=False)
    modification_allowed = Column(Boolean, nullable=False, default=True)

    purchase_price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")

    download_count = Column(Integer, nullable=False, default=0)
    max_downloads = Column(Integer, nullable=True)
    last_downloaded_at = Column(DateTime, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    order = relationship("Order", back_populates="licenses")

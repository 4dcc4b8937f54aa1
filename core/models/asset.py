from .base import Base, Column, String, DateTime, Boolean, Text

ASSET_STATUS_PENDING = "PENDING"
ASSET_STATUS_APPROVED = "APPROVED"
ASSET_STATUS_REJECTED = "REJECTED"


class Asset(Base):
    """Architectural plan or image offered for licensing.

    Upload and approval happen elsewhere; checkout and download only read it.
    """

    __tablename__ = "assets"

    id = Column(String(255), primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, default="")
    media_url = Column(String(1000), nullable=False)
    mime_type = Column(String(100), default="image/jpeg")
    status = Column(String(20), index=True, default=ASSET_STATUS_PENDING)
    is_active = Column(Boolean, default=True, index=True)
    uploaded_by = Column(String(255), index=True)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    @property
    def is_purchasable(self) -> bool:
        return bool(self.is_active) and self.status == ASSET_STATUS_APPROVED

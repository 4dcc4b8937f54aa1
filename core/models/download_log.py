from .base import Base, Column, String, DateTime, Boolean


class DownloadLog(Base):
    """Append-only audit row for every download attempt."""

    __tablename__ = "download_logs"

    id = Column(String(64), primary_key=True)
    # plain column, attempts on unknown assets are logged too
    asset_id = Column(String(255), index=True, nullable=False)
    user_id = Column(String(255), index=True, nullable=True)
    license_id = Column(String(255), index=True, nullable=True)
    license_tier = Column(String(20), index=True, nullable=False)
    ip_address = Column(String(64))
    user_agent = Column(String(500), default="")
    allowed = Column(Boolean, nullable=False, default=False)
    reason = Column(String(255), default="")
    downloaded_at = Column(DateTime, index=True)

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.config import cfg
from core.log import get_logger
from core.events import log_event, E
from core.models.base import Base
import core.models  # noqa: F401  registers every table on Base.metadata

logger = get_logger(__name__)


class Database:
    """Engine and session factory owned by the process entry point."""

    def __init__(self, url: str = "", echo: bool = False):
        self.url = url or cfg.get("database.url", "sqlite:///planstore.db")
        kwargs = {"echo": echo, "future": True}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise each session sees an empty db
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True
        self.engine = create_engine(self.url, **kwargs)
        self._session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)
        log_event(logger, E.SYSTEM_DB_INIT, url=self.engine.url.render_as_string(hide_password=True))

    def get_session(self) -> Session:
        return self._session_factory()

    def dispose(self) -> None:
        self.engine.dispose()

"""SQLAlchemy engine, session and transaction handling."""

from contextlib import contextmanager
from datetime import timezone
from typing import Iterator, Optional

from sqlalchemy import DateTime, create_engine, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from ..utils.config import get_config
from ..utils.exceptions import PersistenceError
from ..utils.logger import get_error_logger
from ..utils.timestamps import ensure_utc


class Base(DeclarativeBase):
    pass


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def safe_url(url: str) -> str:
    """Database URL with any password masked, for display."""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "<unparseable database URL>"


def _is_memory_sqlite(url: str) -> bool:
    return url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith(":"))


class Database:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self, url: Optional[str] = None):
        """
        Initialize the database.

        Args:
            url: SQLAlchemy URL; defaults to ``DATABASE_URL`` from settings
        """
        config = get_config()
        self.url = url or config.env.database_url
        self.error_logger = get_error_logger()

        engine_kwargs = {"echo": config.database.echo}
        if self.url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": config.database.sqlite_busy_timeout
            }
            # One shared connection, otherwise each session sees an empty database.
            if _is_memory_sqlite(self.url):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_pre_ping"] = config.database.pool_pre_ping

        self.engine = create_engine(self.url, **engine_kwargs)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self):
        """Create missing tables."""
        # Registers the mapped tables on Base.metadata.
        from . import tables  # noqa: F401

        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Could not create tables: {str(e)}",
                details={"error": str(e)}
            ) from e

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Yield a session whose work is committed as one unit.

        Any exception rolls the whole unit back. Database errors are
        re-raised as ``PersistenceError``; everything else propagates
        unchanged.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            self.error_logger.error(f"Database error, transaction rolled back: {str(e)}")
            raise PersistenceError(
                f"Database operation failed: {str(e)}",
                details={"error": str(e), "type": type(e).__name__}
            ) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        """Close pooled connections."""
        self.engine.dispose()

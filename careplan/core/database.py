"""
Database engine, session factory and transaction helpers.

The workflow never relies on an ambient connection: every store and workflow
operation receives the Session it runs in, and the caller decides where the
transaction begins and ends via unit_of_work().
"""
from contextlib import contextmanager
from typing import Any, Dict, Generator, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from careplan.core.config import get_settings
from careplan.core.logging import get_safe_logger

logger = get_safe_logger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _engine_options(url: str, echo: bool) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            options["poolclass"] = StaticPool
    return options


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for url with the service's connection options."""
    return create_engine(url, **_engine_options(url, echo))


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def get_engine() -> Engine:
    """Return the process-wide engine, creating it from settings on first use."""
    global _engine, _session_factory
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, settings.database_echo)
        _session_factory = build_session_factory(_engine)
    return _engine


def get_session_factory() -> sessionmaker:
    get_engine()
    assert _session_factory is not None
    return _session_factory


def configure_engine(engine: Engine) -> None:
    """Swap the process-wide engine (tests, scripts)."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = build_session_factory(engine)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables that do not exist yet."""
    from careplan.db.models import Base

    Base.metadata.create_all(bind=engine or get_engine())


def check_database() -> bool:
    """Readiness probe: True if a trivial query succeeds."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        logger.warning("Database probe failed", exception_class=type(exc).__name__)
        return False


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped Session."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Commit everything done in the block, or roll all of it back."""
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise

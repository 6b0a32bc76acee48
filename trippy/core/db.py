import logging
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .settings import settings

logger = logging.getLogger(__name__)


def _create_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine, making sure a SQLite file's directory exists.

    Relative SQLite paths are resolved against the project root.
    """
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        database = url.database
        if database and database != ":memory:":
            db_path = Path(database).expanduser()
            if not db_path.is_absolute():
                project_root = Path(__file__).parent.parent.parent
                db_path = project_root / db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)
        # Store calls run in worker threads
        return create_engine(
            database_url,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )
    return create_engine(database_url, pool_pre_ping=True)


# Lazy initialization - create engine on first access to avoid import-time failures
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _create_engine(settings.DATABASE_URL)
    return _engine


def get_session_local() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, autocommit=False)
    return _SessionLocal


class Base(DeclarativeBase):
    pass


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables that do not exist yet."""
    # Registers the mapped classes on Base.metadata
    import trippy.database.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def get_db() -> Iterator[Session]:
    db = get_session_local()()
    try:
        yield db
    finally:
        db.close()


def safe_rollback(db: Session, operation_name: str = "database operation") -> bool:
    """Roll back ``db``, logging instead of raising if the rollback itself fails."""
    try:
        db.rollback()
        return True
    except Exception as rollback_error:
        logger.error("Failed to rollback %s: %s", operation_name, rollback_error)
        return False

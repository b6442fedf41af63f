from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from content_engine.config.settings import get_settings
from content_engine.db.models import Base

_engine: Engine | None = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        s = get_settings()
        url = make_url(s.database_url)
        if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(s.database_url, future=True)
    return _engine


def make_session_factory(engine: Engine) -> sessionmaker:
    # stores hand rows back to callers after the session closes
    return sessionmaker(engine, expire_on_commit=False)


def init_db(engine: Engine | None = None) -> None:
    """
    Create tables (idempotent) and verify connectivity.
    """
    engine = engine or get_engine()

    # Create all tables
    Base.metadata.create_all(engine)

    # Connectivity check
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))

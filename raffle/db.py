from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

engine: Optional[Engine] = None
SessionLocal = scoped_session(sessionmaker(autoflush=False, autocommit=False, future=True))


def init_engine(database_url: str) -> Engine:
    """Bind the session factory to ``database_url`` and create missing tables."""
    global engine
    options: Dict[str, Any] = {"future": True, "echo": False, "pool_pre_ping": True}
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection, otherwise every session sees an empty database.
        options.update(poolclass=StaticPool, connect_args={"check_same_thread": False})

    if engine is not None:
        SessionLocal.remove()
        engine.dispose()
    engine = create_engine(database_url, **options)
    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(engine)
    return engine


@contextmanager
def session_scope() -> Iterator[Session]:
    if engine is None:
        raise RuntimeError("Database engine not initialised; call init_engine() first")
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

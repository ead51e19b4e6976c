"""
SQLAlchemy 2.0 engine and session factory for the payment store.

The payment table is small and keyed by processor id, so SQLite is the
default. Any SQLAlchemy URL (PostgreSQL in production) is accepted.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config.settings import DATABASE_URL


def build_engine(url: str) -> Engine:
    """
    SQLite is used from the event loop and from FastAPI's threadpool, so
    same-thread checking is off; an in-memory database needs a StaticPool
    for every session to see the same tables.
    """
    if not url.startswith("sqlite"):
        return create_engine(
            url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
            pool_recycle=1800,  # seconds
        )

    in_memory = ":memory:" in url or url in ("sqlite://", "sqlite:///")
    return create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if in_memory else None,
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    # Records are read after commit, outside the session
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


def safe_commit(db: Session) -> None:
    """Commit, rolling back before re-raising when the commit fails."""
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

"""
Infrastructure: database sessions (db.py) and request correlation ids
(correlation.py).
"""

from shared.infrastructure.db import (
    engine,
    SessionLocal,
    build_engine,
    build_session_factory,
    safe_commit,
)

__all__ = [
    "engine",
    "SessionLocal",
    "build_engine",
    "build_session_factory",
    "safe_commit",
]

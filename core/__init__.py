"""Core module for PaperPulse."""

from core.database import close_db, get_session_factory, init_db, session_scope

__all__ = [
    "close_db",
    "get_session_factory",
    "init_db",
    "session_scope",
]

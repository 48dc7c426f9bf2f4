from .session import SessionLocal, engine, get_db_session
from .types import JSONBCompat

__all__ = ["JSONBCompat", "SessionLocal", "engine", "get_db_session"]

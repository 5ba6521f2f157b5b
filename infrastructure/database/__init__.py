"""Database connection and record store"""
from .connection import get_engine, get_session_maker, init_db
from .store import SqlPassStore

__all__ = [
    "get_engine",
    "get_session_maker",
    "init_db",
    "SqlPassStore",
]

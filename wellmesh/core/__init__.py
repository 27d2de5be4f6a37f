# WellMesh Core Module
from .config import get_settings, settings
from .database import Base, async_session_maker, check_db_connection, engine, get_db
from .kv_store import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    StoreUnavailableError,
    get_kv_store,
)
from .logging import setup_logging

__all__ = [
    "settings",
    "get_settings",
    "setup_logging",
    "Base",
    "engine",
    "async_session_maker",
    "get_db",
    "check_db_connection",
    "KeyValueStore",
    "RedisKeyValueStore",
    "InMemoryKeyValueStore",
    "StoreUnavailableError",
    "get_kv_store",
]

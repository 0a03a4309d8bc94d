"""Coordination layer - registrations and configuration over a shared store."""

from .errors import (
    CoordinationError,
    KeyConflict,
    KeyNotFound,
    StoreConnectionError,
    StoreError,
)
from .keys import config_key, registration_key
from .memory_store import InMemoryStore
from .redis_store import RedisStore
from .registry import Registry
from .store import ChangeEvent, EventType, KeyValueStore, WatchStream

__all__ = [
    "ChangeEvent",
    "CoordinationError",
    "EventType",
    "InMemoryStore",
    "KeyConflict",
    "KeyNotFound",
    "KeyValueStore",
    "RedisStore",
    "Registry",
    "StoreConnectionError",
    "StoreError",
    "WatchStream",
    "config_key",
    "registration_key",
]

"""Registry - unique registrations and configuration reads/watches."""

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from src.server.config import Settings

from .errors import KeyConflict, KeyNotFound, StoreError
from .keys import (
    REGISTERED_KEY_PREFIX,
    config_key,
    logical_registration_key,
    registration_key,
)
from .memory_store import InMemoryStore
from .redis_store import connect_redis
from .store import KeyValueStore, WatchStream

logger = structlog.get_logger()

MEMORY_ENDPOINT = "memory://"


async def connect_store(settings: Settings) -> KeyValueStore:
    """Open the store connection described by settings."""
    endpoints = [e.strip() for e in settings.store_endpoints if e.strip()]
    if endpoints and all(e == MEMORY_ENDPOINT for e in endpoints):
        logger.info("Using in-memory store")
        return InMemoryStore()

    return await connect_redis(
        [e for e in endpoints if e != MEMORY_ENDPOINT],
        dial_timeout=settings.dial_timeout_seconds,
        request_timeout=settings.request_timeout_seconds,
        poll_interval=settings.watch_poll_interval_seconds,
        keyspace_events=settings.keyspace_events,
        change_log_length=settings.change_log_length,
    )


class Registry:
    """Coordinates registrations and configuration over a shared store.

    Holds no state besides the store handle, so one instance can serve any
    number of concurrent callers.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    @classmethod
    async def connect(cls, settings: Settings) -> "Registry":
        """Build a registry on a fresh store connection.

        Raises StoreConnectionError if no endpoint answers within the dial
        timeout.
        """
        return cls(await connect_store(settings))

    @contextmanager
    def _store_call(self, operation: str, key: str | None) -> Iterator[None]:
        """Re-raise store failures with the logical key."""
        try:
            yield
        except StoreError as e:
            logger.error(
                "Store operation failed",
                operation=operation,
                key=key,
                error=str(e),
            )
            raise StoreError(
                f"{operation} {key!r}: {e}" if key is not None else f"{operation}: {e}",
                operation=operation,
                key=key,
            ) from e

    async def register(self, key: str, file_path: str) -> None:
        """Bind key to file_path. Raises KeyConflict if key is registered."""
        with self._store_call("register", key):
            created = await self.store.create(registration_key(key), file_path)

        if not created:
            logger.info("Key already registered", key=key)
            raise KeyConflict(key)

        logger.info("Registered key", key=key, file_path=file_path)

    async def unregister(self, key: str) -> None:
        """Remove the registration for key. Absent keys are not an error."""
        with self._store_call("unregister", key):
            removed = await self.store.delete(registration_key(key))

        if removed:
            logger.info("Unregistered key", key=key)

    async def get_registration(self, key: str) -> str:
        """File path registered under key."""
        with self._store_call("get_registration", key):
            value = await self.store.get(registration_key(key))

        if value is None:
            raise KeyNotFound(key)
        return value.decode()

    async def list_registrations(self) -> dict[str, str]:
        """All registered keys with their file paths, in store order."""
        with self._store_call("list_registrations", None):
            entries = await self.store.get_prefix(REGISTERED_KEY_PREFIX)

        return {
            logical_registration_key(physical): value.decode()
            for physical, value in entries
        }

    async def list_registered_keys(self) -> list[str]:
        """All registered logical keys, in store order."""
        with self._store_call("list_registered_keys", None):
            entries = await self.store.get_prefix(REGISTERED_KEY_PREFIX)

        return [logical_registration_key(physical) for physical, _ in entries]

    async def get_config(self, key: str) -> bytes:
        """Current configuration payload for key.

        Raises KeyNotFound when nothing is stored; an empty payload is
        returned as b"".
        """
        with self._store_call("get_config", key):
            value = await self.store.get(config_key(key))

        if value is None:
            raise KeyNotFound(key)
        return value

    async def watch(
        self,
        key: str,
        cancel: asyncio.Event | None = None,
    ) -> WatchStream:
        """Subscribe to future changes of the configuration for key.

        The subscription is live when this returns. Iterate the stream until
        cancel is set; a lost connection raises StoreError from the stream.
        """
        with self._store_call("watch", key):
            stream = await self.store.watch(config_key(key), cancel)

        logger.info("Watching config", key=key)
        return stream

    async def close(self) -> None:
        """Release the store connection."""
        await self.store.close()

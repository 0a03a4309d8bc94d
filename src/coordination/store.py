"""Store contract - the key-value operations the registry is built on."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from .errors import StoreError

logger = structlog.get_logger()


class EventType(str, Enum):
    """Kind of change observed on a watched key."""
    SET = "set"
    REMOVED = "removed"


@dataclass(frozen=True)
class ChangeEvent:
    """A single change to a watched key."""
    type: EventType
    value: bytes | None = None

    @classmethod
    def set(cls, value: bytes) -> "ChangeEvent":
        return cls(type=EventType.SET, value=value)

    @classmethod
    def removed(cls) -> "ChangeEvent":
        return cls(type=EventType.REMOVED)


class WatchStream:
    """Ordered, non-replayable stream of changes for one physical key.

    Iterate with ``async for``. The stream ends when the cancel token is set
    or ``aclose()`` is called, and raises ``StoreError`` when the store
    connection is lost. The store-side subscription is released exactly once
    whichever way the stream ends.
    """

    def __init__(
        self,
        key: str,
        next_event: Callable[[], Awaitable[ChangeEvent | None]],
        release: Callable[[], Awaitable[None]],
        cancel: asyncio.Event | None = None,
    ):
        self.key = key
        self.cancel = cancel
        self._next_event = next_event
        self._release = release
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "WatchStream":
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._closed or self.cancelled:
            await self.aclose()
            raise StopAsyncIteration

        try:
            event = await self._next_event()
        except StoreError:
            await self.aclose()
            raise

        if event is None:
            await self.aclose()
            raise StopAsyncIteration
        return event

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    async def aclose(self) -> None:
        """Tear down the subscription."""
        if self._closed:
            return
        self._closed = True
        await self._release()
        logger.debug("Watch closed", key=self.key)

    async def __aenter__(self) -> "WatchStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class KeyValueStore(ABC):
    """Linearizable key-value store used by the registry.

    Implementations translate their transport failures into ``StoreError``
    and fail fast with ``StoreError`` once closed.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Value stored under key, or None if absent."""
        ...

    @abstractmethod
    async def put(self, key: str, value: bytes | str) -> None:
        """Store value under key, overwriting."""
        ...

    @abstractmethod
    async def create(self, key: str, value: bytes | str) -> bool:
        """Store value only if key is absent. Returns False if it exists."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> int:
        """Delete key. Returns the number of keys removed."""
        ...

    @abstractmethod
    async def get_prefix(self, prefix: str) -> list[tuple[str, bytes]]:
        """All (key, value) pairs whose key starts with prefix, key-ordered."""
        ...

    @abstractmethod
    async def watch(
        self,
        key: str,
        cancel: asyncio.Event | None = None,
    ) -> WatchStream:
        """Subscribe to future changes of key."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Safe to call more than once."""
        ...


def to_bytes(value: bytes | str) -> bytes:
    return value.encode() if isinstance(value, str) else value

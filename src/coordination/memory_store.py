"""In-memory store - same contract as Redis, for tests and local runs."""

import asyncio
from collections import defaultdict

import structlog

from .errors import StoreError
from .store import ChangeEvent, KeyValueStore, WatchStream, to_bytes

logger = structlog.get_logger()

# Queued to watchers when the connection goes away
_DISCONNECTED = object()


class InMemoryStore(KeyValueStore):
    """Process-local store with per-key change queues."""

    def __init__(self):
        self._data: dict[str, bytes] = {}
        self._watchers: dict[str, list[asyncio.Queue]] = defaultdict(list)
        self._closed = False

    def _check_open(self, operation: str, key: str) -> None:
        if self._closed:
            raise StoreError(
                "store connection is closed",
                operation=operation,
                key=key,
            )

    def _notify(self, key: str, event: ChangeEvent) -> None:
        for queue in self._watchers.get(key, []):
            queue.put_nowait(event)

    async def get(self, key: str) -> bytes | None:
        self._check_open("get", key)
        return self._data.get(key)

    async def put(self, key: str, value: bytes | str) -> None:
        self._check_open("put", key)
        data = to_bytes(value)
        self._data[key] = data
        self._notify(key, ChangeEvent.set(data))

    async def create(self, key: str, value: bytes | str) -> bool:
        self._check_open("create", key)
        if key in self._data:
            return False
        data = to_bytes(value)
        self._data[key] = data
        self._notify(key, ChangeEvent.set(data))
        return True

    async def delete(self, key: str) -> int:
        self._check_open("delete", key)
        if self._data.pop(key, None) is None:
            return 0
        self._notify(key, ChangeEvent.removed())
        return 1

    async def get_prefix(self, prefix: str) -> list[tuple[str, bytes]]:
        self._check_open("get_prefix", prefix)
        return sorted(
            (key, value)
            for key, value in self._data.items()
            if key.startswith(prefix)
        )

    async def watch(
        self,
        key: str,
        cancel: asyncio.Event | None = None,
    ) -> WatchStream:
        self._check_open("watch", key)
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers[key].append(queue)

        async def next_event() -> ChangeEvent | None:
            item = await _next_or_cancel(queue, cancel)
            if item is _DISCONNECTED:
                raise StoreError(
                    "store connection lost",
                    operation="watch",
                    key=key,
                )
            return item

        async def release() -> None:
            watchers = self._watchers.get(key, [])
            if queue in watchers:
                watchers.remove(queue)
            if not watchers:
                self._watchers.pop(key, None)

        return WatchStream(key, next_event, release, cancel=cancel)

    def disconnect(self) -> None:
        """Drop every active watch as if the connection were lost."""
        for queues in self._watchers.values():
            for queue in queues:
                queue.put_nowait(_DISCONNECTED)

    @property
    def watcher_count(self) -> int:
        return sum(len(queues) for queues in self._watchers.values())

    async def close(self) -> None:
        if self._closed:
            return
        self.disconnect()
        self._closed = True
        logger.info("In-memory store closed")


async def _next_or_cancel(queue: asyncio.Queue, cancel: asyncio.Event | None):
    """Next queued item, or None once cancel is set."""
    if cancel is None:
        return await queue.get()
    if cancel.is_set():
        return None

    getter = asyncio.ensure_future(queue.get())
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {getter, waiter},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (getter, waiter):
            if not task.done():
                task.cancel()

    if getter in done:
        return getter.result()
    return None

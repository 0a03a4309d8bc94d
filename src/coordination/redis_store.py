"""Redis store adapter - registry storage and change-log watches.

Every write goes through a Lua script that updates the key and appends the
change to a per-key Redis stream in one step, so a watch can replay each
written value in order. Keyspace notifications wake watches early and report
expiry and eviction, which bypass the scripts.
"""

import asyncio
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from .errors import StoreConnectionError, StoreError
from .store import ChangeEvent, EventType, KeyValueStore, WatchStream, to_bytes

logger = structlog.get_logger()

CHANGE_LOG_PREFIX = "/changes"

# Keyspace notifications for removals no script records
EXPIRY_EVENTS = {"expired", "evicted"}

PUT_SCRIPT = """
redis.call('SET', KEYS[1], ARGV[1])
redis.call('XADD', KEYS[2], 'MAXLEN', '~', ARGV[2], '*', 'type', 'set', 'value', ARGV[1])
return 1
"""

CREATE_SCRIPT = """
if not redis.call('SET', KEYS[1], ARGV[1], 'NX') then
    return 0
end
redis.call('XADD', KEYS[2], 'MAXLEN', '~', ARGV[2], '*', 'type', 'set', 'value', ARGV[1])
return 1
"""

DELETE_SCRIPT = """
local removed = redis.call('DEL', KEYS[1])
if removed > 0 then
    redis.call('XADD', KEYS[2], 'MAXLEN', '~', ARGV[1], '*', 'type', 'removed')
end
return removed
"""

# Characters with meaning in a SCAN MATCH pattern
_GLOB_SPECIAL = set("*?[]\\")


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def escape_pattern(prefix: str) -> str:
    """Escape a literal prefix for use in a SCAN MATCH pattern."""
    return "".join(f"\\{c}" if c in _GLOB_SPECIAL else c for c in prefix)


def normalize_endpoint(endpoint: str) -> str:
    """Accept bare host:port as well as redis:// URLs."""
    if "://" in endpoint:
        return endpoint
    return f"redis://{endpoint}"


def change_log_key(key: str) -> str:
    """Stream holding the change history of key."""
    return f"{CHANGE_LOG_PREFIX}{key}"


def parse_change(fields: dict) -> ChangeEvent:
    """Change event from one change-log entry."""
    fields = {_decode(name): value for name, value in fields.items()}
    if _decode(fields["type"]) == EventType.REMOVED.value:
        return ChangeEvent.removed()
    return ChangeEvent.set(fields.get("value", b""))


def _stream_entries(response) -> list:
    """Entries of an XREAD reply, in either RESP2 or RESP3 shape."""
    if not response:
        return []
    streams = response.items() if isinstance(response, dict) else response
    entries = []
    for _, stream_entries in streams:
        entries.extend(stream_entries)
    return entries


class RedisStore(KeyValueStore):
    """Key-value store backed by a single Redis connection pool."""

    def __init__(
        self,
        client: redis.Redis,
        poll_interval: float = 0.5,
        change_log_length: int = 1000,
    ):
        self.redis = client
        self.poll_interval = poll_interval
        self.change_log_length = change_log_length
        self.db = client.connection_pool.connection_kwargs.get("db", 0)
        self._closed = False

    @contextmanager
    def _errors(self, operation: str, key: str) -> Iterator[None]:
        """Translate client failures into StoreError."""
        if self._closed:
            raise StoreError(
                "store connection is closed",
                operation=operation,
                key=key,
            )
        try:
            yield
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StoreError(
                f"{operation} {key!r} failed: {str(e) or type(e).__name__}",
                operation=operation,
                key=key,
            ) from e

    async def get(self, key: str) -> bytes | None:
        with self._errors("get", key):
            return await self.redis.get(key)

    async def put(self, key: str, value: bytes | str) -> None:
        with self._errors("put", key):
            await self.redis.eval(
                PUT_SCRIPT,
                2,
                key,
                change_log_key(key),
                to_bytes(value),
                self.change_log_length,
            )

    async def create(self, key: str, value: bytes | str) -> bool:
        with self._errors("create", key):
            created = await self.redis.eval(
                CREATE_SCRIPT,
                2,
                key,
                change_log_key(key),
                to_bytes(value),
                self.change_log_length,
            )
        return bool(created)

    async def delete(self, key: str) -> int:
        with self._errors("delete", key):
            return await self.redis.eval(
                DELETE_SCRIPT,
                2,
                key,
                change_log_key(key),
                self.change_log_length,
            )

    async def get_prefix(self, prefix: str) -> list[tuple[str, bytes]]:
        with self._errors("get_prefix", prefix):
            keys = sorted({
                _decode(key)
                async for key in self.redis.scan_iter(
                    match=f"{escape_pattern(prefix)}*"
                )
            })
            if not keys:
                return []
            values = await self.redis.mget(keys)

        # Keys deleted between SCAN and MGET come back as None
        return [
            (key, value)
            for key, value in zip(keys, values)
            if value is not None
        ]

    def _channel(self, key: str) -> str:
        return f"__keyspace@{self.db}__:{key}"

    async def watch(
        self,
        key: str,
        cancel: asyncio.Event | None = None,
    ) -> WatchStream:
        channel = self._channel(key)
        log_key = change_log_key(key)

        with self._errors("watch", key):
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(channel)
                latest = await self.redis.xrevrange(log_key, count=1)
            except BaseException:
                await pubsub.aclose()
                raise

        # Only entries after the current tail are delivered
        cursor = latest[0][0] if latest else b"0-0"
        pending: deque[ChangeEvent] = deque()

        logger.debug("Watching key", key=key, channel=channel, cursor=_decode(cursor))

        async def read_changes() -> None:
            nonlocal cursor
            response = await self.redis.xread({log_key: cursor}, count=100)
            for entry_id, fields in _stream_entries(response):
                cursor = entry_id
                pending.append(parse_change(fields))

        async def next_event() -> ChangeEvent | None:
            while cancel is None or not cancel.is_set():
                if pending:
                    return pending.popleft()

                with self._errors("watch", key):
                    await read_changes()
                    if pending:
                        continue

                    # Any notification on the key ends the wait early
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self.poll_interval,
                    )
                    if message is None or message.get("type") != "message":
                        continue

                    if _decode(message["data"]) in EXPIRY_EVENTS:
                        # Logged writes that landed first come before the removal
                        await read_changes()
                        pending.append(ChangeEvent.removed())
            return None

        async def release() -> None:
            try:
                await pubsub.unsubscribe(channel)
            except (RedisError, OSError) as e:
                logger.warning("Unsubscribe failed", key=key, error=str(e))
            finally:
                await pubsub.aclose()

        return WatchStream(key, next_event, release, cancel=cancel)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.redis.aclose()
        logger.info("Store connection closed")


async def connect_redis(
    endpoints: list[str],
    dial_timeout: float = 5.0,
    request_timeout: float = 5.0,
    poll_interval: float = 0.5,
    keyspace_events: str | None = "K$gxe",
    change_log_length: int = 1000,
) -> RedisStore:
    """Connect to the first reachable endpoint within dial_timeout."""
    if not endpoints:
        raise StoreConnectionError("no store endpoints configured")

    failures: dict[str, str] = {}
    for endpoint in endpoints:
        client = redis.from_url(
            normalize_endpoint(endpoint),
            socket_connect_timeout=dial_timeout,
            socket_timeout=request_timeout,
        )
        try:
            await asyncio.wait_for(client.ping(), timeout=dial_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            failures[endpoint] = str(e) or type(e).__name__
            logger.warning(
                "Store endpoint unreachable",
                endpoint=endpoint,
                error=failures[endpoint],
            )
            await client.aclose()
            continue

        if keyspace_events:
            try:
                await client.config_set("notify-keyspace-events", keyspace_events)
            except RedisError as e:
                logger.warning(
                    "Could not enable keyspace notifications",
                    endpoint=endpoint,
                    error=str(e),
                )

        logger.info("Connected to store", endpoint=endpoint)
        return RedisStore(
            client,
            poll_interval=poll_interval,
            change_log_length=change_log_length,
        )

    raise StoreConnectionError(
        f"could not connect to any store endpoint: {failures}",
        operation="connect",
    )

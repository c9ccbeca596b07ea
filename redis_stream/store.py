"""Store interface used by the consumer, and its redis-py implementation.

Replies are returned raw (as redis-py parses them); redis_stream.codec turns
them into entries.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import redis

from redis_stream.codec import StreamId
from redis_stream.errors import GroupSetupError, TransportError

logger = logging.getLogger("redis_stream.store")


class StreamStore(ABC):
    """Minimal request/response operations the consumer needs from the store."""

    @abstractmethod
    def read(self, stream: str, after: str, block_ms: int, count: int) -> Any:
        """XREAD entries with id > after ("$" = only new). Empty reply on timeout."""

    @abstractmethod
    def group_read(
        self, stream: str, group: str, consumer: str, position: str, block_ms: int, count: int
    ) -> Any:
        """XREADGROUP: ">" for unseen entries, an id to replay this consumer's pending entries after it."""

    @abstractmethod
    def group_ack(self, stream: str, group: str, entry_id: str) -> int:
        """XACK one id. Returns how many ids were removed from the pending list."""

    @abstractmethod
    def group_pending(
        self, stream: str, group: str, consumer: str, min_idle_ms: int, count: int
    ) -> Any:
        """XPENDING range for one consumer, entries idle for at least min_idle_ms."""

    @abstractmethod
    def group_create(self, stream: str, group: str, start_id: str, mkstream: bool) -> bool:
        """XGROUP CREATE. True if created, False if the group already existed."""

    @abstractmethod
    def last_id(self, stream: str) -> StreamId | None:
        """Last generated id of the stream, None if the stream does not exist."""

    @abstractmethod
    def add(self, stream: str, fields: Mapping[str, Any], maxlen: int | None = None) -> str:
        """XADD with an auto-generated id. Returns the new id."""


@contextmanager
def _transport(command: str) -> Iterator[None]:
    try:
        yield
    except (redis.ConnectionError, redis.TimeoutError) as e:
        raise TransportError(f"{command} failed: {e}") from e
    except redis.ResponseError as e:
        if str(e).startswith("NOGROUP"):
            raise GroupSetupError(f"{command} failed: {e}") from e
        raise TransportError(f"{command} failed: {e}") from e
    except redis.RedisError as e:
        raise TransportError(f"{command} failed: {e}") from e


class RedisStreamStore(StreamStore):
    """StreamStore over a redis.Redis connection owned by a single consumer.

    The connection's socket_timeout (if any) must be longer than the consumer's
    block_ms, otherwise blocking reads surface as TransportError.
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    def read(self, stream: str, after: str, block_ms: int, count: int) -> Any:
        with _transport(f"XREAD {stream} {after}"):
            return self.client.xread({stream: after}, count=count, block=block_ms)

    def group_read(
        self, stream: str, group: str, consumer: str, position: str, block_ms: int, count: int
    ) -> Any:
        with _transport(f"XREADGROUP {group} {consumer} {stream} {position}"):
            return self.client.xreadgroup(
                group, consumer, {stream: position}, count=count, block=block_ms
            )

    def group_ack(self, stream: str, group: str, entry_id: str) -> int:
        with _transport(f"XACK {stream} {group} {entry_id}"):
            return int(self.client.xack(stream, group, entry_id))

    def group_pending(
        self, stream: str, group: str, consumer: str, min_idle_ms: int, count: int
    ) -> Any:
        with _transport(f"XPENDING {stream} {group} {consumer}"):
            return self.client.xpending_range(
                stream, group, min="-", max="+", count=count, consumername=consumer, idle=min_idle_ms
            )

    def group_create(self, stream: str, group: str, start_id: str, mkstream: bool) -> bool:
        command = f"XGROUP CREATE {stream} {group} {start_id}{' MKSTREAM' if mkstream else ''}"
        try:
            self.client.xgroup_create(stream, group, id=start_id, mkstream=mkstream)
        except redis.ResponseError as e:
            # BUSYGROUP: the group already exists, which is fine
            if "BUSYGROUP" in str(e):
                return False
            raise GroupSetupError(f"{command} failed: {e}") from e
        except redis.RedisError as e:
            raise GroupSetupError(f"{command} failed: {e}") from e
        logger.info("created group=%s stream=%s start=%s", group, stream, start_id)
        return True

    def last_id(self, stream: str) -> StreamId | None:
        try:
            info = self.client.xinfo_stream(stream)
        except redis.ResponseError as e:
            if "no such key" in str(e).lower():
                return None
            raise TransportError(f"XINFO STREAM {stream} failed: {e}") from e
        except redis.RedisError as e:
            raise TransportError(f"XINFO STREAM {stream} failed: {e}") from e
        raw = info.get("last-generated-id", info.get(b"last-generated-id"))
        return StreamId.parse(raw) if raw is not None else None

    def add(self, stream: str, fields: Mapping[str, Any], maxlen: int | None = None) -> str:
        with _transport(f"XADD {stream}"):
            entry_id = self.client.xadd(stream, dict(fields), maxlen=maxlen)
        return entry_id.decode("ascii") if isinstance(entry_id, bytes) else entry_id


def connect(url: str | None = None, **kwargs: Any) -> redis.Redis:
    """Open a dedicated connection for one consumer. Payloads stay bytes."""
    if url is None:
        from redis_stream.settings import settings

        url = settings.REDIS_URL
    return redis.from_url(url, decode_responses=False, **kwargs)

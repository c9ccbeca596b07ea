"""Append entries to a stream."""

import logging
from collections.abc import Mapping
from typing import Any

from redis_stream.codec import encode_fields
from redis_stream.store import RedisStreamStore, StreamStore

logger = logging.getLogger("redis_stream.producer")


def produce(conn: Any, stream: str, fields: Mapping[str, Any], *, maxlen: int | None = None) -> str:
    """XADD fields to stream and return the new entry id.

    conn is a redis.Redis or a StreamStore. Non-scalar values are stored as JSON.
    maxlen caps the stream length (approximate trimming).
    """
    store = conn if isinstance(conn, StreamStore) else RedisStreamStore(conn)
    entry_id = store.add(stream, encode_fields(fields), maxlen=maxlen)
    logger.debug("produced stream=%s id=%s", stream, entry_id)
    return entry_id

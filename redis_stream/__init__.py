"""Consume Redis streams, as a plain reader or as a member of a consumer group."""

from .codec import Entry, PendingEntry, StreamId, compare, decode, decode_pending, encode, id_of
from .consumer import Consumer, ConsumerState
from .errors import (
    AckError,
    ConfigError,
    DecodeError,
    GroupSetupError,
    HandlerError,
    StreamConsumerError,
    TransportError,
)
from .logging_config import configure_logging
from .options import END_OF_STREAM, START_OF_STREAM, ConsumerOpts
from .producer import produce
from .store import RedisStreamStore, StreamStore, connect

__all__ = [
    "AckError",
    "ConfigError",
    "Consumer",
    "ConsumerOpts",
    "ConsumerState",
    "DecodeError",
    "END_OF_STREAM",
    "Entry",
    "GroupSetupError",
    "HandlerError",
    "PendingEntry",
    "RedisStreamStore",
    "START_OF_STREAM",
    "StreamConsumerError",
    "StreamId",
    "StreamStore",
    "TransportError",
    "compare",
    "configure_logging",
    "connect",
    "decode",
    "decode_pending",
    "encode",
    "id_of",
    "produce",
]

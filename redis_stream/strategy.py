"""Choose the next read: XREAD after the cursor, or XREADGROUP for unseen or pending entries."""

from dataclasses import dataclass

from redis_stream.options import END_OF_STREAM, UNSEEN, ConsumerOpts
from redis_stream.tracker import Cursor, GroupCursor, LastSeenId


@dataclass(frozen=True)
class ReadRequest:
    stream: str
    position: str
    block_ms: int
    count: int
    group: str | None = None
    consumer: str | None = None

    @property
    def is_group(self) -> bool:
        return self.group is not None

    @property
    def is_pending_replay(self) -> bool:
        """Group read of already delivered entries; Redis answers these without blocking."""
        return self.is_group and self.position != UNSEEN


def next_request(stream: str, cursor: Cursor, opts: ConsumerOpts) -> ReadRequest:
    if isinstance(cursor, LastSeenId):
        position = END_OF_STREAM if cursor.id is None else str(cursor.id)
        return ReadRequest(stream, position, opts.block_ms, opts.batch_size)
    if isinstance(cursor, GroupCursor):
        if not opts.is_group:
            raise ValueError("group cursor used without group options")
        position = UNSEEN if cursor.replay_after is None else str(cursor.replay_after)
        return ReadRequest(
            stream,
            position,
            opts.block_ms,
            opts.batch_size,
            group=opts.group_name,
            consumer=opts.consumer_name,
        )
    raise TypeError(f"unknown cursor {cursor!r}")

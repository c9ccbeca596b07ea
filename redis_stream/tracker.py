"""Delivery progress: the local last-seen id of a plain reader, or the group's store-side cursor.

Both cursor kinds expose commit() so the consumer records a handled entry the
same way in either mode (advance the id, or XACK it).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from redis_stream import metrics
from redis_stream.codec import ZERO_ID, Entry, PendingEntry, StreamId, decode_pending
from redis_stream.errors import AckError, TransportError
from redis_stream.store import StreamStore

logger = logging.getLogger("redis_stream.tracker")

RECLAIM_BATCH = 100


class Cursor(ABC):
    @abstractmethod
    def commit(self, tracker: "DeliveryTracker", entry: Entry) -> "Cursor":
        """Record a successfully handled entry, returning the new cursor."""

    @abstractmethod
    def after_failure(self, entry_id: StreamId) -> "Cursor":
        """Cursor from which the failed entry will be read again."""


@dataclass(frozen=True)
class LastSeenId(Cursor):
    # None: only entries added from now on ("$"), not pinned to an id yet
    id: StreamId | None = None

    def commit(self, tracker: "DeliveryTracker", entry: Entry) -> "LastSeenId":
        return tracker.advance(self, entry)

    def after_failure(self, entry_id: StreamId) -> "LastSeenId":
        # nothing was advanced past the failed entry
        return self


@dataclass(frozen=True)
class GroupCursor(Cursor):
    group: str
    consumer: str
    # None: unseen entries (">"); otherwise replay own pending entries with id > replay_after
    replay_after: StreamId | None = None

    @property
    def replaying(self) -> bool:
        return self.replay_after is not None

    def commit(self, tracker: "DeliveryTracker", entry: Entry) -> "GroupCursor":
        tracker.acknowledge(self.group, self.consumer, entry.id)
        if self.replaying:
            return self.replay_from(entry.id)
        return self

    def after_failure(self, entry_id: StreamId) -> "GroupCursor":
        return self.replay_from(entry_id.predecessor())

    def replay_from(self, after: StreamId | None) -> "GroupCursor":
        return GroupCursor(self.group, self.consumer, after)


class DeliveryTracker:
    def __init__(self, store: StreamStore, stream: str) -> None:
        self.store = store
        self.stream = stream

    def advance(self, cursor: LastSeenId, entry: Entry) -> LastSeenId:
        if cursor.id is not None and entry.id <= cursor.id:
            raise ValueError(f"cursor would move backwards: {cursor.id} -> {entry.id}")
        return LastSeenId(entry.id)

    def acknowledge(self, group: str, consumer: str, entry_id: StreamId) -> int:
        """XACK one entry. Returns how many entries left the pending list (0 or 1)."""
        try:
            acked = self.store.group_ack(self.stream, group, str(entry_id))
        except TransportError as e:
            raise AckError(str(entry_id), f"XACK failed stream={self.stream} group={group} id={entry_id}: {e}") from e
        if not acked:
            # already acked, or claimed by another consumer meanwhile
            logger.debug(
                "xack no-op stream=%s group=%s consumer=%s id=%s", self.stream, group, consumer, entry_id
            )
        else:
            metrics.record(self.stream, group, "acked")
        return acked

    def reclaim(self, group: str, consumer: str, claim_min_idle_ms: int) -> list[PendingEntry]:
        """This consumer's own pending entries idle for at least claim_min_idle_ms, oldest first."""
        raw = self.store.group_pending(self.stream, group, consumer, claim_min_idle_ms, RECLAIM_BATCH)
        pending = [
            p
            for p in decode_pending(raw)
            if p.owner_consumer == consumer and p.idle_ms >= claim_min_idle_ms
        ]
        pending.sort(key=lambda p: p.id)
        if pending:
            logger.info(
                "reclaimed stream=%s group=%s consumer=%s count=%s oldest=%s",
                self.stream,
                group,
                consumer,
                len(pending),
                pending[0].id,
            )
        return pending

    def pin_tail(self) -> StreamId:
        """Concrete id for "only new entries", so a timed-out first read leaves no gap."""
        return self.store.last_id(self.stream) or ZERO_ID

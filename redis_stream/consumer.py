"""Stream consumer: poll -> decode -> dispatch -> advance/ack, one batch per step.

Single threaded and synchronous. A step blocks for at most block_ms when the
stream has nothing new, and for as long as the handler runs otherwise. Errors
are raised to the caller; a failed entry is presented again by the next step
(at-least-once), nothing is retried internally.
"""

import enum
import logging
import time
from collections.abc import Callable
from typing import Any

from redis_stream import metrics
from redis_stream.codec import Entry, StreamId, decode
from redis_stream.errors import AckError, ConfigError, GroupSetupError, HandlerError, TransportError
from redis_stream.options import END_OF_STREAM, UNSEEN, ConsumerOpts, positions
from redis_stream.store import RedisStreamStore, StreamStore
from redis_stream.strategy import ReadRequest, next_request
from redis_stream.tracker import Cursor, DeliveryTracker, GroupCursor, LastSeenId

logger = logging.getLogger("redis_stream.consumer")

Handler = Callable[[str, Entry], Any]


class ConsumerState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    ACK_PENDING = "ack_pending"
    ADVANCING = "advancing"
    STOPPED = "stopped"


class Consumer:
    """A plain or group consumer of one stream, dispatching entries to `handler(id, entry)`.

    The handler returns normally when the entry is processed; any exception
    stops the current batch and is raised from step() as HandlerError.
    """

    def __init__(
        self,
        conn: Any,
        stream: str,
        handler: Handler,
        opts: ConsumerOpts | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not stream:
            raise ConfigError("stream name must be non-empty")
        if not callable(handler):
            raise ConfigError("handler must be callable")
        opts = opts if opts is not None else ConsumerOpts()
        if not isinstance(opts, ConsumerOpts):
            raise ConfigError(f"expected ConsumerOpts, got {type(opts).__name__}")

        self.store: StreamStore = conn if isinstance(conn, StreamStore) else RedisStreamStore(conn)
        self.stream = stream
        self.handler = handler
        self.opts = opts
        self.tracker = DeliveryTracker(self.store, stream)
        self.handled_messages = 0
        self.state = ConsumerState.IDLE
        self._clock = clock
        self._stop_requested = False

        group_create_pos, start_pos = positions(opts)
        if opts.is_group:
            self._ensure_group(group_create_pos)
            replay_after = None if start_pos == UNSEEN else StreamId.parse(start_pos)
            self.cursor: Cursor = GroupCursor(opts.group_name, opts.consumer_name, replay_after)
        elif start_pos == END_OF_STREAM:
            self.cursor = LastSeenId(None)
        else:
            self.cursor = LastSeenId(StreamId.parse(start_pos))
        self._next_reclaim_at = self._reclaim_deadline()

        logger.info(
            "consumer initialized stream=%s group=%s consumer=%s start=%s",
            stream,
            opts.group_name,
            opts.consumer_name,
            start_pos,
        )

    def _ensure_group(self, create_pos: str) -> None:
        """Create the stream's consumer group if needed (XGROUP CREATE [MKSTREAM])."""
        try:
            self.store.group_create(
                self.stream, self.opts.group_name, create_pos, self.opts.create_stream_if_not_exists
            )
        except TransportError as e:
            raise GroupSetupError(
                f"could not set up group={self.opts.group_name} stream={self.stream}: {e}"
            ) from e

    # -- public API --------------------------------------------------------

    def stop(self) -> None:
        """Request a cooperative stop, honoured before the next read or the next entry."""
        self._stop_requested = True
        if self.state == ConsumerState.IDLE:
            self.state = ConsumerState.STOPPED

    @property
    def stopped(self) -> bool:
        return self._stop_requested

    def step(self) -> int:
        """Read one batch and dispatch it. Returns the number of entries handled."""
        if self._stop_requested:
            self.state = ConsumerState.STOPPED
            return 0
        try:
            self.state = ConsumerState.POLLING
            self._prepare_cursor()
            request = next_request(self.stream, self.cursor, self.opts)
            entries = self._poll(request)
            if not entries and request.is_pending_replay:
                # own backlog drained, switch to new entries in the same step
                logger.info(
                    "pending drained stream=%s group=%s consumer=%s",
                    self.stream,
                    request.group,
                    request.consumer,
                )
                self.cursor = self.cursor.replay_from(None)
                request = next_request(self.stream, self.cursor, self.opts)
                entries = self._poll(request)
            if not entries:
                metrics.record(self.stream, self.opts.group_name, "empty_polls")
                return 0
            self.state = ConsumerState.DISPATCHING
            return self._dispatch(entries)
        finally:
            self.state = ConsumerState.STOPPED if self._stop_requested else ConsumerState.IDLE

    consume = step

    def run(self, max_steps: int | None = None) -> int:
        """Step until stop() is called (or max_steps). Returns the number of entries handled."""
        handled = 0
        steps = 0
        while not self._stop_requested and (max_steps is None or steps < max_steps):
            handled += self.step()
            steps += 1
        return handled

    # -- internals ---------------------------------------------------------

    def _reclaim_deadline(self) -> float | None:
        if not self.opts.is_group or self.opts.claim_min_idle_ms is None:
            return None
        return self._clock() + self.opts.claim_min_idle_ms / 1000

    def _prepare_cursor(self) -> None:
        cursor = self.cursor
        if isinstance(cursor, LastSeenId) and cursor.id is None:
            self.cursor = LastSeenId(self.tracker.pin_tail())
            return
        if not isinstance(cursor, GroupCursor) or cursor.replaying:
            return
        if self._next_reclaim_at is None or self._clock() < self._next_reclaim_at:
            return
        self._next_reclaim_at = self._reclaim_deadline()
        pending = self.tracker.reclaim(cursor.group, cursor.consumer, self.opts.claim_min_idle_ms)
        if pending:
            metrics.record(self.stream, cursor.group, "reclaimed", len(pending))
            self.cursor = cursor.replay_from(pending[0].id.predecessor())

    def _poll(self, request: ReadRequest) -> list[Entry]:
        if request.is_group:
            raw = self.store.group_read(
                request.stream,
                request.group,
                request.consumer,
                request.position,
                request.block_ms,
                request.count,
            )
        else:
            raw = self.store.read(request.stream, request.position, request.block_ms, request.count)
        return decode(raw, self.stream)

    def _dispatch(self, entries: list[Entry]) -> int:
        handled = 0
        for entry in entries:
            if self._stop_requested:
                logger.info("stop requested, leaving %s entries of the batch", len(entries) - handled)
                break
            self._process_entry(entry)
            handled += 1
        return handled

    def _process_entry(self, entry: Entry) -> None:
        """Call the handler, then advance or XACK. The entry is never committed on failure."""
        group = self.opts.group_name
        entry_id = str(entry.id)
        if entry.deleted:
            logger.warning("entry deleted while pending stream=%s id=%s, acking", self.stream, entry_id)
            metrics.record(self.stream, group, "skipped_deleted")
        else:
            try:
                self.handler(entry_id, entry)
            except Exception as e:
                metrics.record(self.stream, group, "failed")
                self.cursor = self.cursor.after_failure(entry.id)
                logger.warning("handler failed stream=%s id=%s: %s", self.stream, entry_id, e)
                raise HandlerError(entry_id, e) from e
            self.handled_messages += 1
            metrics.record(self.stream, group, "handled")

        self.state = ConsumerState.ACK_PENDING if self.opts.is_group else ConsumerState.ADVANCING
        try:
            self.cursor = self.cursor.commit(self.tracker, entry)
        except AckError:
            metrics.record(self.stream, group, "ack_failed")
            # later entries of this batch are replayed by the next step; this one waits for reclaim
            self.cursor = self.cursor.replay_from(entry.id)
            raise
        self.state = ConsumerState.DISPATCHING

"""
In-memory StreamStore for consumer tests.

Replies mimic redis-py's RESP2 parsing: bytes ids and field names, lists of
(id, {field: value}) tuples per stream, xpending_range dicts.
"""
import pytest

from redis_stream import metrics
from redis_stream.codec import ZERO_ID, StreamId
from redis_stream.errors import GroupSetupError, TransportError
from redis_stream.store import StreamStore


class FakeStore(StreamStore):
    def __init__(self):
        self.now_ms = 0
        self.streams: dict[str, list[tuple[StreamId, dict | None]]] = {}
        self.last_ids: dict[str, StreamId] = {}
        # (stream, group) -> {"last": StreamId, "pel": {StreamId: [consumer, delivered_at_ms, times]}}
        self.groups: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple] = []
        self.failing: set[str] = set()
        # called once when a blocking read finds nothing (simulates a producer)
        self.on_block = None

    # -- helpers for tests --

    def clock(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    def append(self, stream: str, **fields) -> str:
        return self.add(stream, fields)

    def delete_entry(self, stream: str, entry_id: str) -> None:
        sid = StreamId.parse(entry_id)
        self.streams[stream] = [(i, f) for i, f in self.streams[stream] if i != sid]

    def pel(self, stream: str, group: str) -> dict:
        return self.groups[(stream, group)]["pel"]

    def _check(self, op: str, *args) -> None:
        self.calls.append((op, *args))
        if op in self.failing:
            raise TransportError(f"{op} failed: connection reset")

    def _reply(self, stream: str, items: list) -> list:
        if not items:
            return []
        return [[stream.encode(), [(str(i).encode(), f) for i, f in items]]]

    def _maybe_block(self, stream: str, block_ms: int, compute):
        items = compute()
        if not items and self.on_block is not None:
            hook, self.on_block = self.on_block, None
            hook()
            items = compute()
        if not items:
            self.now_ms += block_ms
        return items

    # -- StreamStore --

    def read(self, stream, after, block_ms, count):
        self._check("read", stream, after, block_ms, count)
        if after == "$":
            after_id = self.last_ids.get(stream, ZERO_ID)
        else:
            after_id = StreamId.parse(after)

        def compute():
            return [(i, f) for i, f in self.streams.get(stream, []) if i > after_id][:count]

        return self._reply(stream, self._maybe_block(stream, block_ms, compute))

    def group_read(self, stream, group, consumer, position, block_ms, count):
        self._check("group_read", stream, group, consumer, position, block_ms, count)
        state = self.groups.get((stream, group))
        if state is None:
            raise GroupSetupError(f"NOGROUP No such key '{stream}' or consumer group '{group}'")
        if position == ">":

            def compute():
                return [(i, f) for i, f in self.streams.get(stream, []) if i > state["last"]][:count]

            items = self._maybe_block(stream, block_ms, compute)
            for i, _ in items:
                state["last"] = i
                state["pel"][i] = [consumer, self.now_ms, 1]
            return self._reply(stream, items)

        after = StreamId.parse(position)
        entries = dict(self.streams.get(stream, []))
        items = []
        for i in sorted(state["pel"]):
            owner, _, times = state["pel"][i]
            if owner != consumer or i <= after:
                continue
            state["pel"][i] = [consumer, self.now_ms, times + 1]
            items.append((i, entries.get(i, {})))
            if len(items) == count:
                break
        return self._reply(stream, items)

    def group_ack(self, stream, group, entry_id):
        self._check("group_ack", stream, group, entry_id)
        pel = self.groups[(stream, group)]["pel"]
        return 1 if pel.pop(StreamId.parse(entry_id), None) is not None else 0

    def group_pending(self, stream, group, consumer, min_idle_ms, count):
        self._check("group_pending", stream, group, consumer, min_idle_ms, count)
        state = self.groups.get((stream, group))
        if state is None:
            raise GroupSetupError(f"NOGROUP No such key '{stream}' or consumer group '{group}'")
        out = []
        for i in sorted(state["pel"]):
            owner, delivered_at, times = state["pel"][i]
            idle = self.now_ms - delivered_at
            if owner == consumer and idle >= min_idle_ms:
                out.append(
                    {
                        "message_id": str(i).encode(),
                        "consumer": owner.encode(),
                        "time_since_delivered": idle,
                        "times_delivered": times,
                    }
                )
        return out[:count]

    def group_create(self, stream, group, start_id, mkstream):
        self._check("group_create", stream, group, start_id, mkstream)
        if stream not in self.streams:
            if not mkstream:
                raise GroupSetupError(
                    "ERR The XGROUP subcommand requires the key to exist"
                )
            self.streams[stream] = []
        if (stream, group) in self.groups:
            return False
        if start_id == "$":
            last = self.last_ids.get(stream, ZERO_ID)
        else:
            last = StreamId.parse(start_id)
        self.groups[(stream, group)] = {"last": last, "pel": {}}
        return True

    def last_id(self, stream):
        self._check("last_id", stream)
        if stream not in self.streams:
            return None
        return self.last_ids.get(stream, ZERO_ID)

    def add(self, stream, fields, maxlen=None):
        self._check("add", stream, dict(fields))
        self.now_ms += 1
        entry_id = StreamId(self.now_ms, 0)
        encoded = {
            k.encode(): v if isinstance(v, bytes) else str(v).encode() for k, v in fields.items()
        }
        self.streams.setdefault(stream, []).append((entry_id, encoded))
        self.last_ids[stream] = entry_id
        return str(entry_id)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def recorder():
    """Handler that records (id, entry) and fails on ids listed in .fail_on."""

    class Recorder:
        def __init__(self):
            self.seen = []
            self.fail_on = set()

        def __call__(self, entry_id, entry):
            self.seen.append((entry_id, entry))
            if entry_id in self.fail_on:
                raise RuntimeError(f"cannot process {entry_id}")

        @property
        def ids(self):
            return [i for i, _ in self.seen]

        def values(self, field="key"):
            return [e.text(field) for _, e in self.seen]

    return Recorder()

"""Stream entry codec: Redis replies <-> (StreamId, fields).

Ids are "<ms>-<seq>" strings on the wire. They are compared as integer pairs,
never as strings ("9-0" < "10-0").
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from redis_stream.errors import DecodeError

MAX_SEQ = 2**64 - 1


class StreamId(NamedTuple):
    ms: int
    seq: int = 0

    @classmethod
    def parse(cls, raw: "str | bytes | StreamId") -> "StreamId":
        """Parse "<ms>-<seq>" (or bare "<ms>") into a StreamId."""
        if isinstance(raw, StreamId):
            return raw
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("ascii")
            except UnicodeDecodeError as e:
                raise DecodeError(f"invalid stream id {raw!r}") from e
        if not isinstance(raw, str):
            raise DecodeError(f"invalid stream id {raw!r}")
        ms, sep, seq = raw.partition("-")
        if not ms.isdigit() or (sep and not seq.isdigit()):
            raise DecodeError(f"invalid stream id {raw!r}")
        return cls(int(ms), int(seq) if sep else 0)

    def predecessor(self) -> "StreamId":
        """Greatest id strictly lower than this one (0-0 has none and maps to itself)."""
        if self.seq > 0:
            return StreamId(self.ms, self.seq - 1)
        if self.ms > 0:
            return StreamId(self.ms - 1, MAX_SEQ)
        return self

    def __str__(self) -> str:
        return f"{self.ms}-{self.seq}"


ZERO_ID = StreamId(0, 0)


@dataclass(frozen=True)
class Entry:
    id: StreamId
    fields: Mapping[str, bytes] = field(default_factory=dict)
    # payload was removed from the stream while the id was still pending
    deleted: bool = False

    def text(self, name: str, default: str | None = None) -> str | None:
        """Field value decoded as UTF-8, or default when absent."""
        value = self.fields.get(name)
        return value.decode("utf-8") if value is not None else default


@dataclass(frozen=True)
class PendingEntry:
    id: StreamId
    owner_consumer: str
    idle_ms: int
    times_delivered: int = 1


def id_of(entry: Entry) -> StreamId:
    return entry.id


def compare(a: StreamId, b: StreamId) -> int:
    """-1, 0 or 1 as a is lower than, equal to or greater than b."""
    a, b = StreamId.parse(a), StreamId.parse(b)
    return (a > b) - (a < b)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, str):
        return value
    raise DecodeError(f"expected string, got {type(value).__name__}")


def _value(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value).encode("ascii")
    raise DecodeError(f"unexpected field value type {type(value).__name__}")


def _decode_fields(raw: Any) -> dict[str, bytes]:
    if isinstance(raw, Mapping):
        return {_text(k): _value(v) for k, v in raw.items()}
    if isinstance(raw, (list, tuple)):
        # flat [k1, v1, k2, v2, ...] as sent on the wire
        if len(raw) % 2:
            raise DecodeError("odd number of items in field list")
        return {_text(raw[i]): _value(raw[i + 1]) for i in range(0, len(raw), 2)}
    raise DecodeError(f"unexpected fields shape {type(raw).__name__}")


def _decode_entry(raw: Any) -> Entry:
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise DecodeError(f"malformed stream entry {raw!r}")
    entry_id = StreamId.parse(raw[0])
    # nil payload: deleted after delivery. redis-py hands it over as {}; XADD never stores zero fields
    if not raw[1]:
        return Entry(entry_id, {}, deleted=True)
    return Entry(entry_id, _decode_fields(raw[1]))


def _is_entry_list(value: Any) -> bool:
    # RESP3 wraps each stream's entries in one extra list
    return not (
        isinstance(value, list)
        and len(value) == 1
        and isinstance(value[0], list)
        and (not value[0] or isinstance(value[0][0], (list, tuple)))
    )


def _stream_sections(raw: Any) -> list[tuple[str, Any]]:
    if isinstance(raw, Mapping):
        sections = []
        for name, entries in raw.items():
            if not _is_entry_list(entries):
                entries = entries[0]
            sections.append((_text(name), entries))
        return sections
    if isinstance(raw, (list, tuple)):
        sections = []
        for section in raw:
            if not isinstance(section, (list, tuple)) or len(section) != 2:
                raise DecodeError(f"malformed stream section {section!r}")
            sections.append((_text(section[0]), section[1]))
        return sections
    raise DecodeError(f"unexpected reply type {type(raw).__name__}")


def decode(raw: Any, stream: str | None = None) -> list[Entry]:
    """Decode an XREAD/XREADGROUP reply into entries in strictly increasing id order.

    A None or empty reply is an empty batch (the blocking read timed out).
    """
    if raw is None:
        return []
    entries: list[Entry] = []
    for name, section in _stream_sections(raw):
        if stream is not None and name != stream:
            raise DecodeError(f"reply for unexpected stream {name!r}")
        if section is None:
            continue
        if not isinstance(section, (list, tuple)):
            raise DecodeError(f"malformed entry list for stream {name!r}")
        for item in section:
            entry = _decode_entry(item)
            if entries and entry.id <= entries[-1].id:
                raise DecodeError(f"ids out of order: {entries[-1].id} then {entry.id}")
            entries.append(entry)
    return entries


def decode_pending(raw: Any) -> list[PendingEntry]:
    """Decode an XPENDING range reply (redis-py dicts or raw 4-item lists)."""
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise DecodeError(f"unexpected pending reply type {type(raw).__name__}")
    pending = []
    for item in raw:
        try:
            if isinstance(item, Mapping):
                pending.append(
                    PendingEntry(
                        id=StreamId.parse(item["message_id"]),
                        owner_consumer=_text(item["consumer"]),
                        idle_ms=int(item["time_since_delivered"]),
                        times_delivered=int(item["times_delivered"]),
                    )
                )
            elif isinstance(item, (list, tuple)) and len(item) == 4:
                pending.append(
                    PendingEntry(StreamId.parse(item[0]), _text(item[1]), int(item[2]), int(item[3]))
                )
            else:
                raise DecodeError(f"malformed pending entry {item!r}")
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"malformed pending entry {item!r}") from e
    return pending


def encode(entry: Entry) -> tuple[str, dict[str, bytes]]:
    """Inverse of decode for a single entry, in the (id, fields) shape redis-py returns."""
    return str(entry.id), dict(entry.fields)


def encode_fields(fields: Mapping[str, Any]) -> dict[str, str | bytes | int | float]:
    """Prepare an XADD payload; values that are not scalars are stored as JSON."""
    if not fields:
        raise ValueError("a stream entry needs at least one field")
    return {
        k: (v if isinstance(v, (str, bytes, int, float)) and not isinstance(v, bool) else json.dumps(v))
        for k, v in fields.items()
    }

"""Prometheus-style metrics: in-memory counters updated by consumers."""
import time
from collections import defaultdict

# (stream, group, outcome) -> count. group is "" for plain readers.
_entry_counts: dict[tuple[str, str, str], int] = defaultdict(int)
_start_time = time.monotonic()

OUTCOMES = {
    "handled": "Entries the handler returned from without raising.",
    "failed": "Entries whose handler raised; the batch stopped there.",
    "acked": "Entries removed from the group's pending list by XACK.",
    "ack_failed": "Handled entries whose XACK did not reach Redis.",
    "empty_polls": "Reads that returned no entries.",
    "reclaimed": "Own pending entries picked up again after going idle.",
    "skipped_deleted": "Pending entries deleted from the stream, acked without the handler.",
}


def record(stream: str, group: str | None, outcome: str, n: int = 1) -> None:
    """Call from the consumer after each outcome."""
    if outcome not in OUTCOMES:
        raise ValueError(f"unknown outcome {outcome!r}")
    _entry_counts[(stream, group or "", outcome)] += n


def get_counts() -> dict[tuple[str, str, str], int]:
    return dict(_entry_counts)


def reset() -> None:
    _entry_counts.clear()


def get_uptime_seconds() -> float:
    return time.monotonic() - _start_time


def format_prometheus() -> str:
    """Render one counter family per outcome seen so far, labelled by stream and group."""
    by_outcome: dict[str, list[tuple[str, str, int]]] = defaultdict(list)
    for (stream, group, outcome), count in get_counts().items():
        by_outcome[outcome].append((stream, group, count))

    lines = []
    for outcome in OUTCOMES:
        series = by_outcome.get(outcome)
        if not series:
            continue
        name = f"redis_stream_{outcome}_total"
        lines.append(f"# HELP {name} {OUTCOMES[outcome]}")
        lines.append(f"# TYPE {name} counter")
        for stream, group, count in sorted(series):
            lines.append(f'{name}{{stream="{stream}",group="{group}"}} {count}')
    lines.append("# TYPE redis_stream_uptime_seconds gauge")
    lines.append(f"redis_stream_uptime_seconds {get_uptime_seconds():.2f}")
    return "\n".join(lines) + "\n"

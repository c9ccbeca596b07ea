"""Error taxonomy for stream consumers. Everything is surfaced to the caller, nothing is retried here."""


class StreamConsumerError(Exception):
    """Base class for every error raised by redis_stream."""


class TransportError(StreamConsumerError):
    """The store connection failed (timeout, disconnect, rejected command)."""


class AckError(TransportError):
    """XACK failed; the entry stays pending in the group."""

    def __init__(self, entry_id: str, message: str | None = None) -> None:
        self.entry_id = entry_id
        super().__init__(message or f"failed to acknowledge id={entry_id}")


class DecodeError(StreamConsumerError):
    """Reply from the store does not have the shape of a stream reply."""


class HandlerError(StreamConsumerError):
    """The registered handler raised while processing an entry."""

    def __init__(self, entry_id: str, reason: BaseException | str) -> None:
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(f"handler failed id={entry_id}: {reason}")


class ConfigError(StreamConsumerError, ValueError):
    """Invalid consumer options."""


class GroupSetupError(StreamConsumerError):
    """Stream or consumer group is missing and could not be created."""

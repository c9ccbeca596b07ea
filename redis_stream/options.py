"""Consumer options: immutable, validated, built with chained calls.

    opts = ConsumerOpts().group("workers", "worker-1").block(5000).count(50)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from redis_stream.codec import StreamId
from redis_stream.errors import ConfigError, DecodeError

DEFAULT_BLOCK_MS = 2_000
DEFAULT_BATCH_SIZE = 10
DEFAULT_CLAIM_IDLE_MS = 30_000

START_OF_STREAM = "0"
END_OF_STREAM = "$"
UNSEEN = ">"


class ConsumerOpts(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_name: str | None = None
    consumer_name: str | None = None
    # 0 blocks until an entry arrives (Redis BLOCK 0)
    block_ms: int = Field(default=DEFAULT_BLOCK_MS, ge=0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    # None disables periodic reclaim of this consumer's idle pending entries
    claim_min_idle_ms: int | None = Field(default=DEFAULT_CLAIM_IDLE_MS, ge=0)
    start_pos: str = END_OF_STREAM
    process_pending: bool = True
    create_stream_if_not_exists: bool = True

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigError(f"invalid consumer options: {e}") from e

    @field_validator("start_pos")
    @classmethod
    def _check_start_pos(cls, v: str) -> str:
        if v in (START_OF_STREAM, END_OF_STREAM):
            return v
        try:
            return str(StreamId.parse(v))
        except DecodeError as e:
            raise ValueError(f"start position must be '0', '$' or a stream id, got {v!r}") from e

    @model_validator(mode="after")
    def _check_group(self) -> "ConsumerOpts":
        if (self.group_name is None) != (self.consumer_name is None):
            raise ValueError("group mode needs both a group name and a consumer name")
        if self.group_name == "" or self.consumer_name == "":
            raise ValueError("group name and consumer name must be non-empty")
        return self

    @classmethod
    def from_settings(cls, settings: Any = None) -> "ConsumerOpts":
        """Defaults taken from environment settings (STREAM_* variables)."""
        if settings is None:
            from redis_stream.settings import settings
        return cls(
            block_ms=settings.STREAM_BLOCK_MS,
            batch_size=settings.STREAM_BATCH_SIZE,
            claim_min_idle_ms=settings.STREAM_CLAIM_IDLE_MS,
            create_stream_if_not_exists=settings.STREAM_CREATE_IF_NOT_EXISTS,
        )

    def _with(self, **changes: Any) -> "ConsumerOpts":
        return type(self)(**{**self.model_dump(), **changes})

    def group(self, name: str, consumer_name: str) -> "ConsumerOpts":
        """Join consumer group `name` as member `consumer_name`."""
        return self._with(group_name=name, consumer_name=consumer_name)

    def block(self, ms: int) -> "ConsumerOpts":
        return self._with(block_ms=ms)

    def count(self, n: int) -> "ConsumerOpts":
        return self._with(batch_size=n)

    def claim_idle(self, ms: int | None) -> "ConsumerOpts":
        return self._with(claim_min_idle_ms=ms)

    def start_at(self, position: str) -> "ConsumerOpts":
        return self._with(start_pos=position)

    def pending(self, process_pending: bool) -> "ConsumerOpts":
        return self._with(process_pending=process_pending)

    def create_stream(self, create: bool) -> "ConsumerOpts":
        return self._with(create_stream_if_not_exists=create)

    @property
    def is_group(self) -> bool:
        return self.group_name is not None


def positions(opts: ConsumerOpts) -> tuple[str | None, str]:
    """Return (group_create_pos, consumer_start_pos).

    group_create_pos is the XGROUP CREATE id ("0", "$" or an id) and is None
    for a plain reader. consumer_start_pos is:
      - group consumer: "0" to replay its pending entries first, ">" for new
        entries, or an id to replay pending entries after it
      - plain reader: "0" for the beginning, "$" for the end, or an id
    """
    start = opts.start_pos
    if not opts.is_group:
        return None, start
    if opts.process_pending:
        return start, START_OF_STREAM
    if start in (START_OF_STREAM, END_OF_STREAM):
        return start, UNSEEN
    return start, start

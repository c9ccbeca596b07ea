from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_parse_none_str="none")

    REDIS_URL: str = "redis://localhost:6379/0"

    # Consumer defaults (ConsumerOpts.from_settings)
    STREAM_BLOCK_MS: int = 2000  # 0 = block until an entry arrives
    STREAM_BATCH_SIZE: int = 10
    STREAM_CLAIM_IDLE_MS: int | None = 30_000  # "none" disables reclaim of own idle entries
    STREAM_CREATE_IF_NOT_EXISTS: bool = True  # MKSTREAM when creating the consumer group

    # Logging
    LOG_LEVEL: str = "INFO"


settings = Settings()

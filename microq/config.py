"""
Configuration for microq.

DispatcherOptions is what the Dispatcher runs with; it can be built in
code or from the environment through MicroqSettings (pydantic-settings,
MICROQ_ prefix, optional .env file).

    MICROQ_POLL_INTERVAL_SECONDS=1
    MICROQ_PARALLEL=false
    MICROQ_STORE_PATH=/var/lib/microq/jobs.json
"""

from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, PositiveInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_INTERVAL = timedelta(seconds=5)
DEFAULT_MAX_CONCURRENCY = 10


class DispatcherOptions(BaseModel):
    """
    interval        — wait between polls when the queue is empty
    recover         — requeue DEQUEUED jobs once before the first poll
    parallel        — run handlers concurrently (True) or one at a time
    max_concurrency — cap on concurrent handlers in parallel mode; None = unbounded
    """

    model_config = ConfigDict(frozen=True)

    interval: timedelta = DEFAULT_INTERVAL
    recover: bool = True
    parallel: bool = True
    max_concurrency: PositiveInt | None = DEFAULT_MAX_CONCURRENCY

    @field_validator("interval")
    @classmethod
    def _positive_interval(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("interval must be positive")
        return v

    def with_overrides(self, **overrides: Any) -> "DispatcherOptions":
        """Return new options with every non-None override applied (validated)."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return type(self).model_validate({**self.model_dump(), **updates})


class MicroqSettings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="MICROQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Dispatcher
    poll_interval_seconds: float = DEFAULT_INTERVAL.total_seconds()
    recover_on_start: bool = True
    parallel: bool = True
    max_concurrency: PositiveInt | None = DEFAULT_MAX_CONCURRENCY

    # Stores
    store_path: Path = Path("microq-jobs.json")
    mongo_url: str | None = None
    mongo_database: str = "microq"
    mongo_collection: str = "jobs"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # json or console

    def dispatcher_options(self) -> DispatcherOptions:
        return DispatcherOptions(
            interval=timedelta(seconds=self.poll_interval_seconds),
            recover=self.recover_on_start,
            parallel=self.parallel,
            max_concurrency=self.max_concurrency,
        )

    def build_store(self) -> Any:
        """MongoJobStore when mongo_url is set, else LocalFileSystemJobStore."""
        if self.mongo_url:
            from microq.adapters.store.mongo import MongoJobStore

            return MongoJobStore(
                url=self.mongo_url,
                database=self.mongo_database,
                collection=self.mongo_collection,
            )
        from microq.adapters.store.filesystem import LocalFileSystemJobStore

        return LocalFileSystemJobStore(self.store_path)


@lru_cache
def get_settings() -> MicroqSettings:
    """Cached settings instance."""
    return MicroqSettings()

"""Configuration management."""

import json
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    """Application settings from environment."""

    # Store
    store_endpoints: Annotated[list[str], NoDecode] = ["redis://localhost:6379/0"]
    dial_timeout_seconds: float = 5.0
    request_timeout_seconds: float = 5.0

    # Watches
    watch_poll_interval_seconds: float = 0.5
    keyspace_events: str | None = "K$gxe"  # notify-keyspace-events, None to leave as is
    change_log_length: int = 1000  # approximate cap on each key's change stream

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("store_endpoints", mode="before")
    @classmethod
    def split_endpoints(cls, value: Any) -> Any:
        """Accept a JSON list or a comma-separated string."""
        if not isinstance(value, str):
            return value
        value = value.strip()
        if value.startswith("["):
            return json.loads(value)
        return [endpoint.strip() for endpoint in value.split(",") if endpoint.strip()]

"""Environment driven settings for the distributor."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .classifier import DEFAULT_MARKER
from .fanout import DEFAULT_TOPIC


class LinkdropSettings(BaseSettings):
    """Runtime settings read from ``LINKDROP_*`` variables or ``.env``."""

    model_config = SettingsConfigDict(env_prefix="LINKDROP_", env_file=".env", extra="ignore")

    bot_user_id: str = Field(..., min_length=1)
    marker: str = Field(DEFAULT_MARKER, min_length=1)
    ledger_url: str = "jsonl://./links.jsonl"
    api_base_url: str = "https://api.twitter.com/1.1"
    api_bearer_token: str = ""
    consumer_secret: str = ""
    delivery_timeout: float = Field(10.0, gt=0)
    compensate_direct_messages: bool = False
    redis_url: Optional[str] = None
    fanout_topic: str = DEFAULT_TOPIC
    log_level: str = "INFO"

    @field_validator("marker")
    @classmethod
    def _strip_hash(cls, value: str) -> str:
        value = value.strip().lstrip("#")
        if not value:
            raise ValueError("marker must not be empty")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


@lru_cache(maxsize=1)
def get_settings() -> LinkdropSettings:
    return LinkdropSettings()


__all__ = ["LinkdropSettings", "get_settings"]

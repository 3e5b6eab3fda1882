from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    default_horizon_days: int = Field(default=90, ge=1)
    default_buffer_minutes: int = Field(default=5, ge=0)
    default_flexibility_factor: float = Field(default=0.7, ge=0.1, le=1.0)
    default_mode: Literal["strict", "flexible"] = Field(default="flexible")
    default_skip_to_next_day: bool = Field(default=False)

    reschedule_search_days: int = Field(default=14, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SESSIONPLAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()

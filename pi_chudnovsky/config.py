"""
Engine configuration.

Tunables come from defaults, a `.env` file or `PI_CHUDNOVSKY_*` environment
variables; the CLI layers its flags on top. The engine itself only ever
sees the EngineConfig instance it was constructed with.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_workers() -> int:
    return os.cpu_count() or 1


class EngineConfig(BaseSettings):
    """Runtime configuration for one PiEngine."""

    model_config = SettingsConfigDict(
        env_prefix="PI_CHUDNOVSKY_", env_file=".env", extra="ignore"
    )

    # Scheduling
    workers: int = Field(default_factory=_default_workers, ge=1)
    leaf_terms: int = Field(32, ge=1)
    in_flight_factor: int = Field(2, ge=1)

    # Precision policy
    guard_terms: int = Field(5, ge=0)
    guard_digits: int = Field(10, ge=0)
    sqrt_margin: int = Field(10, ge=1)
    max_digits: int = Field(1_000_000_000, ge=1)

    # Arena
    karatsuba_threshold: int = Field(32, ge=2)
    newton_threshold: int = Field(64, ge=2)
    max_limbs: int = Field(1 << 26, ge=1)

    # Checkpoints
    checkpoint_interval_seconds: float = Field(30.0, gt=0)
    checkpoint_every_merges: Optional[int] = Field(None, ge=1)

    # Output
    digit_group_size: int = Field(1000, ge=1)

    # Observability
    log_level: str = "INFO"
    log_format: str = "text"

    @field_validator("log_format")
    @classmethod
    def check_log_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return v

    @property
    def max_in_flight(self) -> int:
        return self.workers * self.in_flight_factor


@lru_cache
def get_settings() -> EngineConfig:
    return EngineConfig()

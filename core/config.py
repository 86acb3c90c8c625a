"""
Pydantic-based configuration for the scanner.

Every knob is exposed via environment variables (or a local .env) so the
CLI and the API share the same defaults without extra wiring.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False, env_file=".env")

    # Scan defaults (overridable per request)
    scan_concurrency: int = Field(500, description="worker count / max in-flight dials")
    scan_timeout_ms: int = Field(300, description="base and maximum dial timeout")
    scan_retries: int = Field(1, description="extra attempts after a timed out dial")
    scan_adaptive: bool = Field(True, description="derive the dial timeout from measured RTT")
    fallback_concurrency: int = Field(100, description="used when a non-positive concurrency is requested")

    # Banner grab
    banner_timeout_ms: int = 200
    banner_max_bytes: int = 256

    # RTT sampling for adaptive timeouts
    rtt_probe_ports: List[int] = Field(default_factory=lambda: [22, 80, 443, 53, 25])
    rtt_probe_timeout_ms: int = 500
    rtt_min_median_ms: int = 50
    rtt_min_timeout_ms: int = 150
    rtt_multiplier: float = 3.0

    # Port and outcome queue capacity
    queue_capacity: int = 1000

    log_level: str = "INFO"

    @field_validator("queue_capacity", "banner_max_bytes", "fallback_concurrency")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError("log_level must be a standard logging level name")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

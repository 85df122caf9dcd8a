# courier/config.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    log_json: bool | None = None  # None = JSON only in prod

    # Dispatch engine (fixed for the lifetime of an engine instance)
    dispatch_max_retries: int = Field(default=5, ge=1)
    dispatch_retry_delay_ms: int = Field(default=1000, ge=0)  # doubles on each retry
    dispatch_rate_limit_ms: int = Field(default=2000, ge=0)  # min spacing between sends

    # Circuit breaker
    breaker_failure_threshold: int = Field(default=3, ge=1)
    breaker_reset_timeout_ms: int = Field(default=10000, ge=0)

    # Providers (simulated transport)
    primary_provider_name: str = "primary"
    fallback_provider_name: str = "fallback"
    primary_success_rate: float = Field(default=0.7, ge=0.0, le=1.0)
    fallback_success_rate: float = Field(default=0.7, ge=0.0, le=1.0)

    # Outcome log
    outcome_log_limit: int = Field(default=0, ge=0)  # 0 = keep everything

    # HTTP
    http_wait_timeout_seconds: float = 120.0  # POST /messages wait ceiling
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def use_json_logs(self) -> bool:
        if self.log_json is None:
            return self.is_production
        return self.log_json


@dataclass(frozen=True)
class DispatchConfig:
    """Dispatch constants, snapshotted once when an engine is built."""
    max_retries: int = 5
    retry_delay_ms: int = 1000
    rate_limit_ms: int = 2000
    failure_threshold: int = 3
    reset_timeout_ms: int = 10000

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        for name in ("retry_delay_ms", "rate_limit_ms", "reset_timeout_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    @classmethod
    def from_settings(cls, s: Settings) -> "DispatchConfig":
        return cls(
            max_retries=s.dispatch_max_retries,
            retry_delay_ms=s.dispatch_retry_delay_ms,
            rate_limit_ms=s.dispatch_rate_limit_ms,
            failure_threshold=s.breaker_failure_threshold,
            reset_timeout_ms=s.breaker_reset_timeout_ms,
        )

    def backoff_ms(self, attempt: int) -> int:
        """Delay after a failed ``attempt`` (1-based): base * 2^(attempt-1)."""
        return self.retry_delay_ms * (2 ** (attempt - 1))

    def scaled(self, factor: float) -> "DispatchConfig":
        """Copy with every delay multiplied by ``factor`` (demos, smoke runs)."""
        return DispatchConfig(
            max_retries=self.max_retries,
            retry_delay_ms=int(round(self.retry_delay_ms * factor)),
            rate_limit_ms=int(round(self.rate_limit_ms * factor)),
            failure_threshold=self.failure_threshold,
            reset_timeout_ms=int(round(self.reset_timeout_ms * factor)),
        )


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.primary_success_rate == 0.0:
        warnings.append("primary_success_rate=0: every primary attempt will fail.")
    if s.fallback_success_rate == 0.0:
        warnings.append("fallback_success_rate=0: every fallback attempt will fail.")
    if s.primary_provider_name == s.fallback_provider_name:
        warnings.append(
            "primary_provider_name equals fallback_provider_name: outcomes cannot tell tiers apart."
        )

    if s.is_production and s.dispatch_rate_limit_ms == 0:
        warnings.append("prod: dispatch_rate_limit_ms=0 (sends are not throttled).")
    if s.is_production and s.outcome_log_limit == 0:
        warnings.append("prod: outcome_log_limit=0 (outcome log grows without bound).")

    # Worst case for a single dispatch: full backoff on both tiers
    worst_ms = 2 * sum(
        s.dispatch_retry_delay_ms * (2 ** (a - 1))
        for a in range(1, s.dispatch_max_retries)
    )
    if worst_ms / 1000 > s.http_wait_timeout_seconds:
        warnings.append(
            f"http_wait_timeout_seconds={s.http_wait_timeout_seconds} is below the "
            f"worst-case dispatch latency ({worst_ms / 1000:.0f}s)."
        )

    return warnings


settings = Settings()

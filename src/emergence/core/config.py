"""Core configuration - centralized config for the emergence package.

Two layers:

- ``ConsensusConfig``: validated mechanism parameters passed explicitly to
  every component (reveal thresholds, rate-limit window, decay, monitor).
- ``CoreSettings``: environment-driven settings (``EMERGENCE_*``) used by the
  CLI and logging setup; it can produce a ``ConsensusConfig``.

Usage:
    from emergence.core.config import ConsensusConfig, get_config

    consensus = ConsensusConfig(reveal_cooldown=timedelta(hours=12))
    settings = get_config()
    consensus = settings.consensus_config()
"""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DecayKind(StrEnum):
    """Selectable decay functions for reward events."""

    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    LOGARITHMIC = "logarithmic"
    STEP = "step"


class ConsensusConfig(BaseModel):
    """Mechanism parameters. Invalid values are rejected, never clamped."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Reveal gate
    min_convergence_for_reveal: float = Field(default=0.5, ge=0.0, le=1.0)
    min_attestations_for_reveal: int = Field(default=5, ge=1)
    reveal_cooldown: timedelta = timedelta(hours=24)
    reveal_min_shift: float = Field(default=0.2, ge=0.0, le=1.0)

    # Rate limiting
    rate_limit_window: timedelta = timedelta(days=30)

    # Reputation decay
    decay_function: DecayKind = DecayKind.EXPONENTIAL
    decay_lambda: float = Field(default=0.01, ge=0.0)
    grace_period_days: float = Field(default=7.0, ge=0.0)

    # Invariant monitoring
    clock_skew_tolerance: timedelta = timedelta(minutes=5)
    monitor_interval_seconds: float = Field(default=30.0, gt=0.0)
    max_critical_per_minute: int = Field(default=5, ge=1)
    violation_history_size: int = Field(default=1000, ge=1)
    max_recovery_attempts: int = Field(default=3, ge=0)

    @field_validator("reveal_cooldown", "clock_skew_tolerance")
    @classmethod
    def _non_negative_window(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("window must not be negative")
        return value

    @field_validator("rate_limit_window")
    @classmethod
    def _positive_window(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("rate limit window must be positive")
        return value


class CoreSettings(BaseSettings):
    """Environment configuration for Emergence.

    All settings use the ``EMERGENCE_`` prefix and may also come from ``.env``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # LOGGING SETTINGS
    # ==========================================================================

    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
        validation_alias="EMERGENCE_LOG_LEVEL",
    )
    log_format: str = Field(
        default="",
        description="Log format: 'json', 'text', or '' (auto-detect)",
        validation_alias="EMERGENCE_LOG_FORMAT",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (optional)",
        validation_alias="EMERGENCE_LOG_FILE",
    )

    # ==========================================================================
    # CONSENSUS OVERRIDES
    # ==========================================================================

    min_convergence_for_reveal: float = Field(
        default=0.5,
        description="Convergence required before a hint may be revealed",
        validation_alias="EMERGENCE_MIN_CONVERGENCE_FOR_REVEAL",
    )
    min_attestations_for_reveal: int = Field(
        default=5,
        description="Attestations required before a hint may be revealed",
        validation_alias="EMERGENCE_MIN_ATTESTATIONS_FOR_REVEAL",
    )
    reveal_cooldown_hours: float = Field(
        default=24.0,
        description="Hours between reveals for the same question",
        validation_alias="EMERGENCE_REVEAL_COOLDOWN_HOURS",
    )
    rate_limit_days: float = Field(
        default=30.0,
        description="Days before an attester may re-attest the same question",
        validation_alias="EMERGENCE_RATE_LIMIT_DAYS",
    )
    decay_function: DecayKind = Field(
        default=DecayKind.EXPONENTIAL,
        description="Reward decay: linear, exponential, logarithmic or step",
        validation_alias="EMERGENCE_DECAY_FUNCTION",
    )
    grace_period_days: float = Field(
        default=7.0,
        description="Days during which reward events do not decay",
        validation_alias="EMERGENCE_GRACE_PERIOD_DAYS",
    )
    monitor_interval_seconds: float = Field(
        default=30.0,
        description="Seconds between invariant sweeps",
        validation_alias="EMERGENCE_MONITOR_INTERVAL_SECONDS",
    )

    def consensus_config(self) -> ConsensusConfig:
        """Build a validated ConsensusConfig from these settings.

        Raises:
            pydantic.ValidationError: if any override is out of range.
        """
        return ConsensusConfig(
            min_convergence_for_reveal=self.min_convergence_for_reveal,
            min_attestations_for_reveal=self.min_attestations_for_reveal,
            reveal_cooldown=timedelta(hours=self.reveal_cooldown_hours),
            rate_limit_window=timedelta(days=self.rate_limit_days),
            decay_function=self.decay_function,
            grace_period_days=self.grace_period_days,
            monitor_interval_seconds=self.monitor_interval_seconds,
        )


# ==========================================================================
# GLOBAL CONFIG INSTANCE (lazy loaded)
# ==========================================================================

_config: CoreSettings | None = None


def get_config() -> CoreSettings:
    """Get the global settings instance.

    Returns:
        The lazily constructed CoreSettings instance.
    """
    global _config
    if _config is None:
        _config = CoreSettings()
    return _config


def clear_config_cache() -> None:
    """Clear the config cache. Useful for testing."""
    global _config
    _config = None

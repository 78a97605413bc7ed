"""Reconciliation configuration.

Values come from environment variables (a .env file is loaded by the API
entrypoint). Malformed values fail fast at startup with a clear error.
"""

import os
from dataclasses import dataclass
from datetime import timedelta


class ConfigurationError(Exception):
    """Raised when a configuration value is missing or malformed."""

    pass


def env_int(key: str, default: int) -> int:
    """Read an integer env var, falling back to default when unset."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {key}: {value!r}\n"
            f"Expected an integer, e.g. {key}={default}"
        ) from None


def env_float(key: str, default: float) -> float:
    """Read a float env var, falling back to default when unset."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid value for {key}: {value!r}\n"
            f"Expected a number, e.g. {key}={default}"
        ) from None


def env_bool(key: str, default: bool) -> bool:
    """Read a boolean env var (1/0, true/false, yes/no, on/off)."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(
        f"Invalid value for {key}: {value!r}\nExpected true or false"
    )


# Unmatched clicks older than this are no longer included in the PBX query
DEFAULT_MAX_CLICK_AGE_HOURS: int = 24


@dataclass
class ReconcileConfig:
    """Scheduling and windowing for the reconciliation engine."""

    interval_seconds: int = 60
    run_on_start: bool = True
    window_before_seconds: int = 30
    window_after_seconds: int = 600
    max_click_age_hours: int | None = DEFAULT_MAX_CLICK_AGE_HOURS  # None searches every click

    @classmethod
    def from_env(cls) -> "ReconcileConfig":
        """Load reconciliation config from environment variables."""
        max_age = env_int(
            "RECONCILE_MAX_CLICK_AGE_HOURS", DEFAULT_MAX_CLICK_AGE_HOURS
        )
        config = cls(
            interval_seconds=env_int("RECONCILE_INTERVAL_SECONDS", 60),
            run_on_start=env_bool("RECONCILE_ON_START", True),
            window_before_seconds=env_int("MATCH_WINDOW_BEFORE_SECONDS", 30),
            window_after_seconds=env_int("MATCH_WINDOW_AFTER_SECONDS", 600),
            max_click_age_hours=max_age or None,
        )
        if config.interval_seconds <= 0:
            raise ConfigurationError("RECONCILE_INTERVAL_SECONDS must be positive")
        if config.window_before_seconds < 0 or config.window_after_seconds < 0:
            raise ConfigurationError("Match window offsets cannot be negative")
        if max_age < 0:
            raise ConfigurationError(
                "RECONCILE_MAX_CLICK_AGE_HOURS cannot be negative (0 disables the horizon)"
            )
        return config

    @property
    def max_click_age(self) -> timedelta | None:
        """Horizon after which unmatched clicks are no longer searched."""
        if self.max_click_age_hours is None:
            return None
        return timedelta(hours=self.max_click_age_hours)

import os
from dataclasses import dataclass, fields
from typing import Optional

from ledmesh.errors import ConfigurationError

# Defaults follow the firmware this grew out of: hue shifts every 10ms,
# forced election every 10s, mode broadcast every second
DEFAULT_TICK_INTERVAL_MS = 10
DEFAULT_ELECTION_INTERVAL_MS = 10000
DEFAULT_MESSAGE_INTERVAL_MS = 1000
DEFAULT_MAX_MESSAGE_AGE_MS = 1000
DEFAULT_MAX_TIME_ERRORS = 5
DEFAULT_MAX_WIFI_ERRORS = 5

# Keyframe corrections are only applied when 255 - phase is strictly inside this band
DEFAULT_PHASE_TOLERANCE_LOW = 4
DEFAULT_PHASE_TOLERANCE_HIGH = 250

# The transport's logical clock counts microseconds in an unsigned 32 bit register
DEFAULT_CLOCK_MODULUS = 2 ** 32
PHASE_MODULUS = 256

ENV_PREFIX = "LEDMESH_"


@dataclass(frozen=True)
class SyncConfig:
    tick_interval_ms: int = DEFAULT_TICK_INTERVAL_MS
    election_interval_ms: int = DEFAULT_ELECTION_INTERVAL_MS
    message_interval_ms: int = DEFAULT_MESSAGE_INTERVAL_MS
    max_message_age_ms: int = DEFAULT_MAX_MESSAGE_AGE_MS
    max_time_errors: int = DEFAULT_MAX_TIME_ERRORS
    max_wifi_errors: int = DEFAULT_MAX_WIFI_ERRORS
    phase_tolerance_low: int = DEFAULT_PHASE_TOLERANCE_LOW
    phase_tolerance_high: int = DEFAULT_PHASE_TOLERANCE_HIGH
    clock_modulus: int = DEFAULT_CLOCK_MODULUS

    @property
    def max_message_age_us(self) -> int:
        return self.max_message_age_ms * 1000

    # =============================================================================
    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, base: Optional["SyncConfig"] = None) -> "SyncConfig":
        """Build a config from ``<prefix><FIELD_NAME>`` environment variables.

        Unset variables keep the value from ``base`` (or the defaults).
        """
        base = base or cls()
        values = {}
        for field in fields(cls):
            key = prefix + field.name.upper()
            raw = os.getenv(key)
            if raw is None:
                values[field.name] = getattr(base, field.name)
                continue
            try:
                values[field.name] = int(raw, 0)
            except ValueError:
                raise ConfigurationError("Environment override is not an integer", {"variable": key, "value": raw})

        config = cls(**values)
        config.validate()
        return config

    # =============================================================================
    def validate(self) -> None:
        for name in ("tick_interval_ms", "election_interval_ms", "message_interval_ms", "max_message_age_ms"):
            if getattr(self, name) <= 0:
                raise ConfigurationError("Interval must be positive", {name: getattr(self, name)})

        for name in ("max_time_errors", "max_wifi_errors"):
            if getattr(self, name) < 0:
                raise ConfigurationError("Error threshold must not be negative", {name: getattr(self, name)})

        if not 0 <= self.phase_tolerance_low < self.phase_tolerance_high <= PHASE_MODULUS:
            raise ConfigurationError(
                "Phase tolerance band must satisfy 0 <= low < high <= 256",
                {"low": self.phase_tolerance_low, "high": self.phase_tolerance_high})

        # Needs room for both signs of the age after folding
        if self.clock_modulus <= 2 * self.max_message_age_us:
            raise ConfigurationError(
                "Clock modulus is too small for the message age bound",
                {"clock_modulus": self.clock_modulus, "max_message_age_ms": self.max_message_age_ms})

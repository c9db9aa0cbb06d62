"""Exception hierarchy for ledmesh.

Only configuration, decoding and transport setup raise. The coordination layer
itself counts and logs anomalies instead of raising them.
"""

from typing import Any, Dict, Optional

__all__ = [
    "ConfigurationError",
    "LedMeshError",
    "MalformedMessageError",
    "TransportError",
]


class LedMeshError(Exception):
    """Base exception for all ledmesh errors.

    Attributes:
        message: Human-readable error description
        context: Additional context for debugging
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(LedMeshError):
    """A SyncConfig value is out of range."""


class MalformedMessageError(LedMeshError):
    """A received payload could not be decoded into a SyncMessage."""


class TransportError(LedMeshError):
    """The transport could not be set up."""

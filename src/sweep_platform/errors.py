"""Exceptions raised by sweep_platform.

Every error carries a ``user_message`` (what to show on the console) and a
``context`` mapping (what to log at DEBUG, e.g. the location or target that
was being resolved).
"""

from __future__ import annotations

from typing import Any, Mapping, Optional


class SweepPlatformError(Exception):
    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.user_message = user_message or message
        self.context: dict[str, Any] = dict(context or {})

    def log_message(self) -> str:
        if not self.context:
            return str(self)
        details = ", ".join(f"{key}={value!r}" for key, value in sorted(self.context.items()))
        return f"{self} ({details})"


class ConfigError(SweepPlatformError):
    """Config could not be composed or turned into a method."""


class ArtifactError(SweepPlatformError):
    """Recorded scheme artifact is missing, malformed or conflicting."""


class BackendError(SweepPlatformError):
    """Simulation backend is unknown or failed to run."""


class ValidationError(SweepPlatformError):
    """Invalid method options or estimator selection."""


class VariationError(SweepPlatformError):
    """Malformed variation, target, or sampling request."""


class UnsupportedFeatureError(SweepPlatformError):
    """Option accepted by the interface but not implemented for a method."""


class IdentityStoreError(SweepPlatformError):
    """Parameter table is inconsistent or a variation ID is unknown."""


__all__ = [
    "SweepPlatformError",
    "ConfigError",
    "ArtifactError",
    "BackendError",
    "ValidationError",
    "VariationError",
    "UnsupportedFeatureError",
    "IdentityStoreError",
]

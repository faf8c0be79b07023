"""Pydantic schemas for label-mod settings and results."""

from __future__ import annotations

from label_mod.schemas.config import AuthConfig, AuthType, RegistrySettings, RetryConfig
from label_mod.schemas.outcome import LabelDelta, MutationOutcome

__all__ = [
    "AuthConfig",
    "AuthType",
    "LabelDelta",
    "MutationOutcome",
    "RegistrySettings",
    "RetryConfig",
]

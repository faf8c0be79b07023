"""label-mod: edit the labels of OCI images in place on a remote registry.

Only the image config and manifest are rewritten and republished; layers are
never downloaded or uploaded.

This package provides:
- LabelMutationEngine: inspect and mutate operations
- parse_reference / ImageReference: image coordinate parsing
- HttpRegistryClient: OCI distribution API client over httpx
- Authenticators: anonymous, basic, token and docker config credentials
- Errors: LabelModError hierarchy with stable codes and exit codes

Example:
    >>> from label_mod import LabelDelta, LabelMutationEngine, RegistrySettings
    >>> engine = LabelMutationEngine.from_settings(RegistrySettings.load())
    >>> outcome = engine.mutate(
    ...     "registry.example.com/app:v1",
    ...     LabelDelta(removals=("maintainer",), updates={"version": "2"}),
    ...     extra_tags=["v2"],
    ... )
    >>> print(outcome.to_json())
"""

from __future__ import annotations

from label_mod.client import HttpRegistryClient, RegistryClient
from label_mod.engine import LabelMutationEngine, apply_delta
from label_mod.errors import (
    AuthenticationError,
    ConfigurationError,
    DigestWithoutTagError,
    InvalidReferenceError,
    LabelModError,
    NoOpMutationError,
    NotFoundError,
    RegistryIntegrityError,
    TransportError,
    UnsupportedMediaTypeError,
)
from label_mod.reference import ImageReference, ReferenceKind, parse_reference
from label_mod.schemas import LabelDelta, MutationOutcome, RegistrySettings

__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DigestWithoutTagError",
    "HttpRegistryClient",
    "ImageReference",
    "InvalidReferenceError",
    "LabelDelta",
    "LabelModError",
    "LabelMutationEngine",
    "MutationOutcome",
    "NoOpMutationError",
    "NotFoundError",
    "ReferenceKind",
    "RegistryClient",
    "RegistryIntegrityError",
    "RegistrySettings",
    "TransportError",
    "UnsupportedMediaTypeError",
    "__version__",
    "apply_delta",
    "parse_reference",
]

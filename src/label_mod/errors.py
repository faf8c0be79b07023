"""Exception hierarchy for label-mod.

Every error raised by the library derives from LabelModError so callers can
catch the whole family with one except clause. Each class carries a stable
``code`` (reported in the JSON outcome as ``error_code``) and an ``exit_code``
used by the command line.

Exception Hierarchy:
    LabelModError (base)
    ├── InvalidReferenceError      # Image coordinate or tag failed to parse
    ├── AuthenticationError        # Credentials missing or rejected
    ├── NotFoundError              # Manifest, blob or repository absent
    ├── TransportError             # Network failure or unexpected status
    ├── DigestWithoutTagError      # Digest reference with nowhere to publish
    ├── NoOpMutationError          # Removal-only delta removed nothing
    ├── RegistryIntegrityError     # Registry disagrees about content digests
    ├── UnsupportedMediaTypeError  # Manifest list, index or unknown manifest
    └── ConfigurationError         # Settings file unreadable or invalid

Exit Codes:
    0 - Success
    1 - General error (LabelModError)
    2 - Invalid reference
    3 - Authentication error
    4 - Not found
    5 - Transport error
    6 - Digest reference without extra tags
    7 - No-op mutation
    8 - Registry integrity error
    9 - Unsupported media type
    10 - Configuration error

Example:
    >>> from label_mod.errors import NotFoundError
    >>> raise NotFoundError("registry.example.com/app:v1", "manifest unknown")
    Traceback (most recent call last):
        ...
    NotFoundError: Not found: registry.example.com/app:v1 (manifest unknown)
"""

from __future__ import annotations


class LabelModError(Exception):
    """Base exception for all label-mod errors.

    Attributes:
        code: Stable machine-readable identifier for the error kind.
        exit_code: CLI exit code for this error type (default: 1).

    Example:
        >>> try:
        ...     engine.mutate("registry.example.com/app:v1", delta)
        ... except LabelModError as e:
        ...     sys.exit(e.exit_code)
    """

    code: str = "error"
    exit_code: int = 1


class InvalidReferenceError(LabelModError):
    """Raised when an image reference or tag cannot be parsed.

    Attributes:
        reference: The offending input text.
        reason: Why the text was rejected.
    """

    code = "invalid_reference"
    exit_code = 2

    def __init__(self, reference: str, reason: str) -> None:
        """Initialize InvalidReferenceError.

        Args:
            reference: The offending input text.
            reason: Why the text was rejected.
        """
        self.reference = reference
        self.reason = reason
        super().__init__(f"Invalid image reference {reference!r}: {reason}")


class AuthenticationError(LabelModError):
    """Raised when registry credentials are missing, invalid or refused.

    Attributes:
        registry: Registry host where authentication failed.
        reason: Description of why authentication failed.

    Example:
        >>> raise AuthenticationError("registry.example.com", "401 Unauthorized")
        Traceback (most recent call last):
            ...
        AuthenticationError: Authentication failed for registry.example.com: 401 Unauthorized
    """

    code = "authentication"
    exit_code = 3

    def __init__(self, registry: str, reason: str) -> None:
        """Initialize AuthenticationError.

        Args:
            registry: Registry host where authentication failed.
            reason: Description of why authentication failed.
        """
        self.registry = registry
        self.reason = reason
        super().__init__(f"Authentication failed for {registry}: {reason}")


class NotFoundError(LabelModError):
    """Raised when a manifest, blob or repository does not exist.

    Attributes:
        reference: The reference that was sought.
        detail: Registry-supplied detail, if any.
    """

    code = "not_found"
    exit_code = 4

    def __init__(self, reference: str, detail: str | None = None) -> None:
        """Initialize NotFoundError.

        Args:
            reference: The reference that was sought.
            detail: Registry-supplied detail, if any.
        """
        self.reference = reference
        self.detail = detail
        msg = f"Not found: {reference}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class TransportError(LabelModError):
    """Raised on network failure or an unexpected registry response.

    Attributes:
        registry: Registry host that failed.
        reason: Description of the failure.
        status_code: HTTP status, when a response was received.
        retryable: False when the response was received but its content is
            unusable, so repeating the request cannot help.
    """

    code = "transport"
    exit_code = 5

    def __init__(
        self,
        registry: str,
        reason: str,
        status_code: int | None = None,
        *,
        retryable: bool = True,
    ) -> None:
        """Initialize TransportError.

        Args:
            registry: Registry host that failed.
            reason: Description of the failure.
            status_code: HTTP status, when a response was received.
            retryable: Whether repeating the request may succeed.
        """
        self.registry = registry
        self.reason = reason
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(f"Registry {registry} request failed: {reason}")


class DigestWithoutTagError(LabelModError):
    """Raised when a digest reference is mutated without any extra tag.

    A digest names immutable content, so a mutated manifest can never be
    published under it. Without at least one extra tag the new manifest would
    be unreachable, so the operation is refused before anything is pushed.
    """

    code = "digest_without_tag"
    exit_code = 6

    def __init__(self, reference: str) -> None:
        """Initialize DigestWithoutTagError.

        Args:
            reference: The digest-qualified reference.
        """
        self.reference = reference
        super().__init__(
            f"Cannot mutate digest reference {reference} without at least one --tag"
        )


class NoOpMutationError(LabelModError):
    """Raised when a removal-only delta removes nothing.

    Attributes:
        labels: The removal keys that were requested.
    """

    code = "no_op"
    exit_code = 7

    def __init__(self, labels: tuple[str, ...] | list[str]) -> None:
        """Initialize NoOpMutationError.

        Args:
            labels: The removal keys that were requested.
        """
        self.labels = tuple(labels)
        super().__init__(f"None of the labels to remove exist: {', '.join(self.labels)}")


class RegistryIntegrityError(LabelModError):
    """Raised when content digests disagree between client and registry.

    Attributes:
        expected: Digest computed locally.
        actual: Digest reported by, or computed from, the registry.
        reference: What was being transferred.

    Example:
        >>> raise RegistryIntegrityError(
        ...     "sha256:abc123...",
        ...     "sha256:def456...",
        ...     "registry.example.com/app config blob",
        ... )
        Traceback (most recent call last):
            ...
        RegistryIntegrityError: Digest mismatch for registry.example.com/app config blob...
    """

    code = "registry_integrity"
    exit_code = 8

    def __init__(self, expected: str, actual: str, reference: str) -> None:
        """Initialize RegistryIntegrityError.

        Args:
            expected: Digest computed locally.
            actual: Digest reported by, or computed from, the registry.
            reference: What was being transferred.
        """
        self.expected = expected
        self.actual = actual
        self.reference = reference
        super().__init__(
            f"Digest mismatch for {reference}: expected {expected}, got {actual}"
        )


class UnsupportedMediaTypeError(LabelModError):
    """Raised for manifest lists, image indexes and unknown manifest types."""

    code = "unsupported_media_type"
    exit_code = 9

    def __init__(self, reference: str, media_type: str) -> None:
        """Initialize UnsupportedMediaTypeError.

        Args:
            reference: The reference whose manifest was fetched.
            media_type: The media type the registry returned.
        """
        self.reference = reference
        self.media_type = media_type
        super().__init__(f"Unsupported manifest media type for {reference}: {media_type}")


class ConfigurationError(LabelModError):
    """Raised when the settings file cannot be read or fails validation."""

    code = "configuration"
    exit_code = 10


_ERROR_TYPES: tuple[type[LabelModError], ...] = (
    LabelModError,
    InvalidReferenceError,
    AuthenticationError,
    NotFoundError,
    TransportError,
    DigestWithoutTagError,
    NoOpMutationError,
    RegistryIntegrityError,
    UnsupportedMediaTypeError,
    ConfigurationError,
)


def exit_code_for(code: str | None) -> int:
    """Map an outcome error code back to its CLI exit code (0 for success)."""
    if code is None:
        return 0
    for error_type in _ERROR_TYPES:
        if error_type.code == code:
            return error_type.exit_code
    return LabelModError.exit_code


__all__ = [
    "exit_code_for",
    "AuthenticationError",
    "ConfigurationError",
    "DigestWithoutTagError",
    "InvalidReferenceError",
    "LabelModError",
    "NoOpMutationError",
    "NotFoundError",
    "RegistryIntegrityError",
    "TransportError",
    "UnsupportedMediaTypeError",
]

"""Image reference parsing.

Turns an image coordinate such as ``registry.example.com/team/app:v1`` or
``localhost:5000/app@sha256:<hex>`` into an immutable ImageReference that
knows whether its operative identity is a mutable tag or an immutable digest.

Grammar:
    <host>/<path>[:<tag>][@<digest>]

    - host: must contain a ``.`` or a ``:port``, or be ``localhost``.
      There is no implicit default registry.
    - path: one or more lowercase components separated by ``/``.
    - tag: ``[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}``, defaults to ``latest``.
    - digest: ``sha256:<64 hex>`` or ``sha512:<128 hex>``. When both a tag and a
      digest are present the digest is the operative identity.

Example:
    >>> ref = parse_reference("registry.example.com/team/app:v1")
    >>> ref.kind
    <ReferenceKind.TAG: 'tag'>
    >>> str(ref.with_tag("v2"))
    'registry.example.com/team/app:v2'
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from label_mod.errors import InvalidReferenceError

DEFAULT_TAG = "latest"

# =============================================================================
# Grammar
# =============================================================================

HOST_PATTERN = re.compile(
    r"^(?:[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)"
    r"(?:\.(?:[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?))*"
    r"(?::[0-9]+)?$"
)
PATH_COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
DIGEST_PATTERN = re.compile(r"^(?:sha256:[a-f0-9]{64}|sha512:[a-f0-9]{128})$")


class ReferenceKind(str, Enum):
    """Which part of a reference is its operative identity."""

    TAG = "tag"
    DIGEST = "digest"


class ImageReference(BaseModel):
    """A parsed, immutable image coordinate.

    Attributes:
        registry: Registry host, including any port.
        repository: Repository path within the registry.
        tag: Tag, if one was given or defaulted.
        digest: Content digest, if one was given.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    registry: str = Field(..., description="Registry host, including any port")
    repository: str = Field(..., description="Repository path within the registry")
    tag: str | None = Field(default=None, description="Mutable tag")
    digest: str | None = Field(default=None, description="Immutable content digest")

    @property
    def kind(self) -> ReferenceKind:
        """Return DIGEST when a digest is present, TAG otherwise."""
        if self.digest is not None:
            return ReferenceKind.DIGEST
        return ReferenceKind.TAG

    @property
    def identifier(self) -> str:
        """Return the operative tag or digest used in registry URLs."""
        if self.digest is not None:
            return self.digest
        return self.tag or DEFAULT_TAG

    @property
    def repository_ref(self) -> str:
        """Return ``<registry>/<repository>`` without tag or digest."""
        return f"{self.registry}/{self.repository}"

    def with_tag(self, tag: str) -> ImageReference:
        """Return a tag reference to another tag in the same repository.

        Args:
            tag: Tag name.

        Returns:
            A tag-qualified ImageReference.

        Raises:
            InvalidReferenceError: If the tag is malformed.
        """
        return ImageReference(
            registry=self.registry,
            repository=self.repository,
            tag=validate_tag(tag),
        )

    def __str__(self) -> str:
        text = self.repository_ref
        if self.tag is not None:
            text += f":{self.tag}"
        if self.digest is not None:
            text += f"@{self.digest}"
        return text


def parse_reference(text: str) -> ImageReference:
    """Parse an image coordinate string.

    Args:
        text: Reference text, e.g. ``registry.example.com/app:v1``.

    Returns:
        The parsed ImageReference.

    Raises:
        InvalidReferenceError: If any part of the reference is malformed.
    """
    if not text or text != text.strip() or any(c.isspace() for c in text):
        raise InvalidReferenceError(text, "reference must be non-empty with no whitespace")

    name, sep, digest = text.partition("@")
    if sep:
        if not DIGEST_PATTERN.match(digest):
            raise InvalidReferenceError(text, f"invalid digest {digest!r}")
    else:
        digest = ""

    host, slash, remainder = name.partition("/")
    if not slash or not remainder:
        raise InvalidReferenceError(text, "missing registry host or repository")
    if not _looks_like_host(host):
        raise InvalidReferenceError(text, f"{host!r} is not a registry host")

    path, colon, tag = remainder.partition(":")
    if colon:
        if not TAG_PATTERN.match(tag):
            raise InvalidReferenceError(text, f"invalid tag {tag!r}")
    elif not digest:
        tag = DEFAULT_TAG

    for component in path.split("/"):
        if not PATH_COMPONENT_PATTERN.match(component):
            raise InvalidReferenceError(text, f"invalid repository component {component!r}")

    return ImageReference(
        registry=host,
        repository=path,
        tag=tag or None,
        digest=digest or None,
    )


def validate_tag(tag: str) -> str:
    """Validate a bare tag name.

    Raises:
        InvalidReferenceError: If the tag is malformed.
    """
    if not TAG_PATTERN.match(tag):
        raise InvalidReferenceError(tag, "invalid tag format")
    return tag


def _looks_like_host(host: str) -> bool:
    if not HOST_PATTERN.match(host):
        return False
    return host == "localhost" or "." in host or ":" in host


__all__ = [
    "DEFAULT_TAG",
    "ImageReference",
    "ReferenceKind",
    "parse_reference",
    "validate_tag",
]

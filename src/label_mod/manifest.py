"""Image manifest and config documents.

Both documents keep the exact bytes they were decoded from. Digests are always
computed over those bytes, so an unmodified document republishes with the same
digest. Modified documents are re-encoded canonically (sorted keys, compact
separators, UTF-8) so equal content always yields equal digests.

Example:
    >>> config = ImageConfig.from_bytes(b'{"config": {"Labels": {"a": "1"}}}')
    >>> config.labels
    {'a': '1'}
    >>> config.with_labels({"a": "1"}) is config
    True
"""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# =============================================================================
# Media Types
# =============================================================================

DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

SUPPORTED_MANIFEST_TYPES = (DOCKER_MANIFEST_V2, OCI_MANIFEST)
INDEX_MANIFEST_TYPES = (DOCKER_MANIFEST_LIST, OCI_INDEX)


# =============================================================================
# Encoding Helpers
# =============================================================================


def calculate_digest(content: bytes) -> str:
    """Calculate the SHA-256 content digest of raw bytes.

    Args:
        content: Raw bytes.

    Returns:
        Digest string in ``sha256:<hex>`` form.

    Example:
        >>> calculate_digest(b"")
        'sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def verify_digest(content: bytes, digest: str) -> bool:
    """Check content against a ``sha256:`` or ``sha512:`` digest."""
    algorithm, _, expected = digest.partition(":")
    if algorithm not in ("sha256", "sha512"):
        return False
    return hashlib.new(algorithm, content).hexdigest() == expected


def canonical_json(document: Any) -> bytes:
    """Encode a JSON document deterministically.

    Keys are sorted, separators are compact and non-ASCII text is written as
    UTF-8 rather than escaped.
    """
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def _decode_object(raw: bytes, what: str) -> dict[str, Any]:
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"{what} is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ValueError(f"{what} must be a JSON object")
    # Escaped lone surrogates decode fine but cannot be written back as UTF-8.
    try:
        canonical_json(document)
    except UnicodeEncodeError as e:
        raise ValueError(f"{what} contains text that is not valid Unicode: {e}") from e
    return document


# =============================================================================
# Documents
# =============================================================================


class Descriptor(BaseModel):
    """Content descriptor: media type, digest and byte size."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    media_type: str = Field(..., alias="mediaType", description="Content media type")
    digest: str = Field(..., description="Content digest")
    size: int = Field(..., ge=0, description="Content size in bytes")


class ImageConfig(BaseModel):
    """An image config object, with its exact serialized bytes.

    Only the ``config.Labels`` mapping is ever modified; every other field is
    carried through untouched.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    raw: bytes = Field(..., description="Exact serialized bytes")
    document: dict[str, Any] = Field(..., description="Decoded JSON document")

    @classmethod
    def from_bytes(cls, raw: bytes) -> ImageConfig:
        """Decode a config blob.

        Raises:
            ValueError: If the bytes are not a JSON object.
        """
        return cls(raw=raw, document=_decode_object(raw, "image config"))

    @property
    def digest(self) -> str:
        return calculate_digest(self.raw)

    @property
    def size(self) -> int:
        return len(self.raw)

    @property
    def labels(self) -> dict[str, str]:
        """Return a copy of the current label mapping (empty when absent)."""
        section = self.document.get("config") or {}
        return dict(section.get("Labels") or {})

    def with_labels(self, labels: dict[str, str]) -> ImageConfig:
        """Return a config carrying ``labels`` in place of the current ones.

        Returns ``self`` when the mapping is unchanged so the original bytes,
        and therefore the original digest, are preserved.
        """
        if labels == self.labels:
            return self

        document = copy.deepcopy(self.document)
        section = document.get("config")
        if not isinstance(section, dict):
            section = {}
            document["config"] = section
        section["Labels"] = dict(labels)
        return ImageConfig(raw=canonical_json(document), document=document)


class ImageManifest(BaseModel):
    """A single-platform image manifest, with its exact serialized bytes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    raw: bytes = Field(..., description="Exact serialized bytes")
    media_type: str = Field(..., description="Manifest media type")
    document: dict[str, Any] = Field(..., description="Decoded JSON document")

    @classmethod
    def from_bytes(cls, raw: bytes, media_type: str | None = None) -> ImageManifest:
        """Decode a manifest.

        Args:
            raw: Manifest bytes as served by the registry.
            media_type: Content-Type reported by the registry, if any. The
                document's own ``mediaType`` is used otherwise.

        Raises:
            ValueError: If the bytes are not a manifest with a config descriptor.
        """
        document = _decode_object(raw, "manifest")
        resolved = document.get("mediaType") or media_type or ""
        manifest = cls(raw=raw, media_type=resolved, document=document)
        if resolved in SUPPORTED_MANIFEST_TYPES:
            try:
                Descriptor.model_validate(document.get("config"))
            except ValidationError as e:
                raise ValueError(f"manifest has no valid config descriptor: {e}") from e
        return manifest

    @property
    def digest(self) -> str:
        return calculate_digest(self.raw)

    @property
    def is_index(self) -> bool:
        return self.media_type in INDEX_MANIFEST_TYPES or "manifests" in self.document

    @property
    def config(self) -> Descriptor:
        return Descriptor.model_validate(self.document["config"])

    def with_config(self, config: ImageConfig) -> ImageManifest:
        """Return a manifest that points at ``config``.

        Only the config descriptor's digest and size change; its media type and
        all layers are preserved. Returns ``self`` when nothing changed.
        """
        current = self.config
        if current.digest == config.digest and current.size == config.size:
            return self

        document = copy.deepcopy(self.document)
        document["config"]["digest"] = config.digest
        document["config"]["size"] = config.size
        return ImageManifest(
            raw=canonical_json(document),
            media_type=self.media_type,
            document=document,
        )


class FetchedImage(BaseModel):
    """A manifest together with the config object it references."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    manifest: ImageManifest
    config: ImageConfig


__all__ = [
    "DOCKER_MANIFEST_LIST",
    "DOCKER_MANIFEST_V2",
    "INDEX_MANIFEST_TYPES",
    "OCI_INDEX",
    "OCI_MANIFEST",
    "SUPPORTED_MANIFEST_TYPES",
    "Descriptor",
    "FetchedImage",
    "ImageConfig",
    "ImageManifest",
    "calculate_digest",
    "canonical_json",
    "verify_digest",
]

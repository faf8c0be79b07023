"""Shared test configuration for label-mod.

Unit tests run without a registry or network. Registry traffic is replaced by
FakeRegistryClient (an in-memory RegistryClient that records every push) or by
httpx.MockTransport for the HTTP client tests.

Key Fixtures:
- fake_registry: In-memory registry preloaded with registry.example.com/team/app:v1
- engine: LabelMutationEngine over fake_registry
- make_config / make_manifest: Builders for raw config and manifest bytes
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Generator
from typing import Any

import pytest
import structlog

from label_mod.client import RegistryClient
from label_mod.engine import LabelMutationEngine
from label_mod.errors import LabelModError, NotFoundError
from label_mod.manifest import (
    DOCKER_MANIFEST_V2,
    FetchedImage,
    ImageConfig,
    ImageManifest,
    calculate_digest,
)
from label_mod.metrics import MutationMetrics
from label_mod.reference import ImageReference

REGISTRY = "registry.example.com"
REPOSITORY = "team/app"
IMAGE = f"{REGISTRY}/{REPOSITORY}:v1"
LAYER_DIGEST = "sha256:" + "ab" * 32
CONFIG_MEDIA_TYPE = "application/vnd.docker.container.image.v1+json"


def build_config(labels: dict[str, str] | None) -> bytes:
    """Return config bytes in registry formatting (indented, insertion order)."""
    document: dict[str, Any] = {
        "architecture": "amd64",
        "os": "linux",
        "config": {"Env": ["PATH=/usr/local/bin:/usr/bin"], "Cmd": ["/app"]},
        "rootfs": {"type": "layers", "diff_ids": [LAYER_DIGEST]},
    }
    if labels is not None:
        document["config"]["Labels"] = labels
    return json.dumps(document, indent=3).encode()


def build_manifest(config: bytes, media_type: str = DOCKER_MANIFEST_V2) -> bytes:
    """Return manifest bytes pointing at ``config`` with one opaque layer."""
    document = {
        "schemaVersion": 2,
        "mediaType": media_type,
        "config": {
            "mediaType": CONFIG_MEDIA_TYPE,
            "size": len(config),
            "digest": calculate_digest(config),
        },
        "layers": [
            {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                "size": 1024,
                "digest": LAYER_DIGEST,
            }
        ],
    }
    return json.dumps(document, indent=3).encode()


class FakeRegistryClient(RegistryClient):
    """In-memory RegistryClient recording every push.

    Attributes:
        manifests: Manifests keyed by ``repo:tag`` and ``repo@digest``.
        blobs: Blob bytes keyed by digest.
        blob_pushes: Digests passed to push_blob, in call order.
        manifest_pushes: References passed to push_manifest, in call order.
        failures: Errors to raise from push_manifest, keyed by reference text.
        fetch_error: Error to raise from fetch_image, if set.
    """

    def __init__(self) -> None:
        self.manifests: dict[str, ImageManifest] = {}
        self.blobs: dict[str, bytes] = {}
        self.blob_pushes: list[str] = []
        self.manifest_pushes: list[str] = []
        self.failures: dict[str, LabelModError] = {}
        self.fetch_error: LabelModError | None = None
        self.closed = False
        self._lock = threading.Lock()

    @property
    def push_count(self) -> int:
        return len(self.blob_pushes) + len(self.manifest_pushes)

    def add_image(
        self,
        reference: str,
        labels: dict[str, str] | None,
    ) -> ImageManifest:
        """Store an image under ``repo:tag`` (and its digest) and return its manifest."""
        config = build_config(labels)
        manifest = ImageManifest.from_bytes(build_manifest(config))
        repository_ref = reference.rsplit(":", 1)[0]
        self.blobs[calculate_digest(config)] = config
        self.manifests[reference] = manifest
        self.manifests[f"{repository_ref}@{manifest.digest}"] = manifest
        return manifest

    def fetch_image(self, reference: ImageReference) -> FetchedImage:
        if self.fetch_error is not None:
            raise self.fetch_error
        if reference.digest is not None:
            key = f"{reference.repository_ref}@{reference.digest}"
        else:
            key = f"{reference.repository_ref}:{reference.tag}"
        manifest = self.manifests.get(key)
        if manifest is None:
            raise NotFoundError(str(reference), "manifest unknown")
        config = ImageConfig.from_bytes(self.blobs[manifest.config.digest])
        return FetchedImage(manifest=manifest, config=config)

    def push_blob(self, reference: ImageReference, data: bytes, digest: str) -> str:
        with self._lock:
            self.blob_pushes.append(digest)
            self.blobs[digest] = data
        return calculate_digest(data)

    def push_manifest(self, reference: ImageReference, manifest: ImageManifest) -> str:
        key = str(reference)
        if key in self.failures:
            raise self.failures[key]
        with self._lock:
            self.manifest_pushes.append(key)
            self.manifests[key] = manifest
            self.manifests[f"{reference.repository_ref}@{manifest.digest}"] = manifest
        return manifest.digest

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def sample_digest() -> str:
    """Return a valid SHA256 digest for testing.

    Returns:
        The digest of empty content.
    """
    return "sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


@pytest.fixture
def make_config() -> Callable[[dict[str, str] | None], bytes]:
    """Return the config bytes builder."""
    return build_config


@pytest.fixture
def make_manifest() -> Callable[..., bytes]:
    """Return the manifest bytes builder."""
    return build_manifest


@pytest.fixture
def fake_registry() -> FakeRegistryClient:
    """Create an in-memory registry holding IMAGE with labels a=1, b=2.

    Returns:
        FakeRegistryClient with one tagged image.
    """
    registry = FakeRegistryClient()
    registry.add_image(IMAGE, {"a": "1", "b": "2"})
    return registry


@pytest.fixture
def engine(fake_registry: FakeRegistryClient) -> LabelMutationEngine:
    """Create a sequential engine over fake_registry."""
    return LabelMutationEngine(fake_registry, metrics=MutationMetrics())


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Restore structlog defaults after every test."""
    yield
    structlog.reset_defaults()


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test as covering a specific behaviour",
    )

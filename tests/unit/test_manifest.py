"""Unit tests for manifest and config documents.

Covers digest calculation, canonical encoding, byte preservation for
unchanged documents and the config descriptor rewrite.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import pytest

from label_mod.manifest import (
    OCI_INDEX,
    OCI_MANIFEST,
    Descriptor,
    ImageConfig,
    ImageManifest,
    calculate_digest,
    canonical_json,
    verify_digest,
)


class TestDigests:
    """Tests for digest helpers."""

    @pytest.mark.requirement("content-digest")
    def test_calculate_digest_of_empty_content(self, sample_digest: str) -> None:
        """Test the well-known digest of empty content."""
        assert calculate_digest(b"") == sample_digest

    @pytest.mark.requirement("content-digest")
    def test_verify_digest(self) -> None:
        """Test verify_digest accepts matching and rejects other content."""
        digest = calculate_digest(b"hello")

        assert verify_digest(b"hello", digest) is True
        assert verify_digest(b"hello!", digest) is False
        assert verify_digest(b"hello", "md5:abc") is False

    @pytest.mark.requirement("content-digest")
    def test_canonical_json_is_order_independent(self) -> None:
        """Test equal documents encode to identical bytes."""
        first = canonical_json({"b": 1, "a": {"y": "é", "x": [1, 2]}})
        second = canonical_json({"a": {"x": [1, 2], "y": "é"}, "b": 1})

        assert first == second
        assert first == '{"a":{"x":[1,2],"y":"é"},"b":1}'.encode()


class TestImageConfig:
    """Tests for ImageConfig label handling."""

    @pytest.mark.requirement("config-roundtrip")
    def test_labels_returns_copy(self, make_config: Callable[..., bytes]) -> None:
        """Test mutating the returned labels leaves the config unchanged."""
        config = ImageConfig.from_bytes(make_config({"a": "1"}))

        labels = config.labels
        labels["b"] = "2"

        assert config.labels == {"a": "1"}

    @pytest.mark.requirement("config-roundtrip")
    @pytest.mark.parametrize("labels", [None, {}])
    def test_missing_or_empty_labels_read_as_empty(
        self, make_config: Callable[..., bytes], labels: dict[str, str] | None
    ) -> None:
        """Test absent and empty Labels both read as an empty mapping."""
        assert ImageConfig.from_bytes(make_config(labels)).labels == {}

    @pytest.mark.requirement("config-roundtrip")
    def test_null_config_section_reads_as_empty(self) -> None:
        """Test a config whose config section is null has no labels."""
        assert ImageConfig.from_bytes(b'{"config": null}').labels == {}

    @pytest.mark.requirement("config-roundtrip")
    def test_unchanged_labels_preserve_bytes(self, make_config: Callable[..., bytes]) -> None:
        """Test re-applying the same labels keeps the original bytes and digest."""
        raw = make_config({"a": "1", "b": "2"})
        config = ImageConfig.from_bytes(raw)

        same = config.with_labels({"b": "2", "a": "1"})

        assert same is config
        assert same.raw == raw
        assert same.digest == calculate_digest(raw)

    @pytest.mark.requirement("config-roundtrip")
    def test_changed_labels_only_touch_labels(self, make_config: Callable[..., bytes]) -> None:
        """Test every non-label field survives a label change."""
        config = ImageConfig.from_bytes(make_config({"a": "1"}))

        changed = config.with_labels({"z": "26"})
        document = json.loads(changed.raw)

        assert changed.labels == {"z": "26"}
        assert document["config"]["Env"] == ["PATH=/usr/local/bin:/usr/bin"]
        assert document["rootfs"] == config.document["rootfs"]
        assert config.labels == {"a": "1"}
        assert changed.raw == canonical_json(document)

    @pytest.mark.requirement("config-roundtrip")
    def test_adds_labels_section_when_missing(self, make_config: Callable[..., bytes]) -> None:
        """Test labels can be set on a config that has none."""
        changed = ImageConfig.from_bytes(make_config(None)).with_labels({"a": "1"})

        assert json.loads(changed.raw)["config"]["Labels"] == {"a": "1"}

    @pytest.mark.requirement("config-roundtrip")
    def test_removing_all_labels_leaves_empty_mapping(
        self, make_config: Callable[..., bytes]
    ) -> None:
        """Test clearing every label writes an empty Labels mapping."""
        changed = ImageConfig.from_bytes(make_config({"a": "1"})).with_labels({})

        assert json.loads(changed.raw)["config"]["Labels"] == {}

    @pytest.mark.requirement("config-roundtrip")
    def test_same_labels_same_digest(self, make_config: Callable[..., bytes]) -> None:
        """Test equal label sets yield equal digests regardless of key order."""
        config = ImageConfig.from_bytes(make_config({"a": "1"}))

        first = config.with_labels({"x": "1", "y": "2"})
        second = config.with_labels({"y": "2", "x": "1"})

        assert first.digest == second.digest

    @pytest.mark.requirement("config-roundtrip")
    def test_rejects_non_object(self) -> None:
        """Test non-object JSON is rejected."""
        with pytest.raises(ValueError, match="JSON object"):
            ImageConfig.from_bytes(b"[]")

    @pytest.mark.requirement("config-roundtrip")
    def test_rejects_lone_surrogate(self) -> None:
        """Test escaped text that cannot be encoded as UTF-8 is rejected."""
        with pytest.raises(ValueError, match="not valid Unicode"):
            ImageConfig.from_bytes(b'{"config": {"Labels": {"a": "x\\ud800"}}}')


class TestImageManifest:
    """Tests for ImageManifest decoding and config rewrite."""

    @pytest.mark.requirement("manifest-rewrite")
    def test_from_bytes_reads_media_type_and_config(
        self,
        make_config: Callable[..., bytes],
        make_manifest: Callable[..., bytes],
    ) -> None:
        """Test the manifest exposes its media type and config descriptor."""
        config = make_config({"a": "1"})
        raw = make_manifest(config, OCI_MANIFEST)

        manifest = ImageManifest.from_bytes(raw)

        assert manifest.media_type == OCI_MANIFEST
        assert manifest.config == Descriptor(
            media_type="application/vnd.docker.container.image.v1+json",
            digest=calculate_digest(config),
            size=len(config),
        )
        assert manifest.digest == calculate_digest(raw)
        assert manifest.is_index is False

    @pytest.mark.requirement("manifest-rewrite")
    def test_header_media_type_used_when_document_has_none(self) -> None:
        """Test the registry Content-Type fills in a missing mediaType."""
        raw = json.dumps({"schemaVersion": 2, "manifests": []}).encode()

        manifest = ImageManifest.from_bytes(raw, OCI_INDEX)

        assert manifest.media_type == OCI_INDEX
        assert manifest.is_index is True

    @pytest.mark.requirement("manifest-rewrite")
    def test_rejects_manifest_without_config(self) -> None:
        """Test an image manifest must carry a config descriptor."""
        raw = json.dumps({"schemaVersion": 2, "mediaType": OCI_MANIFEST}).encode()

        with pytest.raises(ValueError, match="config descriptor"):
            ImageManifest.from_bytes(raw)

    @pytest.mark.requirement("manifest-rewrite")
    def test_with_config_updates_only_descriptor(
        self,
        make_config: Callable[..., bytes],
        make_manifest: Callable[..., bytes],
    ) -> None:
        """Test a new config changes only the descriptor digest and size."""
        original = ImageManifest.from_bytes(make_manifest(make_config({"a": "1"})))
        config = ImageConfig.from_bytes(make_config({"a": "1"})).with_labels({})

        rewritten = original.with_config(config)

        assert rewritten.config.digest == config.digest
        assert rewritten.config.size == config.size
        assert rewritten.config.media_type == original.config.media_type
        assert rewritten.document["layers"] == original.document["layers"]
        assert rewritten.media_type == original.media_type
        assert rewritten.digest != original.digest

    @pytest.mark.requirement("manifest-rewrite")
    def test_with_unchanged_config_keeps_bytes(
        self,
        make_config: Callable[..., bytes],
        make_manifest: Callable[..., bytes],
    ) -> None:
        """Test pointing at the same config keeps the original manifest."""
        raw_config = make_config({"a": "1"})
        original = ImageManifest.from_bytes(make_manifest(raw_config))

        assert original.with_config(ImageConfig.from_bytes(raw_config)) is original

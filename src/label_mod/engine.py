"""Label mutation engine.

Orchestrates inspect and mutate runs against a RegistryClient:

    Resolved -> Fetched -> DiffComputed -> ConfigPushed -> ManifestDecided
        -> TagsPushed -> Done

Any LabelModError short-circuits to a failed MutationOutcome that still
reports what was established before the failure (old digest, computed diff,
tags that were pushed, new digest once the new manifest is live anywhere).
No step is retried here; retries belong to the registry transport.

Example:
    >>> engine = LabelMutationEngine.from_settings(RegistrySettings())
    >>> outcome = engine.remove_labels("registry.example.com/app:v1", ["maintainer"])
    >>> outcome.success
    True
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from label_mod.auth import create_authenticator
from label_mod.client import HttpRegistryClient
from label_mod.errors import (
    DigestWithoutTagError,
    LabelModError,
    NoOpMutationError,
    RegistryIntegrityError,
)
from label_mod.metrics import MutationMetrics, get_mutation_metrics
from label_mod.reference import ReferenceKind, parse_reference
from label_mod.schemas.outcome import LabelDelta, MutationOutcome
from label_mod.tagging import TagPublisher

if TYPE_CHECKING:
    from label_mod.auth import Authenticator
    from label_mod.client import RegistryClient
    from label_mod.schemas.config import RegistrySettings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LabelChange:
    """Result of applying a LabelDelta to a label mapping.

    Attributes:
        labels: The resulting label mapping.
        removed: Keys that existed and were deleted, in request order.
        updated: Keys that were set, with their new values.
    """

    labels: dict[str, str]
    removed: list[str]
    updated: dict[str, str]


def apply_delta(labels: Mapping[str, str], delta: LabelDelta) -> LabelChange:
    """Apply removals, then updates, to a copy of ``labels``.

    Removing an absent key is a no-op. Updates are applied unconditionally, so
    a key that is both removed and updated ends up present with its new value.

    Example:
        >>> change = apply_delta({"a": "1", "b": "2"}, LabelDelta(removals=("a", "c")))
        >>> change.labels, change.removed
        ({'b': '2'}, ['a'])
    """
    result = dict(labels)
    removed: list[str] = []
    for key in delta.removals:
        if key in result:
            del result[key]
            removed.append(key)

    updated: dict[str, str] = {}
    for key, value in delta.updates.items():
        result[key] = value
        updated[key] = value

    return LabelChange(labels=result, removed=removed, updated=updated)


@dataclass
class _Progress:
    """What a mutate run has established so far."""

    image_ref: str
    registry: str = "unknown"
    old_digest: str | None = None
    new_digest: str | None = None
    removed: list[str] = field(default_factory=list)
    updated: dict[str, str] = field(default_factory=dict)
    tagged_as: list[str] = field(default_factory=list)

    def outcome(self, error: LabelModError | None = None) -> MutationOutcome:
        return MutationOutcome(
            success=error is None,
            error=str(error) if error is not None else None,
            error_code=error.code if error is not None else None,
            image_ref=self.image_ref,
            old_digest=self.old_digest,
            new_digest=self.new_digest,
            removed=list(self.removed),
            updated=dict(self.updated),
            tagged_as=list(self.tagged_as),
        )


class LabelMutationEngine:
    """Inspects and rewrites image labels in a registry.

    The engine holds no state between invocations; every call fetches fresh
    content and builds a new outcome.
    """

    def __init__(
        self,
        client: RegistryClient,
        *,
        max_tag_workers: int = 1,
        metrics: MutationMetrics | None = None,
    ) -> None:
        """Initialize LabelMutationEngine.

        Args:
            client: Registry client for fetches and pushes.
            max_tag_workers: Parallelism for extra-tag pushes.
            metrics: Metrics collector. Uses the process default if None.
        """
        self._client = client
        self._publisher = TagPublisher(client, max_workers=max_tag_workers)
        self._metrics = metrics

    @classmethod
    def from_settings(
        cls,
        settings: RegistrySettings,
        authenticator: Authenticator | None = None,
    ) -> LabelMutationEngine:
        """Build an engine with an HTTP registry client.

        Args:
            settings: Registry settings.
            authenticator: Credential source. Built from settings.auth if None.

        Raises:
            AuthenticationError: If the configured credential source is unusable.
            ConfigurationError: If the auth settings lack required secrets.
        """
        client = HttpRegistryClient(
            settings,
            authenticator=authenticator or create_authenticator(settings.auth),
        )
        return cls(client, max_tag_workers=settings.max_tag_workers)

    @property
    def metrics(self) -> MutationMetrics:
        if self._metrics is None:
            self._metrics = get_mutation_metrics()
        return self._metrics

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # Inspect
    # -------------------------------------------------------------------------

    def inspect(self, image: str) -> MutationOutcome:
        """Report the current labels and manifest digest of ``image``.

        Read-only; never pushes.

        Args:
            image: Image reference text.

        Returns:
            MutationOutcome with ``current`` and ``new_digest`` on success.
        """
        log = logger.bind(image=image)
        log.info("inspect_started")
        registry = "unknown"
        start = time.monotonic()

        try:
            with self.metrics.create_span(MutationMetrics.SPAN_INSPECT, {"image": image}):
                reference = parse_reference(image)
                registry = reference.registry
                fetched = self._client.fetch_image(reference)
        except LabelModError as e:
            log.warning("inspect_failed", error=str(e), error_code=e.code)
            self._record("inspect", registry, start, success=False)
            return MutationOutcome(
                success=False,
                error=str(e),
                error_code=e.code,
                image_ref=image,
            )

        log.info("inspect_completed", digest=fetched.manifest.digest)
        self._record("inspect", registry, start, success=True)
        return MutationOutcome(
            success=True,
            image_ref=image,
            new_digest=fetched.manifest.digest,
            current=fetched.config.labels,
        )

    # -------------------------------------------------------------------------
    # Mutate
    # -------------------------------------------------------------------------

    def mutate(
        self,
        image: str,
        delta: LabelDelta,
        extra_tags: Sequence[str] = (),
    ) -> MutationOutcome:
        """Apply ``delta`` to the labels of ``image`` and republish it.

        A tag reference is re-pointed at the new manifest. A digest reference
        is never pushed to; the new manifest is published only under
        ``extra_tags``, which must then be non-empty.

        Args:
            image: Image reference text.
            delta: Label removals and updates.
            extra_tags: Additional tags in the same repository, pushed in order.

        Returns:
            MutationOutcome describing the run, successful or not.
        """
        progress = _Progress(image_ref=image)
        log = logger.bind(image=image, extra_tags=list(extra_tags))
        log.info("mutate_started", removals=list(delta.removals), updates=sorted(delta.updates))
        start = time.monotonic()

        try:
            with self.metrics.create_span(MutationMetrics.SPAN_MUTATE, {"image": image}):
                self._run_mutation(progress, image, delta, extra_tags)
        except LabelModError as e:
            log.warning(
                "mutate_failed",
                error=str(e),
                error_code=e.code,
                tagged_as=progress.tagged_as,
            )
            self._record("mutate", progress.registry, start, success=False)
            return progress.outcome(e)

        log.info(
            "mutate_completed",
            old_digest=progress.old_digest,
            new_digest=progress.new_digest,
        )
        self._record("mutate", progress.registry, start, success=True)
        return progress.outcome()

    def remove_labels(
        self,
        image: str,
        labels: Sequence[str],
        extra_tags: Sequence[str] = (),
    ) -> MutationOutcome:
        """Remove ``labels`` from ``image``."""
        return self.mutate(image, LabelDelta(removals=tuple(labels)), extra_tags)

    def update_labels(
        self,
        image: str,
        labels: Mapping[str, str],
        extra_tags: Sequence[str] = (),
    ) -> MutationOutcome:
        """Set ``labels`` on ``image``."""
        return self.mutate(image, LabelDelta(updates=dict(labels)), extra_tags)

    def modify_labels(
        self,
        image: str,
        remove: Sequence[str],
        update: Mapping[str, str],
        extra_tags: Sequence[str] = (),
    ) -> MutationOutcome:
        """Remove and set labels on ``image`` in one republish."""
        return self.mutate(
            image,
            LabelDelta(removals=tuple(remove), updates=dict(update)),
            extra_tags,
        )

    def _run_mutation(
        self,
        progress: _Progress,
        image: str,
        delta: LabelDelta,
        extra_tags: Sequence[str],
    ) -> None:
        reference = parse_reference(image)
        progress.registry = reference.registry
        targets = [reference.with_tag(tag) for tag in extra_tags]

        fetched = self._client.fetch_image(reference)
        progress.old_digest = fetched.manifest.digest

        if reference.kind is ReferenceKind.DIGEST and not targets:
            raise DigestWithoutTagError(str(reference))

        change = apply_delta(fetched.config.labels, delta)
        progress.removed = change.removed
        progress.updated = change.updated
        if delta.removals and not delta.updates and not change.removed:
            raise NoOpMutationError(delta.removals)

        config = fetched.config.with_labels(change.labels)
        stored = self._client.push_blob(reference, config.raw, config.digest)
        if stored != config.digest:
            raise RegistryIntegrityError(
                config.digest, stored, f"{reference.repository_ref} config"
            )
        logger.debug("config_pushed", digest=config.digest, size=config.size)

        manifest = fetched.manifest.with_config(config)

        if reference.kind is ReferenceKind.TAG:
            self._client.push_manifest(reference, manifest)
            progress.new_digest = manifest.digest
            logger.info("manifest_pushed", reference=str(reference), digest=manifest.digest)

        result = self._publisher.publish(manifest, targets)
        progress.tagged_as = result.pushed
        if result.pushed:
            progress.new_digest = manifest.digest
        if result.error is not None:
            raise result.error

    def _record(self, operation: str, registry: str, start: float, *, success: bool) -> None:
        self.metrics.record_duration(operation, registry, time.monotonic() - start)
        self.metrics.record_operation(operation, registry, success=success)


__all__ = ["LabelChange", "LabelMutationEngine", "apply_delta"]

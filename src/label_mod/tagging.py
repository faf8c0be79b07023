"""Publishing one manifest under several tags.

Tags are pushed in the order supplied and are never de-duplicated. A failure
stops any further pushes; tags already pushed stay in place. With more than
one worker, pushes run on a thread pool but the result is still reported in
supplied order and the reported error is the earliest failing tag.

Example:
    >>> publisher = TagPublisher(client, max_workers=4)
    >>> result = publisher.publish(manifest, [ref.with_tag("v2"), ref.with_tag("stable")])
    >>> result.pushed
    ['registry.example.com/app:v2', 'registry.example.com/app:stable']
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from label_mod.errors import LabelModError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from label_mod.client import RegistryClient
    from label_mod.manifest import ImageManifest
    from label_mod.reference import ImageReference

logger = structlog.get_logger(__name__)

MAX_WORKERS_LIMIT = 20
"""Maximum allowed workers to avoid overwhelming registries."""


@dataclass
class TagPushResult:
    """Outcome of publishing a manifest under a list of tags.

    Attributes:
        pushed: Fully-qualified references that were pushed, in supplied order.
        error: First failure in supplied order, if any.
        failed_tag: Reference whose push produced ``error``.
    """

    pushed: list[str] = field(default_factory=list)
    error: LabelModError | None = None
    failed_tag: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class TagPublisher:
    """Pushes an already-built manifest to a sequence of tag references."""

    def __init__(self, client: RegistryClient, max_workers: int = 1) -> None:
        """Initialize TagPublisher.

        Args:
            client: Registry client used for every push.
            max_workers: Parallel pushes. 1 pushes sequentially. Capped at
                MAX_WORKERS_LIMIT.
        """
        self._client = client
        self._max_workers = max(1, min(max_workers, MAX_WORKERS_LIMIT))

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def publish(
        self,
        manifest: ImageManifest,
        targets: Sequence[ImageReference],
    ) -> TagPushResult:
        """Push ``manifest`` under every target tag.

        Args:
            manifest: The manifest to publish; its bytes are never re-encoded.
            targets: Tag references in the order they should be pushed.

        Returns:
            TagPushResult listing the tags that provably succeeded.
        """
        if not targets:
            return TagPushResult()
        if self._max_workers == 1 or len(targets) == 1:
            return self._publish_sequential(manifest, targets)
        return self._publish_concurrent(manifest, targets)

    def _publish_sequential(
        self,
        manifest: ImageManifest,
        targets: Sequence[ImageReference],
    ) -> TagPushResult:
        result = TagPushResult()
        for target in targets:
            try:
                self._client.push_manifest(target, manifest)
            except LabelModError as e:
                logger.warning("tag_push_failed", tag=str(target), error=str(e))
                result.error = e
                result.failed_tag = str(target)
                return result
            logger.info("tag_pushed", tag=str(target), digest=manifest.digest)
            result.pushed.append(str(target))
        return result

    def _publish_concurrent(
        self,
        manifest: ImageManifest,
        targets: Sequence[ImageReference],
    ) -> TagPushResult:
        stop = threading.Event()
        succeeded: set[int] = set()
        failures: dict[int, LabelModError] = {}

        log = logger.bind(total_tags=len(targets), max_workers=self._max_workers)
        log.debug("tag_fanout_started")

        def _push_single(target: ImageReference) -> bool:
            """Push one tag unless a failure has already been observed."""
            if stop.is_set():
                return False
            self._client.push_manifest(target, manifest)
            return True

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures: dict[Future[bool], int] = {
                executor.submit(_push_single, target): index
                for index, target in enumerate(targets)
            }
            try:
                for future in as_completed(futures):
                    index = futures[future]
                    error = future.exception()
                    if error is None:
                        if future.result():
                            succeeded.add(index)
                            logger.info("tag_pushed", tag=str(targets[index]))
                        continue
                    stop.set()
                    if not isinstance(error, LabelModError):
                        raise error
                    logger.warning("tag_push_failed", tag=str(targets[index]), error=str(error))
                    failures[index] = error
            except BaseException:
                stop.set()
                for pending in futures:
                    pending.cancel()
                raise

        result = TagPushResult(pushed=[str(targets[i]) for i in sorted(succeeded)])
        if failures:
            first = min(failures)
            result.error = failures[first]
            result.failed_tag = str(targets[first])
        log.debug("tag_fanout_completed", pushed=len(result.pushed), failed=len(failures))
        return result


__all__ = ["MAX_WORKERS_LIMIT", "TagPublisher", "TagPushResult"]

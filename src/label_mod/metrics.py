"""OpenTelemetry metrics and spans for label operations.

Metrics Emitted:
    Counters:
        - label_mod_operations_total: Operations by type, registry and status
        - label_mod_pushes_total: Blob and manifest pushes by kind and status

    Histograms:
        - label_mod_operation_duration_seconds: Operation duration distribution

Trace Spans:
    - label_mod.inspect: Full inspect operation
    - label_mod.mutate: Full mutate operation
    - label_mod.fetch: Manifest and config fetch
    - label_mod.push_blob: Config blob upload
    - label_mod.push_manifest: Manifest upload to one tag

Without a configured OpenTelemetry SDK every instrument is a no-op.

Example:
    >>> metrics = get_mutation_metrics()
    >>> metrics.record_operation("mutate", "registry.example.com", success=True)
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.metrics import Counter, Histogram
    from opentelemetry.trace import Span, Tracer

logger = structlog.get_logger(__name__)


class MutationMetrics:
    """OpenTelemetry instrumentation for inspect, mutate and registry pushes.

    Label Conventions:
        - operation: inspect, mutate
        - status: success, failure
        - registry: Registry host
        - kind: blob, manifest
    """

    OPERATIONS_TOTAL = "label_mod_operations_total"
    PUSHES_TOTAL = "label_mod_pushes_total"
    OPERATION_DURATION_SECONDS = "label_mod_operation_duration_seconds"

    SPAN_INSPECT = "label_mod.inspect"
    SPAN_MUTATE = "label_mod.mutate"
    SPAN_FETCH = "label_mod.fetch"
    SPAN_PUSH_BLOB = "label_mod.push_blob"
    SPAN_PUSH_MANIFEST = "label_mod.push_manifest"

    def __init__(
        self,
        meter_name: str = "label_mod",
        meter_version: str = "1.0.0",
        tracer_name: str = "label_mod",
    ) -> None:
        self._meter = metrics.get_meter(meter_name, meter_version)
        self._tracer: Tracer = trace.get_tracer(tracer_name)

        self._operations_counter: Counter | None = None
        self._pushes_counter: Counter | None = None
        self._duration_histogram: Histogram | None = None

    @property
    def operations_counter(self) -> Counter:
        """Get or create the operations counter."""
        if self._operations_counter is None:
            self._operations_counter = self._meter.create_counter(
                self.OPERATIONS_TOTAL,
                unit="1",
                description="Total label operations by type, status and registry",
            )
        return self._operations_counter

    @property
    def pushes_counter(self) -> Counter:
        """Get or create the pushes counter."""
        if self._pushes_counter is None:
            self._pushes_counter = self._meter.create_counter(
                self.PUSHES_TOTAL,
                unit="1",
                description="Total blob and manifest pushes by kind and status",
            )
        return self._pushes_counter

    @property
    def duration_histogram(self) -> Histogram:
        """Get or create the duration histogram."""
        if self._duration_histogram is None:
            self._duration_histogram = self._meter.create_histogram(
                self.OPERATION_DURATION_SECONDS,
                unit="s",
                description="Duration of label operations in seconds",
            )
        return self._duration_histogram

    def record_operation(self, operation: str, registry: str, *, success: bool) -> None:
        """Record an operation completion.

        Args:
            operation: inspect or mutate.
            registry: Registry host.
            success: Whether the operation succeeded.
        """
        attributes: dict[str, Any] = {
            "operation": operation,
            "registry": registry,
            "status": "success" if success else "failure",
        }
        self.operations_counter.add(1, attributes=attributes)

    def record_push(self, kind: str, registry: str, *, success: bool) -> None:
        """Record one blob or manifest push."""
        attributes: dict[str, Any] = {
            "kind": kind,
            "registry": registry,
            "status": "success" if success else "failure",
        }
        self.pushes_counter.add(1, attributes=attributes)

    def record_duration(self, operation: str, registry: str, duration_seconds: float) -> None:
        attributes: dict[str, Any] = {"operation": operation, "registry": registry}
        self.duration_histogram.record(duration_seconds, attributes=attributes)

    @contextmanager
    def create_span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[Span, None, None]:
        """Create a trace span, marking it as errored if the block raises.

        Args:
            name: Span name (use SPAN_* constants).
            attributes: Optional span attributes.

        Yields:
            The created span.
        """
        with self._tracer.start_as_current_span(name) as span:
            if attributes:
                for key, value in attributes.items():
                    span.set_attribute(key, value)
            try:
                yield span
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


_default_metrics: MutationMetrics | None = None


def get_mutation_metrics() -> MutationMetrics:
    """Return the process-wide MutationMetrics instance."""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = MutationMetrics()
    return _default_metrics


def set_mutation_metrics(metrics_instance: MutationMetrics | None) -> None:
    """Replace the process-wide instance (for testing).

    Args:
        metrics_instance: MutationMetrics instance or None to reset.
    """
    global _default_metrics
    _default_metrics = metrics_instance


__all__ = ["MutationMetrics", "get_mutation_metrics", "set_mutation_metrics"]

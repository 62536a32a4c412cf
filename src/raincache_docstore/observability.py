"""
Observability for the storage engine.

Provides:
- OpenTelemetry span wrapper (no-op when tracing is disabled)
- Operation metrics exported through prometheus-client, with an in-process
  percentile view for ``get_metrics()``
"""

import statistics
import time
import logging
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import Any, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

class Tracer:
    """
    Thin wrapper over an OpenTelemetry tracer.

    The tracer provider is whatever the host application configured; if none
    was configured the API hands back a no-op tracer and spans cost nothing.
    """

    def __init__(self, service_name: str = "raincache-docstore", enabled: bool = True, tracer_provider=None):
        self.service_name = service_name
        self.enabled = enabled
        self._tracer = None

        if enabled:
            from opentelemetry import trace

            self._tracer = trace.get_tracer(service_name, tracer_provider=tracer_provider)
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")

    @asynccontextmanager
    async def span(self, name: str, attributes: Optional[dict[str, Any]] = None):
        """
        Create a traced span for an operation.

        Args:
            name: Span name (e.g., "raincache.get", "raincache.add_to_list")
            attributes: Span attributes (metadata)
        """
        if not self.enabled or self._tracer is None:
            yield None
            return

        from opentelemetry import trace

        with self._tracer.start_as_current_span(name) as span:
            if attributes:
                for key, value in attributes.items():
                    span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))

            try:
                yield span
                span.set_status(trace.Status(trace.StatusCode.OK))
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


def configure_tracing(service_name: str = "raincache-docstore", exporter=None, set_global: bool = True):
    """
    Build an OpenTelemetry SDK tracer provider for processes that have none.

    Args:
        service_name: Reported as the ``service.name`` resource attribute
        exporter: Span exporter; spans are printed to the console if omitted
        set_global: Install the provider as the process-wide default

    Returns:
        The configured TracerProvider
    """
    from opentelemetry import trace
    from opentelemetry.sdk.resources import Resource, SERVICE_NAME
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))

    if set_global:
        trace.set_tracer_provider(provider)

    logger.info(f"OpenTelemetry tracer provider configured for {service_name}")
    return provider


# ============================================================================
# Metrics
# ============================================================================

def _validate_percentiles(percentiles: list[float]) -> list[float]:
    for p in percentiles:
        if not 0.01 <= p <= 0.99 or abs(p * 100 - round(p * 100)) > 1e-9:
            raise ValueError(f"Percentiles must be whole percents between 0.01 and 0.99, got {p}")
    return percentiles


class PercentileTracker:
    """
    Track percentile latencies (p50, p95, p99) over a sliding window.
    """

    def __init__(self, window_size: int = 1000, percentiles: list[float] | None = None):
        self.percentiles = _validate_percentiles(percentiles or [0.5, 0.95, 0.99])
        self.samples: deque[float] = deque(maxlen=window_size)

    def record(self, value: float):
        self.samples.append(value)

    def get_stats(self) -> dict[str, Any]:
        """Return count, avg, min, max and the configured percentiles."""
        names = [f"p{round(p * 100)}" for p in self.percentiles]
        if not self.samples:
            return {"count": 0, "avg": 0.0, "min": 0.0, "max": 0.0, **{name: 0.0 for name in names}}

        ordered = sorted(self.samples)
        if len(ordered) > 1:
            cuts = statistics.quantiles(ordered, n=100, method="inclusive")
            values = [cuts[round(p * 100) - 1] for p in self.percentiles]
        else:
            values = [ordered[0]] * len(self.percentiles)

        return {
            "count": len(ordered),
            "avg": statistics.mean(ordered),
            "min": ordered[0],
            "max": ordered[-1],
            **dict(zip(names, values)),
        }


class EngineMetrics:
    """
    Operation counters and latency histograms.

    Each instance owns its own prometheus ``CollectorRegistry`` so several
    engines in one process never collide on metric names.
    """

    def __init__(
        self,
        service_name: str = "raincache_docstore",
        registry: CollectorRegistry | None = None,
        percentiles: list[float] | None = None,
    ):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self.percentiles = _validate_percentiles(percentiles or [0.5, 0.95, 0.99])

        self._operations = Counter(
            "raincache_operations",
            "Storage engine operations executed",
            ["service", "operation"],
            registry=self.registry,
        )
        self._errors = Counter(
            "raincache_errors",
            "Storage engine operations that raised",
            ["service", "operation", "error_type"],
            registry=self.registry,
        )
        self._latency = Histogram(
            "raincache_operation_latency_seconds",
            "Storage engine operation latency",
            ["service", "operation"],
            registry=self.registry,
        )

        self.latencies: dict[str, PercentileTracker] = defaultdict(
            lambda: PercentileTracker(percentiles=self.percentiles)
        )
        self.operation_counts: dict[str, int] = defaultdict(int)
        self.error_counts: dict[str, int] = defaultdict(int)
        self.error_types: dict[str, int] = defaultdict(int)
        self.start_time = time.time()

    def record(self, operation: str, latency_ms: float, success: bool = True, error_type: str | None = None):
        """
        Record one operation.

        Args:
            operation: Operation name (e.g., 'get', 'upsert', 'cql_scan')
            latency_ms: Latency in milliseconds
            success: Whether the operation succeeded
            error_type: Exception class name if it failed
        """
        self._operations.labels(self.service_name, operation).inc()
        self._latency.labels(self.service_name, operation).observe(latency_ms / 1000.0)
        self.latencies[operation].record(latency_ms)
        self.operation_counts[operation] += 1

        if not success:
            self.error_counts[operation] += 1
            error_type = error_type or "unknown"
            self.error_types[error_type] += 1
            self._errors.labels(self.service_name, operation, error_type).inc()

    def get_stats(self) -> dict[str, Any]:
        total_operations = sum(self.operation_counts.values())
        total_errors = sum(self.error_counts.values())

        return {
            "uptime_seconds": time.time() - self.start_time,
            "total_operations": total_operations,
            "total_errors": total_errors,
            "error_rate": total_errors / total_operations if total_operations > 0 else 0.0,
            "operations": dict(self.operation_counts),
            "errors": dict(self.error_counts),
            "error_types": dict(self.error_types),
            "latencies": {
                operation: tracker.get_stats()
                for operation, tracker in self.latencies.items()
            },
        }

    def export_prometheus(self) -> str:
        """Render this instance's metrics in the Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")

"""OpenTelemetry metrics for event synchronization.

Instruments
-----------
  eventsync.remote.failures      Counter  (label: operation)
      Remote gateway calls that failed, by engine operation.

  eventsync.cache.fallbacks      Counter
      Loads served from the local cache because the remote was unavailable.

  eventsync.reconcile.synced     Counter
      Local-only events accepted by the server during reconciliation.

Call ``init_metrics(service_name)`` once at process start. When
OTEL_EXPORTER_OTLP_ENDPOINT is not set the global no-op MeterProvider stays in
place and every recording is a silent no-op.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "eventsync"


def init_metrics(service_name: str) -> metrics.Meter:
    """Install an OTLP-exporting MeterProvider when an endpoint is configured."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    exporter = OTLPMetricExporter(endpoint=endpoint)
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=15_000)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    metrics.set_meter_provider(provider)
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


class SyncMetrics:
    """Sync outcome counters for one cache key.

    Instruments are created on first use so constructing this before
    ``init_metrics`` is safe.
    """

    def __init__(self, cache_key: str) -> None:
        self._attrs = {"cache_key": cache_key}
        self.__remote_failures: metrics.Counter | None = None
        self.__cache_fallbacks: metrics.Counter | None = None
        self.__reconcile_synced: metrics.Counter | None = None

    @property
    def _remote_failures(self) -> metrics.Counter:
        if self.__remote_failures is None:
            self.__remote_failures = get_meter().create_counter(
                name="eventsync.remote.failures",
                description="Remote events API calls that failed",
                unit="calls",
            )
        return self.__remote_failures

    @property
    def _cache_fallbacks(self) -> metrics.Counter:
        if self.__cache_fallbacks is None:
            self.__cache_fallbacks = get_meter().create_counter(
                name="eventsync.cache.fallbacks",
                description="Loads served from the local cache after a remote failure",
                unit="loads",
            )
        return self.__cache_fallbacks

    @property
    def _reconcile_synced(self) -> metrics.Counter:
        if self.__reconcile_synced is None:
            self.__reconcile_synced = get_meter().create_counter(
                name="eventsync.reconcile.synced",
                description="Local-only events accepted by the server",
                unit="events",
            )
        return self.__reconcile_synced

    def remote_failure(self, operation: str) -> None:
        self._remote_failures.add(1, {**self._attrs, "operation": operation})

    def cache_fallback(self) -> None:
        self._cache_fallbacks.add(1, self._attrs)

    def reconcile_synced(self, count: int) -> None:
        if count > 0:
            self._reconcile_synced.add(count, self._attrs)

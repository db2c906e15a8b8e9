"""OpenTelemetry + Prometheus fallback wiring for reviewsync."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from reviewsync import config

logger = logging.getLogger("reviewsync.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_fetch_counter: Any | None = None
_fetch_latency_hist: Any | None = None
_sync_run_counter: Any | None = None
_persist_counter: Any | None = None
_persist_latency_hist: Any | None = None

_prom_enabled = False
_prom_fetch_counter: Any | None = None
_prom_fetch_latency_hist: Any | None = None
_prom_sync_run_counter: Any | None = None
_prom_persist_counter: Any | None = None
_prom_persist_latency_hist: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _fetch_counter, _fetch_latency_hist, _sync_run_counter, _persist_counter, _persist_latency_hist
    global _prom_enabled, _prom_fetch_counter, _prom_fetch_latency_hist, _prom_sync_run_counter
    global _prom_persist_counter, _prom_persist_latency_hist

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (REVIEWSYNC_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "reviewsync"

    resource = Resource.create({"service.name": service_name, "service.namespace": "reviewsync"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("reviewsync")

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("reviewsync")

    _fetch_counter = meter.create_counter(
        "reviewsync_scope_fetches_total",
        unit="1",
        description="Scope fetches by entity kind and outcome",
    )
    _fetch_latency_hist = meter.create_histogram(
        "reviewsync_scope_fetch_latency_ms",
        unit="ms",
        description="Latency of remote scope fetches",
    )
    _sync_run_counter = meter.create_counter(
        "reviewsync_sync_runs_total",
        unit="1",
        description="Sync runs by trigger and outcome",
    )
    _persist_counter = meter.create_counter(
        "reviewsync_persist_writes_total",
        unit="1",
        description="Physical snapshot writes by namespace and outcome",
    )
    _persist_latency_hist = meter.create_histogram(
        "reviewsync_persist_latency_ms",
        unit="ms",
        description="Snapshot write latency",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_fetch_counter = Counter(
                "reviewsync_scope_fetches_total",
                "Scope fetches by entity kind and outcome",
                ["entity", "result", "repo"],
            )
            _prom_fetch_latency_hist = Histogram(
                "reviewsync_scope_fetch_latency_ms",
                "Latency of remote scope fetches",
                ["entity", "result", "repo"],
            )
            _prom_sync_run_counter = Counter(
                "reviewsync_sync_runs_total",
                "Sync runs by trigger and outcome",
                ["trigger", "result"],
            )
            _prom_persist_counter = Counter(
                "reviewsync_persist_writes_total",
                "Physical snapshot writes by namespace and outcome",
                ["namespace", "result"],
            )
            _prom_persist_latency_hist = Histogram(
                "reviewsync_persist_latency_ms",
                "Snapshot write latency",
                ["namespace"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    for step in (
        lambda: app and _fastapi_instrumentor and _fastapi_instrumentor.uninstrument_app(app),
        lambda: _meter_provider is not None and _meter_provider.shutdown(),
        lambda: _trace_provider is not None and _trace_provider.shutdown(),
    ):
        try:
            step()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Observability shutdown step failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_scope_fetch(entity: str, result: str, duration_ms: float, *, scope: str) -> None:
    labels = {"entity": entity or "unknown", "result": result or "unknown", "scope": scope or "unknown"}
    if _enabled and _fetch_counter is not None:
        _fetch_counter.add(1, labels)
    if _enabled and _fetch_latency_hist is not None:
        _fetch_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_fetch_counter is not None:
        prom = _prom_labels(entity=entity, result=result, repo=scope)
        _prom_fetch_counter.labels(**prom).inc()
    if _prom_enabled and _prom_fetch_latency_hist is not None:
        prom = _prom_labels(entity=entity, result=result, repo=scope)
        _prom_fetch_latency_hist.labels(**prom).observe(max(0.0, float(duration_ms)))


def record_sync_run(trigger: str, result: str) -> None:
    labels = {"trigger": trigger or "unknown", "result": result or "unknown"}
    if _enabled and _sync_run_counter is not None:
        _sync_run_counter.add(1, labels)
    if _prom_enabled and _prom_sync_run_counter is not None:
        _prom_sync_run_counter.labels(**_prom_labels(**labels)).inc()


def record_persist_write(namespace: str, result: str, duration_ms: float) -> None:
    labels = {"namespace": namespace or "unknown", "result": result or "unknown"}
    if _enabled and _persist_counter is not None:
        _persist_counter.add(1, labels)
    if _enabled and _persist_latency_hist is not None:
        _persist_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_persist_counter is not None:
        _prom_persist_counter.labels(**_prom_labels(**labels)).inc()
    if _prom_enabled and _prom_persist_latency_hist is not None:
        _prom_persist_latency_hist.labels(**_prom_labels(namespace=namespace)).observe(max(0.0, float(duration_ms)))

"""OpenTelemetry instrumentation for osoba.

Counters exist only after init_telemetry() runs with an endpoint; the
record_* helpers are no-ops before that.
"""

import subprocess

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from osoba.logger import get_logger

logger = get_logger(__name__)


def get_git_version() -> str:
    """Get the current git commit SHA (short).

    Returns:
        Short commit SHA (e.g., '352de11'), or 'unknown' outside a git checkout.
    """
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        return "unknown"


_initialized = False
_tracer: trace.Tracer | None = None
_claim_counter: metrics.Counter | None = None
_dispatch_counter: metrics.Counter | None = None
_merge_counter: metrics.Counter | None = None
_tick_counter: metrics.Counter | None = None


def _create_instruments(meter: metrics.Meter) -> None:
    global _claim_counter, _dispatch_counter, _merge_counter, _tick_counter

    _claim_counter = meter.create_counter(
        "osoba.claims",
        description="Label claim attempts by outcome",
    )
    _dispatch_counter = meter.create_counter(
        "osoba.dispatches",
        description="Agent dispatches by phase and outcome",
    )
    _merge_counter = meter.create_counter(
        "osoba.merges",
        description="Auto-merge attempts by outcome",
    )
    _tick_counter = meter.create_counter(
        "osoba.ticks",
        description="Watcher poll ticks by watcher and outcome",
    )


def init_telemetry(
    endpoint: str,
    service_name: str,
    service_version: str | None = None,
) -> None:
    """Initialize OpenTelemetry tracing and metrics.

    Args:
        endpoint: OTLP endpoint URL (e.g., http://localhost:4318)
        service_name: Service name for telemetry (e.g., "osoba")
        service_version: Optional service version
    """
    global _initialized, _tracer

    if _initialized or not endpoint:
        return

    resource_attrs = {"service.name": service_name}
    if service_version:
        resource_attrs["service.version"] = service_version
    resource = Resource.create(resource_attrs)

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=f"{endpoint}/v1/traces"))
    )
    trace.set_tracer_provider(trace_provider)
    _tracer = trace.get_tracer(__name__)

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=f"{endpoint}/v1/metrics"), export_interval_millis=10000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[metric_reader]))
    _create_instruments(metrics.get_meter(__name__))

    _initialized = True
    logger.info(f"OpenTelemetry initialized: endpoint={endpoint}, service={service_name}")


def get_tracer() -> trace.Tracer:
    """Get the global tracer, or a no-op tracer if not initialized."""
    return _tracer or trace.get_tracer(__name__)


def record_claim(outcome: str) -> None:
    """Count a claim attempt ("claimed", "conflict" or "error")."""
    if _claim_counter:
        _claim_counter.add(1, {"outcome": outcome})


def record_dispatch(phase: str, outcome: str) -> None:
    """Count a dispatch ("launched", "resumed" or "error")."""
    if _dispatch_counter:
        _dispatch_counter.add(1, {"phase": phase, "outcome": outcome})


def record_merge(outcome: str) -> None:
    """Count an auto-merge attempt ("merged" or "failed")."""
    if _merge_counter:
        _merge_counter.add(1, {"outcome": outcome})


def record_tick(watcher: str, outcome: str) -> None:
    """Count a watcher tick ("success" or "failure")."""
    if _tick_counter:
        _tick_counter.add(1, {"watcher": watcher, "outcome": outcome})

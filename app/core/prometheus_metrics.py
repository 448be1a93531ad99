from prometheus_client import Counter, Histogram, Info, generate_latest
from prometheus_client.core import CollectorRegistry
import logging

logger = logging.getLogger(__name__)

# Prometheus Registry
REGISTRY = CollectorRegistry()

# Service call metrics
service_calls_total = Counter(
    'fleet_service_calls_total',
    'Total service operations executed',
    ['status', 'service', 'method'],
    registry=REGISTRY
)

service_call_duration_seconds = Histogram(
    'fleet_service_call_duration_seconds',
    'Service operation duration in seconds',
    ['service', 'method'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
    registry=REGISTRY
)

# Data access path metrics
procedure_fallbacks_total = Counter(
    'fleet_procedure_fallbacks_total',
    'Procedure calls that fell back to composed queries',
    ['operation', 'reason'],
    registry=REGISTRY
)

# Consistency metrics
status_corrections_total = Counter(
    'fleet_status_corrections_total',
    'Vehicle status drift corrected by reconciliation',
    ['from_status', 'to_status'],
    registry=REGISTRY
)

partial_failures_total = Counter(
    'fleet_partial_failures_total',
    'Operations whose companion status write failed',
    ['operation'],
    registry=REGISTRY
)

store_retries_total = Counter(
    'fleet_store_retries_total',
    'Store calls retried after a transient failure',
    ['operation'],
    registry=REGISTRY
)

system_info = Info(
    'fleet_core_info',
    'System information',
    registry=REGISTRY
)


class PrometheusMetricsCollector:
    """Thin facade over the fleet Prometheus metrics"""

    def __init__(self):
        system_info.info({
            'version': '1.0.0',
            'service': 'fleet-core'
        })

    def record_service_call(
        self,
        service_name: str,
        method_name: str,
        duration_seconds: float,
        success: bool
    ):
        status = 'success' if success else 'error'

        service_calls_total.labels(
            status=status,
            service=service_name,
            method=method_name
        ).inc()

        service_call_duration_seconds.labels(
            service=service_name,
            method=method_name
        ).observe(duration_seconds)

    def record_fallback(self, operation: str, reason: str):
        procedure_fallbacks_total.labels(operation=operation, reason=reason).inc()

    def record_status_correction(self, from_status: str, to_status: str):
        status_corrections_total.labels(from_status=from_status, to_status=to_status).inc()

    def record_partial_failure(self, operation: str):
        partial_failures_total.labels(operation=operation).inc()

    def record_retry(self, operation: str):
        store_retries_total.labels(operation=operation).inc()

    def get_prometheus_metrics(self) -> bytes:
        """Get Prometheus metrics in text format"""
        return generate_latest(REGISTRY)

# Global instance
prometheus_collector = PrometheusMetricsCollector()

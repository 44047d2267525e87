"""
Prometheus metrics configuration
"""
import os

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY, CollectorRegistry

if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
    _exposition_registry = CollectorRegistry()
    MultiProcessCollector(_exposition_registry)
else:
    _exposition_registry = REGISTRY

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

# ============================================================================
# Wizard Metrics
# ============================================================================

wizard_actions_total = Counter(
    'wizard_actions_total',
    'User actions handled by the wizard',
    ['action', 'outcome']  # outcome: 'accepted', 'rejected', 'ignored', 'no_session'
)

wizard_active_sessions = Gauge(
    'wizard_active_sessions',
    'Number of wizard sessions currently held in memory'
)

recommendations_total = Counter(
    'recommendations_total',
    'Computed recommendations by result',
    ['recommendation', 'source']
)

# ============================================================================
# LLM (advisor) Metrics
# ============================================================================

llm_requests_total = Counter(
    'llm_requests_total',
    'Total number of LLM requests',
    ['model', 'status']
)

llm_request_duration_seconds = Histogram(
    'llm_request_duration_seconds',
    'LLM request duration in seconds',
    ['model'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0)
)

advisor_agreement_total = Counter(
    'advisor_agreement_total',
    'Whether the advisor agreed with the weighted-sum recommendation',
    ['match']
)

# ============================================================================
# Persistence Metrics
# ============================================================================

answers_saved_total = Counter(
    'answers_saved_total',
    'Completed sessions written to the answers table',
    ['status']
)


def get_metrics_response() -> tuple:
    """Render metrics in Prometheus exposition format"""
    return generate_latest(_exposition_registry), CONTENT_TYPE_LATEST

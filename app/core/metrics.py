from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

REGISTRY = CollectorRegistry()

TRANSITIONS = Counter(
    'cluster_sizing_transitions_total', 'Committed size transitions',
    ['from_size', 'to_size', 'direction'], registry=REGISTRY,
)
ASSIGNMENTS = Counter(
    'cluster_sizing_assignments_total', 'Size assignments that bypassed debounce (initial or recovered)',
    ['kind'], registry=REGISTRY,
)
DEFERRED = Counter('cluster_sizing_deferred_total', 'Ready transitions deferred by the fleet limiter', registry=REGISTRY)
FETCH_FAILURES = Counter('cluster_sizing_fetch_failures_total', 'Node count fetch failures', registry=REGISTRY)
APPLY_FAILURES = Counter('cluster_sizing_apply_failures_total', 'Failed effect applications', registry=REGISTRY)
CYCLE_TIME = Histogram('cluster_sizing_cycle_seconds', 'Reconcile cycle duration', registry=REGISTRY)
CONFIG_VALID = Gauge('cluster_sizing_configuration_valid', '1 if the active configuration is valid', registry=REGISTRY)
WINDOW_USED = Gauge('cluster_sizing_window_transitions', 'Transitions inside the sliding window', registry=REGISTRY)
PENDING = Gauge('cluster_sizing_pending_clusters', 'Clusters with a pending size transition', registry=REGISTRY)


def render_latest():
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST

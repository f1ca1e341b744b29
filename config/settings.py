import os

CONFIG = {
    "prometheus_url": os.environ.get("PROMETHEUS_URL", "http://localhost:9090"),
    "prometheus_cluster_label": os.environ.get("PROMETHEUS_CLUSTER_LABEL", "cluster"),
    "prometheus_timeout": float(os.environ.get("PROMETHEUS_TIMEOUT", "10")),
    # static list of managed clusters; empty → discover from Prometheus
    "clusters": [c for c in os.environ.get("CLUSTER_SIZING_CLUSTERS", "").split(",") if c],
    # 'push' (node counts posted to the API) | 'prometheus'
    "node_count_source": os.environ.get("CLUSTER_SIZING_NODE_COUNT_SOURCE", "push"),
    # 'file' | 'kubernetes'
    "configuration_source": os.environ.get("CLUSTER_SIZING_CONFIGURATION_SOURCE", "file"),
    "configuration_path": os.environ.get("CLUSTER_SIZING_CONFIGURATION_PATH", "./config/cluster-sizing.yaml"),
    # 'none' | 'hostedcluster-label'
    "effects_applier": os.environ.get("CLUSTER_SIZING_EFFECTS_APPLIER", "none"),
    "dry_run": os.environ.get("CLUSTER_SIZING_DRY_RUN", "true").lower() in ("1", "true", "yes"),
    "state_path": os.environ.get("CLUSTER_SIZING_STATE_PATH", "./cluster_sizing_state.json"),
    "reconcile_interval": float(os.environ.get("CLUSTER_SIZING_RECONCILE_INTERVAL", "30")),  # seconds, 0 = only on demand
    "log_level": os.environ.get("CLUSTER_SIZING_LOG_LEVEL", "INFO"),
}

# status condition reasons
REASON_AS_EXPECTED = "AsExpected"
REASON_NOT_LOADED = "ConfigurationNotLoaded"

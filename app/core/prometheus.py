import math
import threading
from typing import Dict, Any, List, Optional, Protocol

import requests

from app.core.errors import CollaboratorFetchFailure


class NodeCountSource(Protocol):
    def list_clusters(self) -> List[str]: ...

    def node_count(self, cluster_id: str) -> int: ...


class PromClient:
    def __init__(self, base_url: str, cluster_label: str = 'cluster', timeout: float = 10):
        self.base_url = base_url.rstrip('/')
        self.cluster_label = cluster_label
        self.timeout = timeout

    def query(self, q: str) -> Dict[str, Any]:
        url = f"{self.base_url}/api/v1/query"
        r = requests.get(url, params={"query": q}, timeout=self.timeout)
        if r.status_code != 200:
            raise RuntimeError(f"Prometheus query failed: {r.status_code} {r.text}")
        body = r.json()
        if body.get('status') != 'success':
            raise RuntimeError(f"Prometheus query failed: {body.get('error', body)}")
        return body

    # tried in order until one returns a sample
    candidate_queries = {
        "node_count": [
            'count(kube_node_info{$LBL="$CLUSTER"})',
            'count(kube_node_status_condition{$LBL="$CLUSTER",condition="Ready",status="true"})',
            'sum(nodepool_ready_replicas{$LBL="$CLUSTER"})',
        ],
        "clusters": [
            'count by ($LBL) (kube_node_info)',
        ],
    }


def _first_value(result_json: Dict[str, Any]) -> Optional[float]:
    data = result_json.get('data', {}).get('result', [])
    if not data:
        return None
    v = float(data[0]['value'][1])
    if math.isnan(v) or math.isinf(v):
        return None
    return v


class PrometheusNodeCountSource:
    """Node counts per managed cluster, read from Prometheus."""

    def __init__(self, prom: PromClient, clusters: Optional[List[str]] = None):
        self.prom = prom
        self.clusters = list(clusters or [])

    def list_clusters(self) -> List[str]:
        if self.clusters:
            return list(self.clusters)
        found = set()
        for q in self.prom.candidate_queries['clusters']:
            res = self.prom.query(q.replace('$LBL', self.prom.cluster_label))
            for sample in res.get('data', {}).get('result', []):
                name = sample.get('metric', {}).get(self.prom.cluster_label)
                if name:
                    found.add(name)
        return sorted(found)

    def node_count(self, cluster_id: str) -> int:
        errors = []
        for q in self.prom.candidate_queries['node_count']:
            qq = q.replace('$LBL', self.prom.cluster_label).replace('$CLUSTER', cluster_id)
            try:
                v = _first_value(self.prom.query(qq))
            except (requests.RequestException, RuntimeError, ValueError, KeyError) as e:
                errors.append(str(e))
                continue
            if v is not None:
                return max(0, int(round(v)))
        raise CollaboratorFetchFailure(cluster_id, '; '.join(errors) or 'no samples')


class ObservedNodeCountSource:
    """Latest node counts pushed by watchers, keyed by cluster id."""

    def __init__(self):
        self._counts: Dict[str, Optional[int]] = {}
        self._lock = threading.Lock()

    def record(self, cluster_id: str, node_count: Optional[int]) -> None:
        # None marks the cluster as currently unmeasurable
        if node_count is not None and node_count < 0:
            raise ValueError(f"node count must be non-negative, got {node_count}")
        with self._lock:
            self._counts[cluster_id] = node_count

    def forget(self, cluster_id: str) -> None:
        with self._lock:
            self._counts.pop(cluster_id, None)

    def list_clusters(self) -> List[str]:
        with self._lock:
            return sorted(self._counts)

    def node_count(self, cluster_id: str) -> int:
        with self._lock:
            if cluster_id not in self._counts:
                raise CollaboratorFetchFailure(cluster_id, 'no observation recorded')
            count = self._counts[cluster_id]
        if count is None:
            raise CollaboratorFetchFailure(cluster_id, 'cluster marked unavailable')
        return count

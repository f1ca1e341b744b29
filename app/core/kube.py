import logging
import os
from typing import Dict, Any, List, Optional

from kubernetes import client, config

from app.core.interfaces import CONFIGURATION_NAME, ClusterSizingConfiguration, Condition, load_configuration
from app.core.partition import SizeClass

logger = logging.getLogger(__name__)

SIZING_GROUP = 'scheduling.hypershift.openshift.io'
SIZING_VERSION = 'v1alpha1'
SIZING_PLURAL = 'clustersizingconfigurations'

HOSTED_CLUSTER_GROUP = 'hypershift.openshift.io'
HOSTED_CLUSTER_VERSION = 'v1beta1'
HOSTED_CLUSTER_PLURAL = 'hostedclusters'
SIZE_LABEL = 'hypershift.openshift.io/hosted-cluster-size'


def init_k8s_clients() -> client.CustomObjectsApi:
    if os.getenv("KUBERNETES_SERVICE_HOST"):
        config.load_incluster_config()
        logger.info("kube.config.incluster")
    else:
        config.load_kube_config()
        logger.info("kube.config.local")
    return client.CustomObjectsApi()


class KubeConfigurationSource:
    """Reads the singleton sizing configuration object and publishes its conditions."""

    def __init__(self, api: Optional[client.CustomObjectsApi] = None, name: str = CONFIGURATION_NAME):
        self._api = api
        self.name = name

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = init_k8s_clients()
        return self._api

    def load(self) -> ClusterSizingConfiguration:
        obj = self.api.get_cluster_custom_object(SIZING_GROUP, SIZING_VERSION, SIZING_PLURAL, self.name)
        return load_configuration({'metadata': obj.get('metadata', {}), 'spec': obj.get('spec', {})})

    def publish_conditions(self, conditions: List[Condition]) -> None:
        body = {'status': {'conditions': [c.model_dump(by_alias=True, mode='json', exclude_none=True) for c in conditions]}}
        self.api.patch_cluster_custom_object_status(SIZING_GROUP, SIZING_VERSION, SIZING_PLURAL, self.name, body)


class HostedClusterLabelApplier:
    """Records the committed size on the HostedCluster as a label.

    Cluster ids are ``namespace/name``. Rendering the effects into pod specs,
    config maps and priority classes is left to the controllers watching that
    label.
    """

    def __init__(self, api: Optional[client.CustomObjectsApi] = None, dry_run: bool = False):
        self._api = api
        self.dry_run = dry_run
        self.applied: List[Dict[str, Any]] = []

    @property
    def api(self) -> client.CustomObjectsApi:
        if self._api is None:
            self._api = init_k8s_clients()
        return self._api

    def __call__(self, cluster_id: str, size: SizeClass) -> None:
        namespace, sep, name = cluster_id.partition('/')
        if not sep or not namespace or not name:
            raise ValueError(f"cluster id must be namespace/name, got {cluster_id!r}")
        patch = {'metadata': {'labels': {SIZE_LABEL: size.name}}}
        if self.dry_run:
            logger.info("kube.size_label.dry_run", extra={"cluster": cluster_id, "size": size.name})
        else:
            self.api.patch_namespaced_custom_object(
                HOSTED_CLUSTER_GROUP, HOSTED_CLUSTER_VERSION, namespace, HOSTED_CLUSTER_PLURAL, name, patch,
            )
        self.applied.append({
            'cluster': cluster_id, 'size': size.name, 'effects': size.effects.resolved(), 'dry_run': self.dry_run,
        })

"""
Resource Store - typed access to Emitters and Deployments.

Wraps the official Kubernetes client. The client is synchronous, so every
call is pushed to a worker thread and awaited. API errors
(kubernetes.client.ApiException) propagate unchanged; see errors.classify.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from kubernetes import client
from kubernetes import config as kube_config

from config import KubernetesConfig
from models import Emitter, ObjectKey

logger = logging.getLogger(__name__)


def load_kubernetes_config(cfg: KubernetesConfig) -> None:
    """Load API credentials, in-cluster first unless told otherwise."""
    if cfg.in_cluster is True:
        kube_config.load_incluster_config()
    elif cfg.in_cluster is False:
        kube_config.load_kube_config(config_file=cfg.kubeconfig)
    else:
        try:
            kube_config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes config")
        except kube_config.ConfigException:
            kube_config.load_kube_config(config_file=cfg.kubeconfig)
            logger.info("Loaded kubeconfig")


class ResourceStore:
    """
    Get/create/delete for the objects the reconciler works with.

    Emitters are returned as models.Emitter; Deployments as plain dicts in
    their wire (camelCase) form.
    """

    def __init__(
        self,
        cfg: Optional[KubernetesConfig] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
        apps_api: Optional[client.AppsV1Api] = None,
        api_client: Optional[client.ApiClient] = None,
    ):
        self.cfg = cfg or KubernetesConfig()
        self.api_client = api_client or client.ApiClient()
        self.custom_api = custom_api or client.CustomObjectsApi(self.api_client)
        self.apps_api = apps_api or client.AppsV1Api(self.api_client)

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    # ==================== Emitters ====================

    async def get_emitter(self, key: ObjectKey) -> Emitter:
        """Fetch an Emitter; raises ApiException(404) when absent."""
        raw = await asyncio.to_thread(
            self.custom_api.get_namespaced_custom_object,
            group=self.cfg.group,
            version=self.cfg.version,
            namespace=key.namespace,
            plural=self.cfg.plural,
            name=key.name,
        )
        return Emitter.from_resource(raw)

    async def list_emitters(self, namespace: Optional[str] = None) -> List[Emitter]:
        """List Emitters in one namespace, or cluster-wide if none given."""
        if namespace:
            raw = await asyncio.to_thread(
                self.custom_api.list_namespaced_custom_object,
                group=self.cfg.group,
                version=self.cfg.version,
                namespace=namespace,
                plural=self.cfg.plural,
            )
        else:
            raw = await asyncio.to_thread(
                self.custom_api.list_cluster_custom_object,
                group=self.cfg.group,
                version=self.cfg.version,
                plural=self.cfg.plural,
            )
        return [Emitter.from_resource(item) for item in raw.get("items", [])]

    # ==================== Deployments ====================

    async def get_deployment(self, namespace: str, name: str) -> Dict[str, Any]:
        """Fetch a Deployment; raises ApiException(404) when absent."""
        deployment = await asyncio.to_thread(
            self.apps_api.read_namespaced_deployment, name=name, namespace=namespace
        )
        return self._to_dict(deployment)

    async def create_deployment(
        self, namespace: str, body: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Create a Deployment from a manifest dict."""
        created = await asyncio.to_thread(
            self.apps_api.create_namespaced_deployment, namespace=namespace, body=body
        )
        logger.info(f"Created deployment {namespace}/{body['metadata']['name']}")
        return self._to_dict(created)

    async def delete_deployment(self, namespace: str, name: str) -> None:
        """Delete a Deployment by name."""
        await asyncio.to_thread(
            self.apps_api.delete_namespaced_deployment, name=name, namespace=namespace
        )
        logger.info(f"Deleted deployment {namespace}/{name}")

    async def list_deployments(
        self, namespace: str, annotations: Optional[Dict[str, str]] = None
    ) -> List[Dict[str, Any]]:
        """
        List Deployments in a namespace.

        Annotations cannot be used as server-side selectors, so matching on
        them happens here.
        """
        result = await asyncio.to_thread(
            self.apps_api.list_namespaced_deployment, namespace=namespace
        )
        items = [self._to_dict(item) for item in result.items]
        if not annotations:
            return items

        matched = []
        for item in items:
            present = (item.get("metadata") or {}).get("annotations") or {}
            if all(present.get(k) == v for k, v in annotations.items()):
                matched.append(item)
        return matched


def create_store(cfg: KubernetesConfig) -> ResourceStore:
    """Load cluster credentials and build a store."""
    load_kubernetes_config(cfg)
    return ResourceStore(cfg)

"""
Kubernetes side of subnetsync: SubnetSet CRs and Namespaces.

The service only needs a handful of calls, captured by :class:`KubeClient`.
:class:`KubernetesClient` implements them with the official ``kubernetes``
client; tests pass an in-memory fake.

    kube = KubernetesClient.from_config(in_cluster=False, kubeconfig="~/.kube/config")
    ns = kube.get_namespace("team-a")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import kubernetes
from kubernetes.client import ApiException, CoreV1Api, CustomObjectsApi

from .crd import CRD_GROUP, CRD_VERSION, SubnetSet

log = logging.getLogger("subnetsync.kube")


@dataclass
class NamespaceInfo:
    name: str
    uid: str
    labels: Dict[str, str] = field(default_factory=dict)


class KubeClient(Protocol):
    def get_namespace(self, name: str) -> NamespaceInfo: ...

    def get_subnetset(self, namespace: str, name: str) -> Optional[SubnetSet]: ...

    def list_subnetsets(self) -> List[SubnetSet]: ...

    def update_subnetset_status(self, subnetset: SubnetSet) -> None: ...


class KubernetesClient:
    """:class:`KubeClient` over ``CoreV1Api`` and ``CustomObjectsApi``."""

    def __init__(
        self,
        core_api: Optional[CoreV1Api] = None,
        custom_api: Optional[CustomObjectsApi] = None,
    ) -> None:
        self.core_api = core_api or CoreV1Api()
        self.custom_api = custom_api or CustomObjectsApi()

    @classmethod
    def from_config(cls, *, in_cluster: bool = False, kubeconfig: Optional[str] = None) -> "KubernetesClient":
        if in_cluster:
            kubernetes.config.load_incluster_config()
        else:
            kubernetes.config.load_kube_config(config_file=kubeconfig or None)
        return cls()

    def get_namespace(self, name: str) -> NamespaceInfo:
        ns = self.core_api.read_namespace(name)
        meta = ns.metadata
        return NamespaceInfo(name=meta.name, uid=str(meta.uid or ""), labels=dict(meta.labels or {}))

    def get_subnetset(self, namespace: str, name: str) -> Optional[SubnetSet]:
        try:
            obj = self.custom_api.get_namespaced_custom_object(
                CRD_GROUP, CRD_VERSION, namespace, SubnetSet.plural, name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return SubnetSet.from_dict(obj)

    def list_subnetsets(self) -> List[SubnetSet]:
        data: Dict[str, Any] = self.custom_api.list_cluster_custom_object(
            CRD_GROUP, CRD_VERSION, SubnetSet.plural,
        )
        return [SubnetSet.from_dict(item) for item in data.get("items") or []]

    def update_subnetset_status(self, subnetset: SubnetSet) -> None:
        meta = subnetset.metadata
        self.custom_api.patch_namespaced_custom_object_status(
            CRD_GROUP, CRD_VERSION, meta.namespace, SubnetSet.plural, meta.name,
            {"status": subnetset.status_dict()},
        )
        log.debug("SubnetSet status updated %s/%s subnets=%d", meta.namespace, meta.name, len(subnetset.subnets))

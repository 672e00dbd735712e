import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from subnetsync.core.crd import ObjectMeta, Subnet, SubnetSet, SubnetSpec
from subnetsync.core.errors import NotFoundError
from subnetsync.core.kube import NamespaceInfo
from subnetsync.core.realization import BackoffPolicy, RealizationTracker
from subnetsync.core.service import ServiceOptions, SubnetService
from subnetsync.core.store import SubnetStore


VPC = "/orgs/default/projects/p1/vpcs/v1"


class FakeNsx:
    """In-memory stand-in for NsxClient (same method names, dict payloads)."""

    def __init__(self) -> None:
        self.subnets: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.realized: Dict[str, List[str]] = {}
        self.realized_default = "REALIZED"
        self.status: Dict[str, List[Dict[str, Any]]] = {}
        self.allocations: Dict[str, List[Dict[str, Any]]] = {}
        self.pool_usage: Dict[str, Dict[str, Any]] = {}
        self.org_roots: List[Dict[str, Any]] = []
        self.delete_error: Optional[Exception] = None

    @staticmethod
    def _path(org, project, vpc, sid):
        return f"/orgs/{org}/projects/{project}/vpcs/{vpc}/subnets/{sid}"

    def _upsert(self, org, project, vpc, body):
        path = self._path(org, project, vpc, body["id"])
        cur = dict(self.subnets.get(path, {}))
        cur.update(copy.deepcopy(body))
        cur["path"] = path
        cur["parent_path"] = f"/orgs/{org}/projects/{project}/vpcs/{vpc}"
        cur["_revision"] = cur.get("_revision", -1) + 1
        self.subnets[path] = cur
        return cur

    def patch_subnet(self, org, project, vpc, subnet):
        self.calls.append(("patch", subnet["id"]))
        return self._upsert(org, project, vpc, subnet)

    def get_subnet(self, org, project, vpc, subnet_id):
        self.calls.append(("get", subnet_id))
        return self.get_by_path(self._path(org, project, vpc, subnet_id))

    def get_by_path(self, path):
        if path not in self.subnets:
            raise NotFoundError(status=404, url=path)
        return copy.deepcopy(self.subnets[path])

    def delete_subnet(self, org, project, vpc, subnet_id):
        self.calls.append(("delete", subnet_id))
        if self.delete_error is not None:
            raise self.delete_error
        path = self._path(org, project, vpc, subnet_id)
        if path not in self.subnets:
            raise NotFoundError(status=404, url=path)
        del self.subnets[path]

    def patch_org_root(self, org_root):
        self.calls.append(("org_root",))
        self.org_roots.append(copy.deepcopy(org_root))
        for org in org_root["children"]:
            for project in org["children"]:
                for vpc in project["children"]:
                    for leaf in vpc["children"]:
                        if leaf["marked_for_delete"]:
                            self.subnets.pop(self._path(org["id"], project["id"], vpc["id"], leaf["id"]), None)
                        else:
                            self._upsert(org["id"], project["id"], vpc["id"], leaf["VpcSubnet"])
        return {}

    def list_realized_entities(self, org, project, intent_path):
        self.calls.append(("realized", intent_path))
        seq = self.realized.get(intent_path)
        if seq:
            state = seq.pop(0) if len(seq) > 1 else seq[0]
        else:
            state = self.realized_default
        return [
            {"entity_type": "RealizedLogicalPort", "state": "UNKNOWN"},
            {"entity_type": "RealizedLogicalSwitch", "state": state},
        ]

    def list_subnet_status(self, org, project, vpc, subnet_id):
        return self.status.get(subnet_id, [
            {"network_address": "10.0.0.0/28", "gateway_address": "10.0.0.1/28", "dhcp_server_address": "10.0.0.2/28"},
        ])

    def list_ip_allocations(self, org, project, vpc, subnet_id):
        return list(self.allocations.get(subnet_id, []))

    def delete_ip_allocation(self, org, project, vpc, subnet_id, allocation_id):
        self.calls.append(("delete_alloc", subnet_id, allocation_id))
        self.allocations[subnet_id] = [a for a in self.allocations.get(subnet_id, []) if a["id"] != allocation_id]

    def get_ip_pool(self, org, project, vpc, subnet_id):
        return {"id": "static-ipv4-default", "pool_usage": self.pool_usage.get(subnet_id, {})}

    def search_query(self, query, cursor=None, page_size=None):
        self.calls.append(("search", query))
        results = [copy.deepcopy(s) for s in self.subnets.values()]
        return {"results": results, "cursor": str(len(results)), "result_count": len(results)}

    def writes(self):
        return [c for c in self.calls if c[0] in ("patch", "org_root", "delete")]


class FakeKube:
    def __init__(self) -> None:
        self.namespaces: Dict[str, NamespaceInfo] = {}
        self.subnetsets: Dict[tuple, SubnetSet] = {}
        self.status_updates: List[SubnetSet] = []

    def get_namespace(self, name):
        return self.namespaces.get(name) or NamespaceInfo(name=name, uid=f"uid-{name}")

    def get_subnetset(self, namespace, name):
        return self.subnetsets.get((namespace, name))

    def list_subnetsets(self):
        return list(self.subnetsets.values())

    def update_subnetset_status(self, subnetset):
        self.status_updates.append(copy.deepcopy(subnetset))


def _spec(**kw) -> SubnetSpec:
    spec = SubnetSpec()
    for k, v in kw.items():
        setattr(spec, k, v)
    return spec


@pytest.fixture()
def make_subnet():
    def make(name="s1", uid="u1", namespace="ns1", **spec):
        return Subnet(metadata=ObjectMeta(name=name, namespace=namespace, uid=uid), spec=_spec(**spec))
    return make


@pytest.fixture()
def make_subnetset():
    def make(name="ss1", uid="su1", namespace="ns1", labels=None, **spec):
        return SubnetSet(
            metadata=ObjectMeta(name=name, namespace=namespace, uid=uid, labels=dict(labels or {})),
            spec=_spec(**spec),
        )
    return make


@pytest.fixture()
def env():
    nsx = FakeNsx()
    kube = FakeKube()
    store = SubnetStore()
    tracker = RealizationTracker(nsx, BackoffPolicy(steps=3, duration_sec=0.0), sleep=lambda s: None)
    service = SubnetService(nsx, store, kube, ServiceOptions(cluster="c1"), tracker=tracker)
    return SimpleNamespace(nsx=nsx, kube=kube, store=store, tracker=tracker, service=service)

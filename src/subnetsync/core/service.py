"""
SubnetService — keeps NSX VpcSubnets in line with Subnet / SubnetSet CRs.

One instance per process, built explicitly and shared by reconcile workers:

    service = SubnetService.initialize(client, kube, ServiceOptions(cluster="c1"))
    remote = service.create_or_update_subnet(subnet_cr, vpc_info, tags=ns_tags)
    service.delete_subnet(remote)

create-or-update flow:
  1) build the desired object (identity checked against the store)
  2) look up the stored object for the same id
  3) unchanged -> return stored object, no remote call
  4) write (direct PATCH or hierarchical org-root PATCH)
  5) GET to pick up server-rendered fields (path, revision, ...)
  6) wait for realization; a failed create is deleted again
  7) commit to the store; refresh SubnetSet status
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .builder import SubnetBuilder, build_dhcp_config, format_access_mode, format_dhcp_mode, with_tags
from .compare import changed, merge
from .constants import (
    ANNOTATION_ASSOCIATED_RESOURCE,
    CR_TYPE_SUBNET,
    CR_TYPE_SUBNETSET,
    DEFAULT_ORG,
    MAX_TAG_SCOPE_LENGTH,
    MAX_TAG_VALUE_LENGTH,
    TAG_SCOPE_NAMESPACE,
    TAG_SCOPE_NAMESPACE_UID,
    TAG_SCOPE_SUBNETSET_CR_NAME,
    TAG_SCOPE_SUBNETSET_CR_UID,
    TAG_SCOPE_VM_NAMESPACE,
    TAG_SCOPE_VM_NAMESPACE_UID,
)
from .crd import ObjectMeta, Subnet, SubnetAdvancedSpec, SubnetDhcpSpec, SubnetInfo, SubnetSet, SubnetSpec
from .errors import CleanupCancelledError, NotFoundError, SubnetLookupError, SubnetStatusUnavailableError
from .hierarchy import wrap_hierarchy, wrap_hierarchy_subnets
from .identity import IdentityGenerator, Owner
from .inventory import SearchInventory, initialize_stores
from .kube import KubeClient
from .model import (
    RemoteSubnet,
    SubnetStatusInfo,
    Tag,
    VpcResourceInfo,
    associated_resource_path,
    parse_vpc_resource_path,
)
from .realization import BackoffPolicy, RealizationTracker
from .shared_cache import SharedSubnetCache
from .store import (
    INDEX_CR_TYPE,
    INDEX_SUBNET_UID,
    INDEX_SUBNETSET_UID,
    INDEX_VPC_PATH,
    Remove,
    SubnetStore,
    Upsert,
)


@dataclass
class ServiceOptions:
    cluster: str
    org: str = DEFAULT_ORG
    use_hierarchical_api: bool = False
    compare_static_ip_allocation: bool = False


class SubnetService:
    """Orchestrates builder, comparator, NSX writes, realization and the store."""

    def __init__(
        self,
        client: Any,
        store: SubnetStore,
        kube: KubeClient,
        options: ServiceOptions,
        *,
        tracker: Optional[RealizationTracker] = None,
        identity: Optional[IdentityGenerator] = None,
        shared_cache: Optional[SharedSubnetCache] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.store = store
        self.kube = kube
        self.options = options
        self.log = logger or logging.getLogger("subnetsync.service")
        self.tracker = tracker or RealizationTracker(client)
        self.identity = identity or IdentityGenerator(store)
        self.builder = SubnetBuilder(cluster=options.cluster, identity=self.identity, store=store)
        self.shared_cache = shared_cache or SharedSubnetCache(
            fetch_subnet=self.get_subnet_by_associated_resource,
            fetch_status=self.get_subnet_status,
        )

    @classmethod
    def initialize(
        cls,
        client: Any,
        kube: KubeClient,
        options: ServiceOptions,
        *,
        policy: Optional[BackoffPolicy] = None,
        max_attempts: int = 5,
        page_size: int = 1000,
        concurrency: int = 4,
        extra_loaders: Sequence[Callable[[], Any]] = (),
        logger: Optional[logging.Logger] = None,
    ) -> "SubnetService":
        """
        Build the store, load it from NSX (alongside ``extra_loaders``) and
        return a ready service. Raises StoreInitError if any loader fails.
        """
        store = SubnetStore()
        inventory = SearchInventory(client, cluster=options.cluster, page_size=page_size)
        initialize_stores([lambda: inventory.load(store)] + list(extra_loaders), concurrency=concurrency)
        return cls(
            client,
            store,
            kube,
            options,
            tracker=RealizationTracker(client, policy),
            identity=IdentityGenerator(store, max_attempts=max_attempts),
            logger=logger,
        )

    # ------------- Create / update / delete -------------

    def create_or_update_subnet(
        self,
        obj: Owner,
        vpc_info: VpcResourceInfo,
        tags: Iterable[Tag] = (),
        known_addresses: Sequence[str] = (),
    ) -> RemoteSubnet:
        desired = self.builder.build(obj, tags, known_addresses)
        existing = self.store.get_by_key(desired.id)
        if existing is not None:
            if not changed(existing, desired, include_static_ip_allocation=self.options.compare_static_ip_allocation):
                self.log.info("NSX subnet unchanged, skip updating id=%s", existing.id)
                return existing
            target = merge(existing, desired)
        else:
            target = desired
        return self._write(target, vpc_info, created=existing is None, owner=obj)

    def delete_subnet(self, subnet: RemoteSubnet) -> None:
        info = self._vpc_info_of(subnet)
        with self.store.locked(subnet.path):
            self._delete_remote(subnet, info)
            self.store.apply(Remove(subnet))
        self.log.info("deleted NSX subnet id=%s path=%s", subnet.id, subnet.path)

    def restore_subnetset(
        self,
        subnetset: SubnetSet,
        vpc_info: VpcResourceInfo,
        tags: Iterable[Tag] = (),
    ) -> List[RemoteSubnet]:
        """
        Recreate the children listed in the SubnetSet status that have no
        stored counterpart (e.g. after NSX was restored from backup), each with
        the network addresses it had before. Returns the recreated subnets.
        """
        tags = list(tags)
        stored = self.list_subnet_by_subnetset(subnetset.metadata.uid)
        stored_paths = {s.path for s in stored if s.path}
        stored_addresses = {ip for s in stored for ip in s.ip_addresses}
        restored: List[RemoteSubnet] = []
        # status is rewritten after every create
        for info in list(subnetset.subnets):
            if not info.network_addresses:
                continue
            if info.nsx_resource_path in stored_paths or stored_addresses.intersection(info.network_addresses):
                continue
            remote = self.create_or_update_subnet(subnetset, vpc_info, tags, known_addresses=info.network_addresses)
            stored_addresses.update(remote.ip_addresses)
            restored.append(remote)
            self.log.info(
                "restored SubnetSet child %s/%s id=%s addresses=%s",
                subnetset.metadata.namespace, subnetset.metadata.name, remote.id, info.network_addresses,
            )
        return restored

    def _write(self, target: RemoteSubnet, vpc_info: VpcResourceInfo, *, created: bool, owner: Owner) -> RemoteSubnet:
        org, project, vpc = vpc_info.org_id, vpc_info.project_id, vpc_info.vpc_id
        path = target.path or f"{vpc_info.vpc_path}/subnets/{target.id}"
        with self.store.locked(path):
            if self.options.use_hierarchical_api:
                self.client.patch_org_root(wrap_hierarchy(target, org, project, vpc))
            else:
                self.client.patch_subnet(org, project, vpc, target.to_dict())
            remote = RemoteSubnet.from_dict(self.client.get_subnet(org, project, vpc, target.id))
            if not remote.path:
                remote = replace(remote, path=path, parent_path=remote.parent_path or vpc_info.vpc_path)

            compensate = (lambda: self._delete_remote(remote, vpc_info)) if created else None
            self.tracker.ensure_realized(remote.path, compensate=compensate)
            self.store.apply(Upsert(remote))
        self.log.info("%s NSX subnet id=%s path=%s", "created" if created else "updated", remote.id, remote.path)

        if isinstance(owner, SubnetSet):
            self.update_subnetset_status(owner)
        return remote

    def _delete_remote(self, subnet: RemoteSubnet, info: VpcResourceInfo) -> None:
        try:
            if self.options.use_hierarchical_api:
                self.client.patch_org_root(
                    wrap_hierarchy(subnet.tombstone(), info.org_id, info.project_id, info.vpc_id)
                )
            else:
                self.client.delete_subnet(info.org_id, info.project_id, info.vpc_id, subnet.id)
        except NotFoundError:
            self.log.info("NSX subnet already gone id=%s", subnet.id)

    @staticmethod
    def _vpc_info_of(subnet: RemoteSubnet) -> VpcResourceInfo:
        return parse_vpc_resource_path(subnet.path or subnet.parent_path or "")

    # ------------- Queries -------------

    def list_subnet_created_by_cr(self) -> List[RemoteSubnet]:
        return self.store.get_by_index(INDEX_CR_TYPE, CR_TYPE_SUBNET)

    def list_subnet_created_by_subnetset(self) -> List[RemoteSubnet]:
        return self.store.get_by_index(INDEX_CR_TYPE, CR_TYPE_SUBNETSET)

    def list_subnet_by_subnet(self, uid: str) -> List[RemoteSubnet]:
        return self.store.get_by_index(INDEX_SUBNET_UID, uid)

    def list_subnet_by_subnetset(self, uid: str) -> List[RemoteSubnet]:
        return self.store.get_by_index(INDEX_SUBNETSET_UID, uid)

    def list_subnet_ids(self) -> Set[str]:
        """Owner CR UIDs (Subnet and SubnetSet) that have at least one remote subnet."""
        return self.store.list_index_func_values(INDEX_SUBNET_UID) | self.store.list_index_func_values(INDEX_SUBNETSET_UID)

    def list_subnetset_ids(self) -> Set[str]:
        """UIDs of the SubnetSet CRs that currently exist in Kubernetes."""
        return {s.metadata.uid for s in self.kube.list_subnetsets()}

    @staticmethod
    def is_orphan_subnet(subnet: RemoteSubnet, subnetset_ids: Set[str]) -> bool:
        return not any(uid in subnetset_ids for uid in subnet.tag_values(TAG_SCOPE_SUBNETSET_CR_UID))

    # ------------- Status / IP pools -------------

    def get_subnet_status(self, subnet: RemoteSubnet) -> List[SubnetStatusInfo]:
        info = self._vpc_info_of(subnet)
        results = self.client.list_subnet_status(info.org_id, info.project_id, info.vpc_id, subnet.id)
        if not results:
            raise SubnetStatusUnavailableError(f"empty status for NSX subnet {subnet.path}")
        return [SubnetStatusInfo.from_dict(r) for r in results]

    def update_subnetset_status(self, subnetset: SubnetSet) -> None:
        infos: List[SubnetInfo] = []
        for subnet in self.list_subnet_by_subnetset(subnetset.metadata.uid):
            info = SubnetInfo(nsx_resource_path=subnet.path or "")
            for st in self.get_subnet_status(subnet):
                if st.network_address:
                    info.network_addresses.append(st.network_address)
                if st.gateway_address:
                    info.gateway_addresses.append(st.gateway_address)
                if st.dhcp_server_address:
                    info.dhcp_server_addresses.append(st.dhcp_server_address)
            infos.append(info)
        subnetset.subnets = infos
        self.kube.update_subnetset_status(subnetset)

    def delete_ip_allocation(self, org: str, project: str, vpc: str, subnet_id: str) -> int:
        allocations = self.client.list_ip_allocations(org, project, vpc, subnet_id)
        for alloc in allocations:
            self.client.delete_ip_allocation(org, project, vpc, subnet_id, str(alloc.get("id")))
        self.log.debug("deleted %d IP allocations subnet=%s", len(allocations), subnet_id)
        return len(allocations)

    def get_ip_pool_usage(self, subnet: RemoteSubnet) -> Dict[str, Any]:
        info = self._vpc_info_of(subnet)
        pool = self.client.get_ip_pool(info.org_id, info.project_id, info.vpc_id, subnet.id)
        return dict(pool.get("pool_usage") or {})

    # ------------- Tags -------------

    def generate_subnet_ns_tags(self, obj: Owner, ns_uid: Optional[str] = None) -> List[Tag]:
        """
        Namespace UID tag plus the namespace labels (sorted by key).

        The UID scope follows the namespace scope used for the basic tags.
        """
        ns = self.kube.get_namespace(obj.metadata.namespace)
        uid = ns_uid or ns.uid
        uid_scope = TAG_SCOPE_NAMESPACE_UID if obj.uses_pod_namespace_scope() else TAG_SCOPE_VM_NAMESPACE_UID
        tags = [Tag(uid_scope, uid)]
        for key in sorted(ns.labels):
            tags.append(Tag(key[:MAX_TAG_SCOPE_LENGTH], str(ns.labels[key])[:MAX_TAG_VALUE_LENGTH]))
        return tags

    def update_subnetset_tags(
        self,
        namespace: str,
        subnets: Iterable[RemoteSubnet],
        tags: Iterable[Tag],
        dhcp_mode: Optional[str] = None,
    ) -> int:
        """
        Re-tag SubnetSet children in ``namespace`` and bring their DHCP mode in
        line with the SubnetSet (or with ``dhcp_mode`` when given, as a CR
        value such as ``DHCPServer``). Returns how many were written.
        """
        tags = list(tags)
        updated = 0
        for existing in subnets:
            if namespace not in existing.tag_values(TAG_SCOPE_NAMESPACE) + existing.tag_values(TAG_SCOPE_VM_NAMESPACE):
                continue
            name = existing.tag_value(TAG_SCOPE_SUBNETSET_CR_NAME)
            subnetset = self.kube.get_subnetset(namespace, name) if name else None
            if subnetset is None:
                self.log.info("SubnetSet %s/%s not found, skip re-tagging id=%s", namespace, name, existing.id)
                continue
            dhcp_spec = subnetset.spec.dhcp if dhcp_mode is None else replace(subnetset.spec.dhcp, mode=dhcp_mode)
            candidate = replace(
                with_tags(existing, self.builder.build_tags(subnetset, tags)),
                dhcp_config=build_dhcp_config(dhcp_spec),
            )
            if not changed(existing, candidate):
                self.log.info("NSX subnet tags and DHCP mode unchanged, skip updating id=%s", existing.id)
                continue
            self._write(candidate, self._vpc_info_of(existing), created=False, owner=subnetset)
            updated += 1
        return updated

    # ------------- Cleanup -------------

    def cleanup(self, cancel: Optional[threading.Event] = None) -> int:
        """Delete every owned subnet, checking ``cancel`` before each delete."""
        subnets = self.store.list_objects()
        deleted = 0
        for subnet in subnets:
            if cancel is not None and cancel.is_set():
                raise CleanupCancelledError(deleted, len(subnets) - deleted)
            self.delete_subnet(subnet)
            deleted += 1
        self.log.info("cleanup done: deleted=%d", deleted)
        return deleted

    def cleanup_vpc_subnets(self, vpc_path: str, cancel: Optional[threading.Event] = None) -> int:
        """Delete all subnets of one VPC with a single hierarchical request."""
        subnets = self.store.get_by_index(INDEX_VPC_PATH, vpc_path)
        if not subnets:
            return 0
        if cancel is not None and cancel.is_set():
            raise CleanupCancelledError(0, len(subnets))
        info = parse_vpc_resource_path(vpc_path)
        self.client.patch_org_root(
            wrap_hierarchy_subnets([s.tombstone() for s in subnets], info.org_id, info.project_id, info.vpc_id)
        )
        self.store.delete_multiple_objects(subnets)
        self.log.info("cleanup vpc=%s deleted=%d", vpc_path, len(subnets))
        return len(subnets)

    # ------------- Shared subnets -------------

    def get_subnet_by_associated_resource(self, associated_resource: str) -> RemoteSubnet:
        path = associated_resource_path(associated_resource, self.options.org)
        return RemoteSubnet.from_dict(self.client.get_by_path(path))

    def get_shared_subnet(self, associated_resource: str, force_refresh: bool = False) -> RemoteSubnet:
        return self.shared_cache.get_or_fetch(associated_resource, force_refresh=force_refresh)

    def get_shared_subnet_status(self, subnet: RemoteSubnet, associated_resource: str) -> List[SubnetStatusInfo]:
        return self.shared_cache.get_status_or_fetch(subnet, associated_resource)

    def update_shared_subnet_cache(self, associated_resource: str) -> RemoteSubnet:
        """Fetch subnet and status from NSX and overwrite the cache entry."""
        subnet = self.get_subnet_by_associated_resource(associated_resource)
        status = self.get_subnet_status(subnet)
        self.shared_cache.update(associated_resource, subnet, status)
        return subnet

    def remove_shared_subnet_from_cache(self, associated_resource: str, reason: str) -> bool:
        return self.shared_cache.invalidate(associated_resource, reason)

    def refresh_shared_subnets(self, referenced: Set[str]) -> None:
        """
        Periodic pass: refresh cached shared subnets still referenced by a
        SubnetSet/Subnet annotation, drop the others.
        """
        for key in self.shared_cache.keys():
            if key not in referenced:
                self.remove_shared_subnet_from_cache(key, "no longer referenced")
                continue
            self.update_shared_subnet_cache(key)

    # ------------- Lookups -------------

    def get_subnet_by_path(self, path: str, shared: bool = False) -> RemoteSubnet:
        """
        Stored subnet for ``path``. Shared subnets, and paths the store does not
        hold, are read from NSX.
        """
        if not shared:
            stored = self.store.get_by_key(parse_vpc_resource_path(path).id)
            if stored is not None and stored.path == path:
                return stored
        return RemoteSubnet.from_dict(self.client.get_by_path(path))

    def get_subnet_by_cr(self, subnet_cr: Subnet) -> RemoteSubnet:
        """
        The NSX subnet behind a Subnet CR: the shared subnet named by its
        associated-resource annotation, else the one stored under its UID.
        """
        associated = subnet_cr.metadata.annotations.get(ANNOTATION_ASSOCIATED_RESOURCE)
        if associated:
            return self.get_shared_subnet(associated)
        found = self.list_subnet_by_subnet(subnet_cr.metadata.uid)
        if len(found) != 1:
            raise SubnetLookupError(
                f"expected one NSX subnet for Subnet {subnet_cr.metadata.namespace}/{subnet_cr.metadata.name}, "
                f"found {len(found)}"
            )
        return found[0]

    # ------------- Shared Subnet CRs -------------

    def build_subnet_cr(self, subnet: RemoteSubnet, namespace: str, name: str, associated_resource: str) -> Subnet:
        """Subnet CR mirroring a shared NSX subnet; spec from NSX, status empty."""
        subnet_cr = Subnet(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                uid="",
                annotations={ANNOTATION_ASSOCIATED_RESOURCE: associated_resource},
            )
        )
        self.map_subnet_to_cr(subnet_cr, subnet)
        return subnet_cr

    @staticmethod
    def map_subnet_to_cr(subnet_cr: Subnet, subnet: RemoteSubnet) -> None:
        """Overwrite the CR spec with what NSX reports for the subnet."""
        dhcp = subnet.dhcp_config
        adv = subnet.advanced_config
        vlan = adv.vlan_extension if adv else None
        subnet_cr.spec = SubnetSpec(
            access_mode=format_access_mode(subnet.access_mode),
            ipv4_subnet_size=subnet.ipv4_subnet_size,
            ip_addresses=tuple(subnet.ip_addresses),
            dhcp=SubnetDhcpSpec(
                mode=format_dhcp_mode(dhcp.mode) if dhcp else "",
                reserved_ip_ranges=tuple(dhcp.reserved_ip_ranges) if dhcp else (),
            ),
            advanced=SubnetAdvancedSpec(
                static_ip_allocation=adv.static_ip_allocation if adv else None,
                connectivity_state=adv.connectivity_state if adv else None,
                enable_vlan_extension=vlan.enable_vlan_extension if vlan else None,
                vlan_id=vlan.vlan_id if vlan else None,
            ),
        )

    @staticmethod
    def map_status_to_cr(subnet_cr: Subnet, statuses: Sequence[SubnetStatusInfo]) -> None:
        """Overwrite the CR status with the NSX status entries and mark it shared."""
        subnet_cr.network_addresses = [s.network_address for s in statuses if s.network_address]
        subnet_cr.gateway_addresses = [s.gateway_address for s in statuses if s.gateway_address]
        subnet_cr.dhcp_server_addresses = [s.dhcp_server_address for s in statuses if s.dhcp_server_address]
        subnet_cr.shared = True

    def sync_shared_subnet_cr(self, subnet_cr: Subnet, force_refresh: bool = True) -> Tuple[bool, bool]:
        """
        Refresh a shared Subnet CR in place from NSX.

        Returns ``(spec_changed, status_changed)`` so the caller writes back
        only what moved.
        """
        associated = subnet_cr.metadata.annotations.get(ANNOTATION_ASSOCIATED_RESOURCE)
        if not associated:
            raise SubnetLookupError(
                f"Subnet {subnet_cr.metadata.namespace}/{subnet_cr.metadata.name} "
                f"has no {ANNOTATION_ASSOCIATED_RESOURCE} annotation"
            )
        spec_before = subnet_cr.spec.to_dict()
        status_before = subnet_cr.status_dict()
        subnet = self.get_shared_subnet(associated, force_refresh=force_refresh)
        self.map_subnet_to_cr(subnet_cr, subnet)
        self.map_status_to_cr(subnet_cr, self.get_shared_subnet_status(subnet, associated))
        return subnet_cr.spec.to_dict() != spec_before, subnet_cr.status_dict() != status_before

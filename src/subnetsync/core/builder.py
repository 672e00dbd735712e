"""
Builds the desired :class:`RemoteSubnet` for a Subnet or SubnetSet CR.

    builder = SubnetBuilder(cluster="c1", identity=IdentityGenerator(store), store=store)
    desired = builder.build(subnet_cr, extra_tags=ns_tags)

Field mapping:
  - access_mode: capitalized CR value, ``PrivateTGW`` -> ``Private_TGW``
  - ip_addresses: spec > Subnet status > caller-supplied (SubnetSet) > none
  - DHCP: unset -> DHCP_DEACTIVATED, ``DHCPServer`` -> DHCP_SERVER, ...;
    reserved ranges only in server mode
  - static IP allocation: CR value when set, else enabled iff DHCP is off
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from .constants import (
    ACCESS_MODE_PROJECT,
    CR_ACCESS_MODE_PROJECT,
    DHCP_MODE_DEACTIVATED,
    DHCP_MODE_SERVER,
    MAX_TAGS_COUNT,
    TAG_SCOPE_CLUSTER,
    TAG_SCOPE_NAMESPACE,
    TAG_SCOPE_SUBNET_CR_TYPE,
    TAG_SCOPE_VM_NAMESPACE,
)
from .crd import Subnet, SubnetDhcpSpec, SubnetSet, SubnetSpec
from .errors import TagsExceededError, UnsupportedResourceKindError
from .identity import IdentityGenerator, Owner
from .model import AdvancedConfig, DhcpConfig, RemoteSubnet, Tag, VlanExtension
from .store import SubnetStore


def parse_access_mode(mode: str) -> Optional[str]:
    if not mode:
        return None
    if mode == CR_ACCESS_MODE_PROJECT:
        return ACCESS_MODE_PROJECT
    return mode[:1].upper() + mode[1:]


def parse_dhcp_mode(mode: str) -> str:
    """``DHCPServer`` -> ``DHCP_SERVER``; empty -> ``DHCP_DEACTIVATED``."""
    if not mode:
        return DHCP_MODE_DEACTIVATED
    upper = mode.upper()
    return f"{upper[:4]}_{upper[4:]}"


def format_access_mode(mode: Optional[str]) -> str:
    """NSX access mode back to the CR value (inverse of :func:`parse_access_mode`)."""
    if not mode:
        return ""
    if mode == ACCESS_MODE_PROJECT:
        return CR_ACCESS_MODE_PROJECT
    return mode


def format_dhcp_mode(mode: Optional[str]) -> str:
    """``DHCP_SERVER`` -> ``DHCPServer``; empty stays empty."""
    if not mode:
        return ""
    head, _, tail = mode.partition("_")
    return head + tail.capitalize()


def build_dhcp_config(spec: SubnetDhcpSpec) -> DhcpConfig:
    """Reserved ranges are only sent in server mode."""
    mode = parse_dhcp_mode(spec.mode)
    return DhcpConfig(
        mode=mode,
        reserved_ip_ranges=tuple(spec.reserved_ip_ranges) if mode == DHCP_MODE_SERVER else (),
    )


def basic_tags(cluster: str, obj: Owner) -> List[Tag]:
    """The five tags every owned subnet carries."""
    ns_scope = TAG_SCOPE_NAMESPACE if obj.uses_pod_namespace_scope() else TAG_SCOPE_VM_NAMESPACE
    return [
        Tag(TAG_SCOPE_CLUSTER, cluster),
        Tag(ns_scope, obj.metadata.namespace),
        Tag(TAG_SCOPE_SUBNET_CR_TYPE, obj.cr_type),
        Tag(obj.owner_name_scope, obj.metadata.name),
        Tag(obj.owner_uid_scope, obj.metadata.uid),
    ]


class SubnetBuilder:
    """Desired-state builder; touches the store only for identity lookups."""

    def __init__(
        self,
        *,
        cluster: str,
        identity: IdentityGenerator,
        store: SubnetStore,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cluster = cluster
        self.identity = identity
        self.store = store
        self.log = logger or logging.getLogger("subnetsync.builder")

    # ------------- Public API -------------

    def build(
        self,
        obj: Owner,
        extra_tags: Iterable[Tag] = (),
        known_addresses: Sequence[str] = (),
    ) -> RemoteSubnet:
        if isinstance(obj, Subnet):
            return self._build_subnet(obj, extra_tags)
        if isinstance(obj, SubnetSet):
            return self._build_subnetset_child(obj, extra_tags, known_addresses)
        raise UnsupportedResourceKindError(
            f"unsupported resource kind {type(obj).__name__}; expected Subnet or SubnetSet"
        )

    def build_tags(self, obj: Owner, extra_tags: Iterable[Tag] = ()) -> Tuple[Tag, ...]:
        tags = basic_tags(self.cluster, obj) + list(extra_tags)
        if len(tags) > MAX_TAGS_COUNT:
            raise TagsExceededError(len(tags), MAX_TAGS_COUNT)
        return tuple(tags)

    # ------------- Variants -------------

    def _build_subnet(self, obj: Subnet, extra_tags: Iterable[Tag]) -> RemoteSubnet:
        tags = self.build_tags(obj, extra_tags)
        existing = self.store.get_by_index(obj.owner_uid_scope, obj.metadata.uid)
        if existing:
            subnet_id, name = existing[0].id, existing[0].display_name
        else:
            subnet_id, name = self.identity.unique_id(obj)
        ips = tuple(obj.spec.ip_addresses) or tuple(obj.network_addresses)
        return self._from_spec(subnet_id, name, obj.spec, ips, tags)

    def _build_subnetset_child(
        self,
        obj: SubnetSet,
        extra_tags: Iterable[Tag],
        known_addresses: Sequence[str],
    ) -> RemoteSubnet:
        tags = self.build_tags(obj, extra_tags)
        subnet_id, name = self.identity.unique_child_identity(obj)
        ips = tuple(obj.spec.ip_addresses) or tuple(known_addresses)
        return self._from_spec(subnet_id, name, obj.spec, ips, tags)

    # ------------- Internal -------------

    def _from_spec(
        self,
        subnet_id: str,
        name: str,
        spec: SubnetSpec,
        ips: Tuple[str, ...],
        tags: Tuple[Tag, ...],
    ) -> RemoteSubnet:
        dhcp = build_dhcp_config(spec.dhcp)
        mode = dhcp.mode
        adv = spec.advanced
        static = adv.static_ip_allocation
        if static is None:
            static = mode == DHCP_MODE_DEACTIVATED
        vlan = None
        if adv.enable_vlan_extension is not None or adv.vlan_id is not None:
            vlan = VlanExtension(enable_vlan_extension=adv.enable_vlan_extension, vlan_id=adv.vlan_id)
        subnet = RemoteSubnet(
            id=subnet_id,
            display_name=name,
            access_mode=parse_access_mode(spec.access_mode),
            ipv4_subnet_size=spec.ipv4_subnet_size,
            ip_addresses=ips,
            dhcp_config=dhcp,
            advanced_config=AdvancedConfig(
                static_ip_allocation=static,
                gateway_addresses=adv.gateway_addresses,
                dhcp_server_addresses=adv.dhcp_server_addresses,
                connectivity_state=adv.connectivity_state,
                vlan_extension=vlan,
            ),
            tags=tags,
        )
        self.log.debug("built desired subnet id=%s mode=%s ips=%s", subnet_id, mode, list(ips))
        return subnet


def with_tags(subnet: RemoteSubnet, tags: Iterable[Tag]) -> RemoteSubnet:
    """Copy of ``subnet`` carrying ``tags`` (bounded like a fresh build)."""
    tags = tuple(tags)
    if len(tags) > MAX_TAGS_COUNT:
        raise TagsExceededError(len(tags), MAX_TAGS_COUNT)
    return replace(subnet, tags=tags)

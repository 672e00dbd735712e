"""
Typed views of the ``Subnet`` and ``SubnetSet`` custom resources
(``crd.nsx.vmware.com/v1alpha1``).

Only the fields the reconciliation engine reads or writes are modelled.
``from_dict`` accepts the camelCase JSON returned by the Kubernetes API.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .constants import (
    CR_TYPE_SUBNET,
    CR_TYPE_SUBNETSET,
    LABEL_DEFAULT_POD_SUBNETSET,
    LABEL_DEFAULT_SUBNETSET,
    TAG_SCOPE_SUBNET_CR_NAME,
    TAG_SCOPE_SUBNET_CR_UID,
    TAG_SCOPE_SUBNETSET_CR_NAME,
    TAG_SCOPE_SUBNETSET_CR_UID,
)

CRD_GROUP = "crd.nsx.vmware.com"
CRD_VERSION = "v1alpha1"


@dataclass
class ObjectMeta:
    name: str
    namespace: str
    uid: str
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=str(data.get("name") or ""),
            namespace=str(data.get("namespace") or ""),
            uid=str(data.get("uid") or ""),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            resource_version=data.get("resourceVersion"),
        )


@dataclass
class SubnetDhcpSpec:
    mode: str = ""
    reserved_ip_ranges: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"mode": self.mode} if self.mode else {}
        if self.reserved_ip_ranges:
            out["dhcpServerAdditionalConfig"] = {"reservedIPRanges": list(self.reserved_ip_ranges)}
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SubnetDhcpSpec":
        data = data or {}
        extra = data.get("dhcpServerAdditionalConfig") or {}
        return cls(
            mode=str(data.get("mode") or ""),
            reserved_ip_ranges=tuple(extra.get("reservedIPRanges") or ()),
        )


@dataclass
class SubnetAdvancedSpec:
    static_ip_allocation: Optional[bool] = None
    gateway_addresses: Optional[Tuple[str, ...]] = None
    dhcp_server_addresses: Optional[Tuple[str, ...]] = None
    connectivity_state: Optional[str] = None
    enable_vlan_extension: Optional[bool] = None
    vlan_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.static_ip_allocation is not None:
            out["staticIPAllocation"] = {"enabled": self.static_ip_allocation}
        if self.gateway_addresses is not None:
            out["gatewayAddresses"] = list(self.gateway_addresses)
        if self.dhcp_server_addresses is not None:
            out["dhcpServerAddresses"] = list(self.dhcp_server_addresses)
        if self.connectivity_state is not None:
            out["connectivityState"] = self.connectivity_state
        if self.enable_vlan_extension is not None:
            out["enableVLANExtension"] = self.enable_vlan_extension
        if self.vlan_id is not None:
            out["vlanId"] = self.vlan_id
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SubnetAdvancedSpec":
        data = data or {}
        static = data.get("staticIPAllocation") or {}
        gws = data.get("gatewayAddresses")
        dhcps = data.get("dhcpServerAddresses")
        return cls(
            static_ip_allocation=static.get("enabled"),
            gateway_addresses=tuple(gws) if gws is not None else None,
            dhcp_server_addresses=tuple(dhcps) if dhcps is not None else None,
            connectivity_state=data.get("connectivityState"),
            enable_vlan_extension=data.get("enableVLANExtension"),
            vlan_id=data.get("vlanId"),
        )


@dataclass
class SubnetSpec:
    access_mode: str = ""
    ipv4_subnet_size: Optional[int] = None
    ip_addresses: Tuple[str, ...] = ()
    dhcp: SubnetDhcpSpec = field(default_factory=SubnetDhcpSpec)
    advanced: SubnetAdvancedSpec = field(default_factory=SubnetAdvancedSpec)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.access_mode:
            out["accessMode"] = self.access_mode
        if self.ipv4_subnet_size is not None:
            out["ipv4SubnetSize"] = self.ipv4_subnet_size
        if self.ip_addresses:
            out["ipAddresses"] = list(self.ip_addresses)
        dhcp = self.dhcp.to_dict()
        if dhcp:
            out["subnetDHCPConfig"] = dhcp
        adv = self.advanced.to_dict()
        if adv:
            out["advancedConfig"] = adv
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SubnetSpec":
        data = data or {}
        return cls(
            access_mode=str(data.get("accessMode") or ""),
            ipv4_subnet_size=data.get("ipv4SubnetSize"),
            ip_addresses=tuple(data.get("ipAddresses") or ()),
            dhcp=SubnetDhcpSpec.from_dict(data.get("subnetDHCPConfig")),
            advanced=SubnetAdvancedSpec.from_dict(data.get("advancedConfig")),
        )


@dataclass
class SubnetInfo:
    """One realized child subnet as reported in SubnetSet status."""
    nsx_resource_path: str
    network_addresses: List[str] = field(default_factory=list)
    gateway_addresses: List[str] = field(default_factory=list)
    dhcp_server_addresses: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nsxResourcePath": self.nsx_resource_path,
            "networkAddresses": list(self.network_addresses),
            "gatewayAddresses": list(self.gateway_addresses),
            "DHCPServerAddresses": list(self.dhcp_server_addresses),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubnetInfo":
        return cls(
            nsx_resource_path=str(data.get("nsxResourcePath") or ""),
            network_addresses=list(data.get("networkAddresses") or []),
            gateway_addresses=list(data.get("gatewayAddresses") or []),
            dhcp_server_addresses=list(data.get("DHCPServerAddresses") or []),
        )


# ---------- Resources ----------

@dataclass
class Subnet:
    """A single subnet requested by a workload."""
    metadata: ObjectMeta
    spec: SubnetSpec = field(default_factory=SubnetSpec)
    network_addresses: List[str] = field(default_factory=list)
    gateway_addresses: List[str] = field(default_factory=list)
    dhcp_server_addresses: List[str] = field(default_factory=list)
    shared: bool = False

    kind = "Subnet"
    plural = "subnets"
    cr_type = CR_TYPE_SUBNET
    owner_uid_scope = TAG_SCOPE_SUBNET_CR_UID
    owner_name_scope = TAG_SCOPE_SUBNET_CR_NAME

    def uses_pod_namespace_scope(self) -> bool:
        return False

    def status_dict(self) -> Dict[str, Any]:
        return {
            "networkAddresses": list(self.network_addresses),
            "gatewayAddresses": list(self.gateway_addresses),
            "DHCPServerAddresses": list(self.dhcp_server_addresses),
            "shared": self.shared,
        }

    def to_dict(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"name": self.metadata.name, "namespace": self.metadata.namespace}
        if self.metadata.uid:
            meta["uid"] = self.metadata.uid
        if self.metadata.labels:
            meta["labels"] = dict(self.metadata.labels)
        if self.metadata.annotations:
            meta["annotations"] = dict(self.metadata.annotations)
        return {
            "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
            "kind": self.kind,
            "metadata": meta,
            "spec": self.spec.to_dict(),
            "status": self.status_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subnet":
        status = data.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=SubnetSpec.from_dict(data.get("spec")),
            network_addresses=list(status.get("networkAddresses") or []),
            gateway_addresses=list(status.get("gatewayAddresses") or []),
            dhcp_server_addresses=list(status.get("DHCPServerAddresses") or []),
            shared=bool(status.get("shared", False)),
        )


@dataclass
class SubnetSet:
    """A pool of dynamically created subnets sharing one spec."""
    metadata: ObjectMeta
    spec: SubnetSpec = field(default_factory=SubnetSpec)
    subnets: List[SubnetInfo] = field(default_factory=list)

    kind = "SubnetSet"
    plural = "subnetsets"
    cr_type = CR_TYPE_SUBNETSET
    owner_uid_scope = TAG_SCOPE_SUBNETSET_CR_UID
    owner_name_scope = TAG_SCOPE_SUBNETSET_CR_NAME

    def uses_pod_namespace_scope(self) -> bool:
        return self.metadata.labels.get(LABEL_DEFAULT_SUBNETSET) == LABEL_DEFAULT_POD_SUBNETSET

    def status_dict(self) -> Dict[str, Any]:
        return {"subnets": [s.to_dict() for s in self.subnets]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubnetSet":
        status = data.get("status") or {}
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=SubnetSpec.from_dict(data.get("spec")),
            subnets=[SubnetInfo.from_dict(s) for s in status.get("subnets") or []],
        )

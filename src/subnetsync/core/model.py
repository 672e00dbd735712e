"""
Remote subnet model (NSX ``VpcSubnet``) and path helpers.

Values are frozen dataclasses: the store hands the same instance to every
reader, and updates build a new value with :func:`dataclasses.replace`.

Wire format is NSX snake_case JSON:

    subnet = RemoteSubnet.from_dict(client.get_subnet(org, project, vpc, "s1"))
    payload = subnet.to_dict()
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .constants import DEFAULT_ORG, RESOURCE_TYPE_SUBNET


@dataclass(frozen=True)
class Tag:
    scope: str
    tag: str

    def to_dict(self) -> Dict[str, str]:
        return {"scope": self.scope, "tag": self.tag}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tag":
        return cls(scope=str(data.get("scope") or ""), tag=str(data.get("tag") or ""))


@dataclass(frozen=True)
class DhcpConfig:
    mode: Optional[str] = None
    reserved_ip_ranges: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.mode is not None:
            out["mode"] = self.mode
        if self.reserved_ip_ranges:
            out["dhcp_server_additional_config"] = {
                "reserved_ip_ranges": list(self.reserved_ip_ranges),
            }
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["DhcpConfig"]:
        if not data:
            return None
        extra = data.get("dhcp_server_additional_config") or {}
        return cls(
            mode=data.get("mode"),
            reserved_ip_ranges=tuple(extra.get("reserved_ip_ranges") or ()),
        )


@dataclass(frozen=True)
class VlanExtension:
    enable_vlan_extension: Optional[bool] = None
    vlan_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"enable_vlan_extension": self.enable_vlan_extension, "vlan_id": self.vlan_id})


@dataclass(frozen=True)
class AdvancedConfig:
    static_ip_allocation: Optional[bool] = None
    gateway_addresses: Optional[Tuple[str, ...]] = None
    dhcp_server_addresses: Optional[Tuple[str, ...]] = None
    connectivity_state: Optional[str] = None
    vlan_extension: Optional[VlanExtension] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.static_ip_allocation is not None:
            out["static_ip_allocation"] = {"enabled": self.static_ip_allocation}
        if self.gateway_addresses is not None:
            out["gateway_addresses"] = list(self.gateway_addresses)
        if self.dhcp_server_addresses is not None:
            out["dhcp_server_addresses"] = list(self.dhcp_server_addresses)
        if self.connectivity_state is not None:
            out["connectivity_state"] = self.connectivity_state
        if self.vlan_extension is not None:
            out["vlan_extension"] = self.vlan_extension.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AdvancedConfig"]:
        if not data:
            return None
        static = data.get("static_ip_allocation") or {}
        vlan = data.get("vlan_extension")
        return cls(
            static_ip_allocation=static.get("enabled"),
            gateway_addresses=_opt_tuple(data.get("gateway_addresses")),
            dhcp_server_addresses=_opt_tuple(data.get("dhcp_server_addresses")),
            connectivity_state=data.get("connectivity_state"),
            vlan_extension=VlanExtension(
                enable_vlan_extension=vlan.get("enable_vlan_extension"),
                vlan_id=vlan.get("vlan_id"),
            ) if isinstance(vlan, dict) else None,
        )


@dataclass(frozen=True)
class RemoteSubnet:
    """One NSX VpcSubnet as the operator sees it."""
    id: str
    display_name: str = ""
    access_mode: Optional[str] = None
    ipv4_subnet_size: Optional[int] = None
    ip_addresses: Tuple[str, ...] = ()
    dhcp_config: Optional[DhcpConfig] = None
    advanced_config: Optional[AdvancedConfig] = None
    tags: Tuple[Tag, ...] = ()
    path: Optional[str] = None
    parent_path: Optional[str] = None
    marked_for_delete: bool = False
    revision: Optional[int] = field(default=None, compare=False)

    # ------------- Tags -------------

    def tag_values(self, scope: str) -> List[str]:
        return [t.tag for t in self.tags if t.scope == scope]

    def tag_value(self, scope: str) -> Optional[str]:
        for t in self.tags:
            if t.scope == scope:
                return t.tag
        return None

    def tombstone(self) -> "RemoteSubnet":
        return replace(self, marked_for_delete=True)

    # ------------- Wire -------------

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "resource_type": RESOURCE_TYPE_SUBNET,
            "id": self.id,
            "display_name": self.display_name,
            "access_mode": self.access_mode,
            "ipv4_subnet_size": self.ipv4_subnet_size,
            "ip_addresses": list(self.ip_addresses) or None,
            "subnet_dhcp_config": self.dhcp_config.to_dict() if self.dhcp_config else None,
            "advanced_config": self.advanced_config.to_dict() if self.advanced_config else None,
            "tags": [t.to_dict() for t in self.tags],
            "path": self.path,
            "parent_path": self.parent_path,
            "marked_for_delete": self.marked_for_delete or None,
            "_revision": self.revision,
        }
        return _drop_none(out)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RemoteSubnet":
        return cls(
            id=str(data.get("id") or ""),
            display_name=str(data.get("display_name") or ""),
            access_mode=data.get("access_mode"),
            ipv4_subnet_size=data.get("ipv4_subnet_size"),
            ip_addresses=tuple(data.get("ip_addresses") or ()),
            dhcp_config=DhcpConfig.from_dict(data.get("subnet_dhcp_config")),
            advanced_config=AdvancedConfig.from_dict(data.get("advanced_config")),
            tags=tuple(Tag.from_dict(t) for t in data.get("tags") or ()),
            path=data.get("path"),
            parent_path=data.get("parent_path"),
            marked_for_delete=bool(data.get("marked_for_delete", False)),
            revision=data.get("_revision"),
        )


@dataclass(frozen=True)
class SubnetStatusInfo:
    """One entry of ``GET .../subnets/<id>/status``."""
    network_address: Optional[str] = None
    gateway_address: Optional[str] = None
    dhcp_server_address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubnetStatusInfo":
        return cls(
            network_address=data.get("network_address"),
            gateway_address=data.get("gateway_address"),
            dhcp_server_address=data.get("dhcp_server_address"),
        )


# ---------- VPC paths ----------

_VPC_PATH_RE = re.compile(r"/orgs/([^/]+)/projects/([^/]+)/vpcs/([^/]+)((?:/\S+)*)")


@dataclass(frozen=True)
class VpcResourceInfo:
    """Coordinates of a VPC (and optionally one resource below it)."""
    org_id: str
    project_id: str
    vpc_id: str
    id: str = ""
    parent_id: str = ""

    @property
    def vpc_path(self) -> str:
        return f"/orgs/{self.org_id}/projects/{self.project_id}/vpcs/{self.vpc_id}"


def parse_vpc_resource_path(path: str) -> VpcResourceInfo:
    """
    Split an NSX policy path into its org/project/vpc coordinates.

    ``id`` is the last path segment and ``parent_id`` the one before it, so for
    ``/orgs/o/projects/p/vpcs/v/subnets/s`` this gives id ``s``, parent ``subnets``
    and for a bare VPC path id ``v``, parent ``vpcs``.
    """
    m = _VPC_PATH_RE.search(path or "")
    if not m:
        raise ValueError(f"invalid VPC resource path: {path!r}")
    segments = [s for s in path.split("/") if s]
    return VpcResourceInfo(
        org_id=m.group(1),
        project_id=m.group(2),
        vpc_id=m.group(3),
        id=segments[-1],
        parent_id=segments[-2] if len(segments) > 1 else "",
    )


def vpc_path_of(subnet: RemoteSubnet) -> Optional[str]:
    """VPC path owning ``subnet`` (from parent_path, falling back to path)."""
    for candidate in (subnet.parent_path, subnet.path):
        if not candidate:
            continue
        try:
            return parse_vpc_resource_path(candidate).vpc_path
        except ValueError:
            continue
    return None


def associated_resource_path(associated: str, org: str = DEFAULT_ORG) -> str:
    """
    Turn ``projectID:vpcID:subnetID`` into the subnet's policy path.
    """
    parts = (associated or "").split(":")
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"invalid associated resource {associated!r}, expected 'project:vpc:subnet'")
    project, vpc, subnet = parts
    return f"/orgs/{org}/projects/{project}/vpcs/{vpc}/subnets/{subnet}"


# ---------- Internal ----------

def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _opt_tuple(v: Optional[Iterable[str]]) -> Optional[Tuple[str, ...]]:
    if v is None:
        return None
    return tuple(v)

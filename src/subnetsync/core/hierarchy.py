"""
Hierarchical (org-root) request envelope for VpcSubnets.

NSX accepts one nested ``OrgRoot`` document that names the org, project and
VPC as references and carries the subnet as a leaf, so several levels are
applied atomically:

    OrgRoot
      ChildResourceReference(Org)
        ChildResourceReference(Project)
          ChildResourceReference(Vpc)
            ChildVpcSubnet(marked_for_delete=...)

Each level is its own dataclass with an ``encode`` method. If any level fails
to encode, :class:`HierarchyEncodeError` is raised and nothing is returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from .constants import (
    RESOURCE_TYPE_CHILD_REFERENCE,
    RESOURCE_TYPE_CHILD_SUBNET,
    RESOURCE_TYPE_ORG_ROOT,
    TARGET_TYPE_ORG,
    TARGET_TYPE_PROJECT,
    TARGET_TYPE_VPC,
)
from .errors import HierarchyEncodeError
from .model import RemoteSubnet


@dataclass
class ChildVpcSubnet:
    subnet: RemoteSubnet
    marked_for_delete: bool = False

    def encode(self) -> Dict[str, Any]:
        if not self.subnet.id:
            raise HierarchyEncodeError("ChildVpcSubnet: subnet id is empty")
        try:
            body = self.subnet.to_dict()
        except (TypeError, ValueError, AttributeError) as e:
            raise HierarchyEncodeError(f"ChildVpcSubnet {self.subnet.id}: {e}") from e
        body.pop("marked_for_delete", None)
        return {
            "resource_type": RESOURCE_TYPE_CHILD_SUBNET,
            "id": self.subnet.id,
            "marked_for_delete": self.marked_for_delete,
            "VpcSubnet": body,
        }


@dataclass
class ChildResourceReference:
    id: str
    target_type: str
    children: List[Any] = field(default_factory=list)

    def encode(self) -> Dict[str, Any]:
        if not self.id:
            raise HierarchyEncodeError(f"ChildResourceReference({self.target_type}): id is empty")
        return {
            "resource_type": RESOURCE_TYPE_CHILD_REFERENCE,
            "id": self.id,
            "target_type": self.target_type,
            "children": [c.encode() for c in self.children],
        }


@dataclass
class OrgRoot:
    children: List[ChildResourceReference] = field(default_factory=list)

    def encode(self) -> Dict[str, Any]:
        return {
            "resource_type": RESOURCE_TYPE_ORG_ROOT,
            "children": [c.encode() for c in self.children],
        }


# ---------- Public API ----------

def wrap_hierarchy_subnets(
    subnets: Iterable[RemoteSubnet],
    org_id: str,
    project_id: str,
    vpc_id: str,
) -> Dict[str, Any]:
    """Encode every subnet of one VPC into a single OrgRoot document."""
    leaves = [ChildVpcSubnet(s, marked_for_delete=s.marked_for_delete) for s in subnets]
    if not leaves:
        raise HierarchyEncodeError("no subnets to wrap")
    vpc = ChildResourceReference(vpc_id, TARGET_TYPE_VPC, leaves)
    project = ChildResourceReference(project_id, TARGET_TYPE_PROJECT, [vpc])
    org = ChildResourceReference(org_id, TARGET_TYPE_ORG, [project])
    return OrgRoot([org]).encode()


def wrap_hierarchy(subnet: RemoteSubnet, org_id: str, project_id: str, vpc_id: str) -> Dict[str, Any]:
    return wrap_hierarchy_subnets([subnet], org_id, project_id, vpc_id)

"""
Wire-level constants shared across subnetsync.

Tag scopes and values are compared bit-exact by NSX and by other controllers
reading the same objects; do not reword them.
"""

from __future__ import annotations

# ---------- Limits ----------

MAX_TAGS_COUNT = 26
MAX_TAG_SCOPE_LENGTH = 128
MAX_TAG_VALUE_LENGTH = 256
MAX_ID_LENGTH = 255
MAX_SUBNET_NAME_LENGTH = 80

HASH_LENGTH = 8
BASE62_HASH_LENGTH = 6
UUID_HASH_LENGTH = 5

CONNECTOR_UNDERLINE = "_"

# ---------- Tag scopes ----------

TAG_SCOPE_CLUSTER = "nsx-op/cluster"
TAG_SCOPE_VERSION = "nsx-op/version"
TAG_SCOPE_NAMESPACE = "nsx-op/namespace"
TAG_SCOPE_NAMESPACE_UID = "nsx-op/namespace_uid"
TAG_SCOPE_VM_NAMESPACE = "nsx-op/vm_namespace"
TAG_SCOPE_VM_NAMESPACE_UID = "nsx-op/vm_namespace_uid"
TAG_SCOPE_SUBNET_CR_UID = "nsx-op/subnet_uid"
TAG_SCOPE_SUBNET_CR_NAME = "nsx-op/subnet_name"
TAG_SCOPE_SUBNETSET_CR_UID = "nsx-op/subnetset_uid"
TAG_SCOPE_SUBNETSET_CR_NAME = "nsx-op/subnetset_name"
TAG_SCOPE_SUBNET_CR_TYPE = "nsx-op/subnet_cr_type"
TAG_SCOPE_MANAGED_BY = "nsx/managed-by"

AUTO_CREATED_TAG_VALUE = "nsx-op"

CR_TYPE_SUBNET = "subnet"
CR_TYPE_SUBNETSET = "subnetset"

# ---------- Labels / annotations ----------

LABEL_DEFAULT_SUBNETSET = "nsxoperator.vmware.com/default-subnetset-for"
LABEL_DEFAULT_POD_SUBNETSET = "Pod"
LABEL_DEFAULT_VM_SUBNETSET = "VirtualMachine"
ANNOTATION_ASSOCIATED_RESOURCE = "nsx.vmware.com/associated-resource"

# ---------- Resource types ----------

RESOURCE_TYPE_SUBNET = "VpcSubnet"
RESOURCE_TYPE_CHILD_SUBNET = "ChildVpcSubnet"
RESOURCE_TYPE_CHILD_REFERENCE = "ChildResourceReference"
RESOURCE_TYPE_ORG_ROOT = "OrgRoot"
TARGET_TYPE_ORG = "Org"
TARGET_TYPE_PROJECT = "Project"
TARGET_TYPE_VPC = "Vpc"

REALIZED_ENTITY_SUBNET = "RealizedLogicalSwitch"
REALIZED_STATE_REALIZED = "REALIZED"
REALIZED_STATE_ERROR = "ERROR"

DEFAULT_ORG = "default"
DEFAULT_IP_POOL = "static-ipv4-default"

# ---------- Access / DHCP modes ----------

ACCESS_MODE_PUBLIC = "Public"
ACCESS_MODE_PRIVATE = "Private"
ACCESS_MODE_PROJECT = "Private_TGW"
CR_ACCESS_MODE_PROJECT = "PrivateTGW"

DHCP_MODE_DEACTIVATED = "DHCP_DEACTIVATED"
DHCP_MODE_SERVER = "DHCP_SERVER"
DHCP_MODE_RELAY = "DHCP_RELAY"

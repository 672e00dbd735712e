from dataclasses import replace

import pytest

from subnetsync.core.compare import changed, merge
from subnetsync.core.errors import HierarchyEncodeError
from subnetsync.core.hierarchy import wrap_hierarchy, wrap_hierarchy_subnets
from subnetsync.core.model import AdvancedConfig, DhcpConfig, RemoteSubnet, Tag


def _base(**kw):
    s = RemoteSubnet(
        id="s1_abcde",
        display_name="s1",
        access_mode="Private",
        ipv4_subnet_size=16,
        dhcp_config=DhcpConfig(mode="DHCP_DEACTIVATED"),
        advanced_config=AdvancedConfig(static_ip_allocation=True, connectivity_state="Connected"),
        tags=(Tag("nsx-op/cluster", "c1"), Tag("nsx-op/subnet_uid", "u1")),
        path="/orgs/default/projects/p1/vpcs/v1/subnets/s1_abcde",
        parent_path="/orgs/default/projects/p1/vpcs/v1",
    )
    return replace(s, **kw)


# ---------- comparator ----------

def test_identity_and_addressing_changes_are_ignored():
    a = _base()
    b = _base(id="other", display_name="renamed", path="/x", access_mode="Public", ip_addresses=("10.0.0.0/24",))
    assert changed(a, b) is False


def test_tag_change_is_detected():
    a = _base()
    b = _base(tags=a.tags + (Tag("env", "prod"),))
    assert changed(a, b) is True


def test_tag_order_is_not_significant():
    a = _base()
    b = _base(tags=tuple(reversed(a.tags)))
    assert changed(a, b) is False


def test_dhcp_change_is_detected():
    a = _base()
    b = _base(dhcp_config=DhcpConfig(mode="DHCP_SERVER", reserved_ip_ranges=("10.0.0.5-10.0.0.9",)))
    assert changed(a, b) is True


def test_unset_desired_advanced_fields_do_not_count():
    server = _base(advanced_config=AdvancedConfig(
        static_ip_allocation=True,
        gateway_addresses=("10.0.0.1/28",),
        connectivity_state="Connected",
    ))
    desired = _base(advanced_config=AdvancedConfig(static_ip_allocation=True))
    assert changed(server, desired) is False

    desired = _base(advanced_config=AdvancedConfig(connectivity_state="Disconnected"))
    assert changed(server, desired) is True


def test_static_allocation_compared_only_when_asked():
    a = _base()
    b = _base(advanced_config=AdvancedConfig(static_ip_allocation=False, connectivity_state="Connected"))
    assert changed(a, b) is False
    assert changed(a, b, include_static_ip_allocation=True) is True


def test_missing_existing_means_changed():
    assert changed(None, _base()) is True


def test_merge_copies_only_mutable_fields_and_keeps_existing_intact():
    existing = _base(revision=7)
    desired = _base(
        id="ignored",
        access_mode="Public",
        tags=(Tag("nsx-op/cluster", "c1"), Tag("env", "prod")),
        dhcp_config=DhcpConfig(mode="DHCP_SERVER"),
        advanced_config=AdvancedConfig(connectivity_state="Disconnected"),
    )
    merged = merge(existing, desired)

    assert merged.id == existing.id
    assert merged.path == existing.path
    assert merged.access_mode == "Private"
    assert merged.revision == 7
    assert merged.tags == desired.tags
    assert merged.dhcp_config.mode == "DHCP_SERVER"
    assert merged.advanced_config.connectivity_state == "Disconnected"
    assert merged.advanced_config.static_ip_allocation is True
    # untouched
    assert existing.dhcp_config.mode == "DHCP_DEACTIVATED"
    assert len(existing.tags) == 2
    assert changed(merged, desired) is False


# ---------- hierarchy ----------

def test_wrap_hierarchy_levels():
    doc = wrap_hierarchy(_base(), "default", "p1", "v1")
    assert doc["resource_type"] == "OrgRoot"
    org = doc["children"][0]
    assert (org["resource_type"], org["target_type"], org["id"]) == ("ChildResourceReference", "Org", "default")
    project = org["children"][0]
    assert (project["target_type"], project["id"]) == ("Project", "p1")
    vpc = project["children"][0]
    assert (vpc["target_type"], vpc["id"]) == ("Vpc", "v1")
    leaf = vpc["children"][0]
    assert leaf["resource_type"] == "ChildVpcSubnet"
    assert leaf["marked_for_delete"] is False
    assert leaf["VpcSubnet"]["resource_type"] == "VpcSubnet"
    assert leaf["VpcSubnet"]["id"] == "s1_abcde"


def test_wrap_hierarchy_tombstone_leaf():
    doc = wrap_hierarchy(_base().tombstone(), "default", "p1", "v1")
    leaf = doc["children"][0]["children"][0]["children"][0]["children"][0]
    assert leaf["marked_for_delete"] is True
    assert "marked_for_delete" not in leaf["VpcSubnet"]


def test_wrap_hierarchy_bulk():
    subnets = [_base(id=f"s{i}").tombstone() for i in range(3)]
    doc = wrap_hierarchy_subnets(subnets, "default", "p1", "v1")
    leaves = doc["children"][0]["children"][0]["children"][0]["children"]
    assert [l["id"] for l in leaves] == ["s0", "s1", "s2"]


def test_wrap_hierarchy_rejects_partial_trees():
    with pytest.raises(HierarchyEncodeError):
        wrap_hierarchy(_base(id=""), "default", "p1", "v1")
    with pytest.raises(HierarchyEncodeError):
        wrap_hierarchy(_base(), "default", "", "v1")

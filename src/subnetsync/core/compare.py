"""
Change detection between the stored and the desired subnet.

Only mutable fields take part: tags, DHCP mode and reserved ranges, and the
gateway / DHCP server / connectivity subset of the advanced config. Ids,
names, paths, access mode and addressing never trigger an update.

    if changed(existing, desired):
        client.patch_subnet(..., merge(existing, desired).to_dict())
"""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Dict, Optional

from .model import AdvancedConfig, RemoteSubnet


def to_comparable(subnet: RemoteSubnet, *, include_static_ip_allocation: bool = False) -> Dict[str, Any]:
    """Projection of ``subnet`` onto the fields an update may change."""
    dhcp = subnet.dhcp_config
    adv = subnet.advanced_config or AdvancedConfig()
    out: Dict[str, Any] = {
        # order from the server is not significant
        "tags": sorted([t.scope, t.tag] for t in subnet.tags),
        "dhcp": {
            "mode": dhcp.mode if dhcp else None,
            "reserved_ip_ranges": sorted(dhcp.reserved_ip_ranges) if dhcp else [],
        },
        "advanced": {
            "gateway_addresses": _opt_list(adv.gateway_addresses),
            "dhcp_server_addresses": _opt_list(adv.dhcp_server_addresses),
            "connectivity_state": adv.connectivity_state,
        },
    }
    if include_static_ip_allocation:
        out["advanced"]["static_ip_allocation"] = adv.static_ip_allocation
    return out


def changed(
    existing: Optional[RemoteSubnet],
    desired: RemoteSubnet,
    *,
    include_static_ip_allocation: bool = False,
) -> bool:
    """
    True when ``desired`` differs from ``existing`` on a comparable field.

    Advanced-config fields the desired object leaves unset are skipped, so
    values rendered by the server do not count as drift.
    """
    if existing is None:
        return True
    want = to_comparable(desired, include_static_ip_allocation=include_static_ip_allocation)
    have = to_comparable(existing, include_static_ip_allocation=include_static_ip_allocation)
    for key in [k for k, v in want["advanced"].items() if v is None]:
        want["advanced"].pop(key)
        have["advanced"].pop(key)
    return _canonical(want) != _canonical(have)


def merge(existing: RemoteSubnet, desired: RemoteSubnet) -> RemoteSubnet:
    """
    New value = ``existing`` with the comparable fields taken from ``desired``.

    ``existing`` is left untouched.
    """
    old_adv = existing.advanced_config or AdvancedConfig()
    new_adv = desired.advanced_config or AdvancedConfig()
    adv = replace(
        old_adv,
        gateway_addresses=_pick(new_adv.gateway_addresses, old_adv.gateway_addresses),
        dhcp_server_addresses=_pick(new_adv.dhcp_server_addresses, old_adv.dhcp_server_addresses),
        connectivity_state=_pick(new_adv.connectivity_state, old_adv.connectivity_state),
        static_ip_allocation=_pick(new_adv.static_ip_allocation, old_adv.static_ip_allocation),
    )
    return replace(
        existing,
        tags=desired.tags,
        dhcp_config=desired.dhcp_config,
        advanced_config=adv,
    )


# ---------- Internal ----------

def _canonical(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def _opt_list(v: Any) -> Any:
    return None if v is None else list(v)


def _pick(new: Any, old: Any) -> Any:
    return old if new is None else new

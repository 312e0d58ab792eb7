"""Classify graph endpoint ids as real nodes or special termination points."""

from __future__ import annotations

from collections.abc import Iterable

# Kinds the graph can edit directly (cloud nodes with an id of "<kind>:<suffix>").
EDITABLE_SPECIAL_KINDS = ("host", "mgmt-net", "macvlan", "bridge", "ovs-bridge")
# Extended link kinds that only exist as synthesized ids from the normalizer.
READONLY_SPECIAL_KINDS = ("vxlan", "vxlan-stitch", "dummy")

HOST_INTERFACE_KINDS = frozenset({"host", "mgmt-net", "macvlan"})
BRIDGE_KINDS = frozenset({"bridge", "ovs-bridge"})

_SPECIAL_PREFIXES = tuple(f"{k}:" for k in EDITABLE_SPECIAL_KINDS + READONLY_SPECIAL_KINDS)


def split_endpoint(endpoint: str) -> tuple[str, str]:
    """Split 'node:iface' on the first colon; a missing colon means no iface."""
    node, sep, iface = endpoint.partition(":")
    if not sep:
        return endpoint, ""
    return node, iface


def is_special_endpoint(endpoint_id: str, bridge_node_ids: Iterable[str] = ()) -> bool:
    """Return True if the id stands for a non-node termination point.

    ``bridge_node_ids`` lists bridge/ovs-bridge nodes materialized in the
    document under a plain name; those count as special too.
    """
    if not isinstance(endpoint_id, str):
        return False
    if endpoint_id == "mgmt-net" or endpoint_id.startswith(_SPECIAL_PREFIXES):
        return True
    return endpoint_id in set(bridge_node_ids)


def special_kind(endpoint_id: str) -> tuple[str, str] | None:
    """Return (kind, suffix) for an editable special id, else None.

    ``macvlan:eth0`` -> ("macvlan", "eth0"); ``bridge:br0`` -> ("bridge", "br0").
    """
    for kind in EDITABLE_SPECIAL_KINDS:
        prefix = f"{kind}:"
        if endpoint_id.startswith(prefix):
            return kind, endpoint_id[len(prefix):]
    return None


def is_readonly_special(endpoint_id: str) -> bool:
    return endpoint_id.startswith(tuple(f"{k}:" for k in READONLY_SPECIAL_KINDS))

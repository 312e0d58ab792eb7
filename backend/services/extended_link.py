"""Rewrite one extended link entry in place from the network properties editor."""

from __future__ import annotations

import logging
from typing import Any

from ruamel.yaml.comments import CommentedMap

from errors import LinkNotFoundError, LinkValidationError
from schemas import ExtendedLinkUpdate
from services.special_endpoints import split_endpoint
from services.topology_session import InternalUpdateCallback, TopologySession
from services.yaml_document import endpoint_map, links_seq, scalar_str

log = logging.getLogger(__name__)

_TYPE_SPECIFIC_FIELDS = ("remote", "vni", "udp-port", "host-interface", "mode", "endpoint", "endpoints")
MACVLAN_MODES = frozenset({"private", "vepa", "bridge", "passthru", "source"})
VNI_RANGE = (1, 16777215)
UDP_PORT_RANGE = (1, 65535)


def _candidates(item: CommentedMap) -> list[tuple[str, str]]:
    """Endpoints of a link entry as the normalizer would see them."""
    if scalar_str(item.get("type")) == "veth":
        found = []
        for ep in item.get("endpoints") or []:
            if isinstance(ep, dict):
                found.append((scalar_str(ep.get("node")), scalar_str(ep.get("interface"))))
            elif isinstance(ep, str) and ":" in ep:
                found.append(split_endpoint(ep))
        return found
    ep = item.get("endpoint")
    if isinstance(ep, dict):
        return [(scalar_str(ep.get("node")), scalar_str(ep.get("interface")))]
    return []


def find_link(doc: CommentedMap, node: str, interface: str) -> CommentedMap | None:
    """Return the first link entry with ``node:interface`` among its endpoints."""
    links = links_seq(doc, create=False)
    for item in links or []:
        if isinstance(item, CommentedMap) and (node, interface) in _candidates(item):
            return item
    return None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_text(value: str | None, field: str, link_type: str) -> str:
    if value is None or not str(value).strip():
        raise LinkValidationError(f"'{field}' is required for type {link_type}")
    return value


def _require_range(value: int | None, field: str, link_type: str, bounds: tuple[int, int]) -> int:
    low, high = bounds
    if not _is_int(value) or not low <= value <= high:
        raise LinkValidationError(f"'{field}' must be an integer in [{low},{high}] for type {link_type}")
    return value


def type_fields(update: ExtendedLinkUpdate) -> list[tuple[str, Any]]:
    """Validate the type-specific fields of ``update`` and return them in write order."""
    link_type = update.type
    if link_type in ("host", "mgmt-net"):
        return [("host-interface", _require_text(update.host_interface, "host-interface", link_type))]
    if link_type == "macvlan":
        host_if = _require_text(update.host_interface, "host-interface", link_type)
        mode = update.mode if update.mode in MACVLAN_MODES else "bridge"
        return [("host-interface", host_if), ("mode", mode)]
    if link_type in ("vxlan", "vxlan-stitch"):
        return [
            ("remote", _require_text(update.remote, "remote", link_type)),
            ("vni", _require_range(update.vni, "vni", link_type, VNI_RANGE)),
            ("udp-port", _require_range(update.udp_port, "udp-port", link_type, UDP_PORT_RANGE)),
        ]
    if link_type == "dummy":
        return []
    raise LinkValidationError(f"Cannot convert a link to {link_type}: it needs two endpoints")


def apply_extended_link_update(doc: CommentedMap, update: ExtendedLinkUpdate) -> CommentedMap:
    """Retype the link holding ``update.endpoint`` and set its fields.

    Nothing is modified unless the link is found and every field validates.
    """
    ep = update.endpoint
    link = find_link(doc, ep.node, ep.interface)
    if link is None:
        raise LinkNotFoundError(f"Extended link not found for {ep.node}:{ep.interface}")
    fields = type_fields(update)

    link["type"] = update.type
    for key in _TYPE_SPECIFIC_FIELDS:
        if key in link:
            del link[key]
    link["endpoint"] = endpoint_map(ep.node, ep.interface, ep.mac)
    for key, value in fields:
        link[key] = value

    if update.mtu is not None:
        link["mtu"] = update.mtu
    if update.labels is not None:
        link["labels"] = dict(update.labels)
    if update.vars is not None:
        link["vars"] = dict(update.vars)
    return link


async def update_extended_link(
    session: TopologySession,
    update: ExtendedLinkUpdate,
    set_internal_update: InternalUpdateCallback | None = None,
) -> None:
    """Apply ``update`` to the session document and write it."""
    apply_extended_link_update(session.document, update)
    log.info(
        "Updated link %s:%s to type %s",
        update.endpoint.node, update.endpoint.interface, update.type,
    )
    await session.write(set_internal_update)

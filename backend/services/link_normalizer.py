"""Turn the raw ``topology.links`` list of a clab document into canonical links.

Containerlab accepts a short form (``endpoints: ["a:eth1", "b:eth1"]``) and a
set of extended forms discriminated by ``type``. Every form is decoded into a
:class:`NormalizedLink` whose non-veth side is a synthesized special id
(``macvlan:eth0``, ``vxlan:203.0.113.5/4201`` ...). Entries that cannot be
decoded are skipped so new link kinds never break reading a lab.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import yaml
from pydantic import ValidationError

from schemas import NormalizedLink, NormalizedLinkMeta
from services.special_endpoints import split_endpoint

log = logging.getLogger(__name__)

_Decoder = Callable[[dict], NormalizedLink | None]


def _endpoint(raw: Any) -> tuple[str, str] | None:
    """Read an ``{node, interface}`` object (or a 'node:iface' string)."""
    if isinstance(raw, dict):
        node = raw.get("node")
        if node is None:
            return None
        iface = raw.get("interface")
        return str(node), "" if iface is None else str(iface)
    if isinstance(raw, str) and ":" in raw:
        return split_endpoint(raw)
    return None


def _decode_short(raw: dict) -> NormalizedLink | None:
    eps = raw.get("endpoints")
    if len(eps) != 2 or not all(isinstance(ep, str) for ep in eps):
        return None
    a_node, a_iface = split_endpoint(eps[0])
    b_node, b_iface = split_endpoint(eps[1])
    return NormalizedLink(
        sourceNode=a_node,
        sourceIface=a_iface,
        targetNode=b_node,
        targetIface=b_iface,
        provenance="short",
        linkType="short",
    )


def _decode_veth(raw: dict) -> NormalizedLink | None:
    eps = raw.get("endpoints")
    if not isinstance(eps, list) or len(eps) != 2:
        return None
    a, b = _endpoint(eps[0]), _endpoint(eps[1])
    if a is None or b is None:
        return None
    return NormalizedLink(
        sourceNode=a[0],
        sourceIface=a[1],
        targetNode=b[0],
        targetIface=b[1],
        provenance="extended",
        linkType="veth",
    )


def _decode_host_interface(raw: dict) -> NormalizedLink | None:
    """mgmt-net and host: the far side is the named host interface."""
    ep = _endpoint(raw.get("endpoint"))
    if ep is None:
        return None
    link_type = raw["type"]
    host_if = raw.get("host-interface")
    host_if = "" if host_if is None else str(host_if)
    return NormalizedLink(
        sourceNode=ep[0],
        sourceIface=ep[1],
        targetNode=link_type,
        targetIface=host_if,
        provenance="extended",
        linkType=link_type,
        meta=NormalizedLinkMeta(hostInterface=host_if),
    )


def _decode_macvlan(raw: dict) -> NormalizedLink | None:
    ep = _endpoint(raw.get("endpoint"))
    if ep is None:
        return None
    host_if = raw.get("host-interface")
    host_if = "" if host_if is None else str(host_if)
    return NormalizedLink(
        sourceNode=ep[0],
        sourceIface=ep[1],
        targetNode=f"macvlan:{host_if}",
        targetIface="",
        provenance="extended",
        linkType="macvlan",
        meta=NormalizedLinkMeta(hostInterface=host_if, mode=raw.get("mode")),
    )


def _decode_vxlan(raw: dict) -> NormalizedLink | None:
    """vxlan and vxlan-stitch share a shape: remote, vni and udp-port."""
    ep = _endpoint(raw.get("endpoint"))
    if ep is None:
        return None
    link_type = raw["type"]
    remote, vni = raw.get("remote"), raw.get("vni")
    return NormalizedLink(
        sourceNode=ep[0],
        sourceIface=ep[1],
        targetNode=f"{link_type}:{remote}/{vni}",
        targetIface="",
        provenance="extended",
        linkType=link_type,
        meta=NormalizedLinkMeta(remote=remote, vni=vni, udpPort=raw.get("udp-port")),
    )


def _decode_dummy(raw: dict) -> NormalizedLink | None:
    ep = _endpoint(raw.get("endpoint"))
    if ep is None:
        return None
    node, iface = ep
    return NormalizedLink(
        sourceNode=node,
        sourceIface=iface,
        targetNode=f"dummy:{node}:{iface}",
        targetIface="",
        provenance="extended",
        linkType="dummy",
    )


_DECODERS: dict[str, _Decoder] = {
    "veth": _decode_veth,
    "mgmt-net": _decode_host_interface,
    "host": _decode_host_interface,
    "macvlan": _decode_macvlan,
    "vxlan": _decode_vxlan,
    "vxlan-stitch": _decode_vxlan,
    "dummy": _decode_dummy,
}


def decode_link(raw: Any) -> NormalizedLink | None:
    """Decode one raw link entry, or return None if it is not understood."""
    if not isinstance(raw, dict):
        return None
    link_type = raw.get("type")
    if isinstance(raw.get("endpoints"), list) and not isinstance(link_type, str):
        decoder = _decode_short
    else:
        decoder = _DECODERS.get(link_type) if isinstance(link_type, str) else None
    if decoder is None:
        return None
    try:
        return decoder(raw)
    except ValidationError as e:
        log.debug("Skipping malformed %s link: %s", link_type or "short", e)
        return None


def normalize_links(topology: dict | None) -> list[NormalizedLink]:
    """Normalize ``topology.links`` of a parsed clab document.

    No deduplication happens here; callers key links themselves.
    """
    section = (topology or {}).get("topology") or {}
    links_raw = section.get("links") if isinstance(section, dict) else None
    links_raw = links_raw or []
    if not isinstance(links_raw, list):
        return []

    result: list[NormalizedLink] = []
    for raw in links_raw:
        link = decode_link(raw)
        if link is None:
            log.debug("Skipping unrecognized link entry: %r", raw)
            continue
        result.append(link)
    return result


def normalize_yaml(yaml_content: str) -> list[NormalizedLink]:
    """Parse clab YAML text and normalize its links."""
    data = yaml.safe_load(yaml_content)
    return normalize_links(data if isinstance(data, dict) else None)

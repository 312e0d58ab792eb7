"""Reconcile the editor graph with the clab document and the annotation sidecar.

``save_viewport`` is called with the full element list of the graph. In
``view`` mode only the annotation sidecar is rebuilt; the topology document is
never touched. In ``edit`` mode the document is reconciled in place:

  1. upsert regular nodes, eliding kind/image/type that inheritance supplies
  2. materialize bridge/ovs-bridge cloud nodes as plain nodes
  3. drop document nodes the graph no longer has (legacy host/bridge kept)
  4. add links the document is missing (flat or extended encoding)
  5. prune flat and host-interface links the graph no longer has
  6. propagate node renames into every remaining link

then the annotations are rebuilt and both files are written.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Literal

from ruamel.yaml.comments import CommentedMap, CommentedSeq

from schemas import (
    CloudNodeAnnotation,
    CyElement,
    ElementData,
    GeoCoordinates,
    NodeAnnotation,
    NodeExtraData,
    PixelPosition,
    Position,
    TopologyAnnotations,
)
from services.annotations import AnnotationStore, annotation_store
from services.node_inheritance import resolve_node_config
from services.special_endpoints import (
    BRIDGE_KINDS,
    HOST_INTERFACE_KINDS,
    is_readonly_special,
    is_special_endpoint,
    special_kind,
)
from services.topology_session import InternalUpdateCallback, TopologySession
from services.yaml_document import (
    block_map,
    block_seq,
    check_links,
    endpoint_map,
    flow_seq,
    links_seq,
    nodes_map,
    rename_key,
    scalar_str,
)

log = logging.getLogger(__name__)

Mode = Literal["view", "edit"]
LinkSaveFormat = Literal["flat", "extended"]

_NON_NODE_ROLES = frozenset({"group", "cloud", "freeText"})
# Kinds that take a hardware ``type``; for every other kind the key is dropped.
_TYPED_KINDS = frozenset({"nokia_srlinux", "nokia_srsim", "nokia_sros"})
# Nodes of these kinds from older documents survive even when the graph lacks them.
_PRESERVED_KINDS = frozenset({"host", "bridge", "ovs-bridge"})


# ── Element classification ──────────────────────────────────────────


def _extra(el: CyElement) -> NodeExtraData:
    return el.data.extraData or NodeExtraData()


def _is_regular_node(el: CyElement) -> bool:
    return (
        el.group == "nodes"
        and el.data.topoViewerRole not in _NON_NODE_ROLES
        and not is_special_endpoint(el.data.id)
    )


def _is_cloud(el: CyElement) -> bool:
    return el.group == "nodes" and el.data.topoViewerRole == "cloud"


def _is_bridge_cloud(el: CyElement) -> bool:
    return _is_cloud(el) and _extra(el).kind in BRIDGE_KINDS


def _parse_elements(payload: Iterable[CyElement | dict]) -> list[CyElement]:
    return [el if isinstance(el, CyElement) else CyElement.model_validate(el) for el in payload]


# ── Endpoint strings and link keys ──────────────────────────────────


def _endpoint_str(node: str, iface: str) -> str | None:
    # host/mgmt-net/macvlan ids such as ``macvlan:eth0`` already name their far
    # side. Bridges are real nodes and keep their own interface.
    special = special_kind(node)
    if special and special[0] in HOST_INTERFACE_KINDS:
        return node
    if node and iface:
        return f"{node}:{iface}"
    return None


def edge_endpoints(data: ElementData) -> list[str] | None:
    """Return the flat ``["node:iface", "node:iface"]`` pair for an edge.

    An explicit ``endpoints`` array wins when both sides are well formed.
    """
    eps = data.endpoints
    if isinstance(eps, list) and len(eps) == 2 and all(isinstance(ep, str) and ":" in ep for ep in eps):
        return list(eps)
    src = _endpoint_str(data.source or "", data.sourceEndpoint or "")
    tgt = _endpoint_str(data.target or "", data.targetEndpoint or "")
    if src is None or tgt is None:
        return None
    return [src, tgt]


def _renamed(node: str, renames: dict[str, str]) -> str:
    return renames.get(node, node)


def _renamed_endpoint_str(endpoint: str, renames: dict[str, str]) -> str:
    # Split on the last colon so bridge ids such as ``bridge:br0`` stay whole.
    node, sep, iface = endpoint.rpartition(":")
    if not sep:
        return _renamed(endpoint, renames)
    return f"{_renamed(node, renames)}:{iface}"


def _flat_key(endpoints: Iterable, renames: dict[str, str]) -> str:
    return ",".join(_renamed_endpoint_str(scalar_str(ep), renames) for ep in endpoints)


def _link_type(item: CommentedMap) -> str:
    return scalar_str(item.get("type"))


def _endpoint_pair(ep: object, renames: dict[str, str]) -> tuple[str, str]:
    if isinstance(ep, dict):
        return _renamed(scalar_str(ep.get("node")), renames), scalar_str(ep.get("interface"))
    return "", ""


def _extended_key(item: CommentedMap, renames: dict[str, str]) -> tuple[str, str, str, str]:
    node, iface = _endpoint_pair(item.get("endpoint"), renames)
    return _link_type(item), scalar_str(item.get("host-interface")), node, iface


def _veth_key(item: CommentedMap, renames: dict[str, str]) -> frozenset | None:
    eps = item.get("endpoints")
    if not isinstance(eps, list) or len(eps) != 2:
        return None
    return frozenset(_endpoint_pair(ep, renames) for ep in eps)


def _is_flat(item: object) -> bool:
    return isinstance(item, dict) and "type" not in item and isinstance(item.get("endpoints"), list)


# ── Step 1-3: nodes ─────────────────────────────────────────────────


def _set_or_elide(node_map: CommentedMap, key: str, desired: object, inherited: object) -> None:
    """Write ``key`` only when it differs from what inheritance would give."""
    desired = scalar_str(desired)
    if desired and desired != scalar_str(inherited):
        if scalar_str(node_map.get(key)) != desired:
            node_map[key] = desired
    elif key in node_map:
        del node_map[key]


def _node_entry(nodes: CommentedMap, key: str) -> CommentedMap:
    node_map = nodes.get(key)
    if not isinstance(node_map, CommentedMap):
        node_map = block_map()
        nodes[key] = node_map
    return node_map


def _lookup_key(nodes: CommentedMap, node_id: str, new_name: str, node_keys: dict[str, str]) -> str:
    """Find the document key currently holding the subtree of graph node ``node_id``."""
    tracked = node_keys.get(node_id)
    if tracked is not None and tracked in nodes:
        return tracked
    # A node renamed by an earlier save is already stored under its new name.
    if node_id not in nodes and new_name in nodes:
        return new_name
    return node_id


def _upsert_node(
    doc: CommentedMap,
    nodes: CommentedMap,
    el: CyElement,
    renames: dict[str, str],
    node_keys: dict[str, str],
) -> str:
    """Reconcile one graph node; return the document key it ends up under."""
    node_id = el.data.id
    new_name = el.data.name or node_id
    key = _lookup_key(nodes, node_id, new_name, node_keys)
    node_map = _node_entry(nodes, key)
    extra = _extra(el)

    # An absent payload value keeps whatever the document has.
    current_group = scalar_str(node_map.get("group"))
    group = extra.group if extra.group is not None else current_group
    kind = extra.kind if extra.kind is not None else node_map.get("kind")
    image = extra.image if extra.image is not None else node_map.get("image")
    node_type = extra.type if extra.type is not None else node_map.get("type")

    if group:
        if current_group != group:
            node_map["group"] = group
    elif "group" in node_map:
        del node_map["group"]

    inherited = resolve_node_config(doc, group=group or None)
    _set_or_elide(node_map, "kind", kind, inherited.get("kind"))

    effective_kind = scalar_str(kind) or scalar_str(inherited.get("kind"))
    inherited = resolve_node_config(doc, group=group or None, kind=effective_kind or None)
    _set_or_elide(node_map, "image", image, inherited.get("image"))
    if effective_kind in _TYPED_KINDS:
        _set_or_elide(node_map, "type", node_type, inherited.get("type"))
    elif "type" in node_map:
        del node_map["type"]

    if key != new_name:
        rename_key(nodes, key, new_name)
        log.info("Renamed node %s -> %s", key, new_name)
        if key != node_id:
            # Links written by an earlier save already carry the previous name.
            renames[key] = new_name
    if new_name != node_id:
        renames[node_id] = new_name
    node_keys[node_id] = new_name
    return new_name


def _materialize_bridges(nodes: CommentedMap, bridge_clouds: list[CyElement]) -> None:
    for el in bridge_clouds:
        node_map = _node_entry(nodes, el.data.id)
        kind = _extra(el).kind
        if kind and scalar_str(node_map.get("kind")) != kind:
            node_map["kind"] = kind


def _remove_stale_nodes(nodes: CommentedMap, keep_keys: set[str]) -> None:
    for key in list(nodes.keys()):
        if key in keep_keys:
            continue
        value = nodes[key]
        kind = scalar_str(value.get("kind")) if isinstance(value, dict) else ""
        if kind in _PRESERVED_KINDS:
            log.debug("Keeping legacy %s node %s", kind, key)
            continue
        del nodes[key]
        log.info("Removed node %s", key)


# ── Step 4-6: links ─────────────────────────────────────────────────


def _classify_special(endpoint_id: str, bridge_kinds: dict[str, str]) -> tuple[str, str] | None:
    if endpoint_id in bridge_kinds:
        return bridge_kinds[endpoint_id], endpoint_id
    return special_kind(endpoint_id)


def _has_flat(links: CommentedSeq, key: str, renames: dict[str, str]) -> bool:
    return any(_is_flat(item) and _flat_key(item["endpoints"], renames) == key for item in links)


def _upsert_link(
    links: CommentedSeq,
    edge: CyElement,
    link_save_format: LinkSaveFormat,
    bridge_kinds: dict[str, str],
    renames: dict[str, str],
) -> None:
    data = edge.data
    eps = edge_endpoints(data)
    if eps is None:
        return
    src, tgt = data.source or "", data.target or ""
    if is_readonly_special(src) or is_readonly_special(tgt):
        # vxlan/dummy links are not editable from the graph
        return
    src_ep, tgt_ep = data.sourceEndpoint or "", data.targetEndpoint or ""
    src_special = is_special_endpoint(src, bridge_kinds)
    tgt_special = is_special_endpoint(tgt, bridge_kinds)

    flat_key = _flat_key(eps, renames)
    if _has_flat(links, flat_key, renames):
        return

    special = None
    if src_special != tgt_special:
        special = _classify_special(src if src_special else tgt, bridge_kinds)
    cont_node, cont_if = (tgt, tgt_ep) if src_special else (src, src_ep)
    extended = link_save_format == "extended"

    if special and cont_node and cont_if:
        kind, suffix = special
        if kind in HOST_INTERFACE_KINDS:
            wanted = (kind, suffix, _renamed(cont_node, renames), cont_if)
            if any(isinstance(it, dict) and "type" in it and _extended_key(it, renames) == wanted for it in links):
                return
        else:
            wanted_pair = frozenset({(_renamed(src, renames), src_ep), (_renamed(tgt, renames), tgt_ep)})
            for it in links:
                if isinstance(it, dict) and _link_type(it) == "veth" and _veth_key(it, renames) == wanted_pair:
                    return

    if extended and special and cont_node and cont_if:
        kind, suffix = special
        if kind in HOST_INTERFACE_KINDS:
            links.append(block_map([
                ("type", kind),
                ("host-interface", suffix),
                ("endpoint", endpoint_map(cont_node, cont_if)),
            ]))
            log.debug("Added %s link %s:%s -> %s", kind, cont_node, cont_if, suffix)
            return

        # Bridges are nodes in clab, so the link is an ordinary two-sided veth.
        special_node, special_if = (src, src_ep) if src_special else (tgt, tgt_ep)
        links.append(block_map([
            ("type", "veth"),
            ("endpoints", block_seq([
                endpoint_map(special_node, special_if),
                endpoint_map(cont_node, cont_if),
            ])),
        ]))
        log.debug("Added veth link %s:%s -> %s:%s", special_node, special_if, cont_node, cont_if)
        return

    links.append(block_map([("endpoints", flow_seq(eps))]))
    log.debug("Added link %s", flat_key)


def _prune_links(
    links: CommentedSeq,
    payload_flat_keys: set[str],
    special_cloud_ids: set[str],
    renames: dict[str, str],
) -> None:
    stale: list[int] = []
    for i, item in enumerate(links):
        if isinstance(item, dict) and "type" in item:
            link_type = _link_type(item)
            if link_type in HOST_INTERFACE_KINDS:
                special_id = f"{link_type}:{scalar_str(item.get('host-interface'))}"
                if special_id not in special_cloud_ids:
                    log.debug("Removed %s link (no cloud node %s)", link_type, special_id)
                    stale.append(i)
        elif _is_flat(item):
            key = _flat_key(item["endpoints"], renames)
            if key not in payload_flat_keys:
                log.debug("Removed link %s", key)
                stale.append(i)
    # Delete back to front so comment indexes shift with their items.
    for i in reversed(stale):
        del links[i]


def _rename_endpoint_node(ep: object, renames: dict[str, str]) -> None:
    if not isinstance(ep, dict):
        return
    node = scalar_str(ep.get("node"))
    if node in renames:
        ep["node"] = renames[node]


def _propagate_renames(links: CommentedSeq, renames: dict[str, str]) -> None:
    for item in links:
        if not isinstance(item, dict):
            continue
        if isinstance(item, CommentedMap):
            item.fa.set_block_style()
        if "type" in item:
            if _link_type(item) == "veth":
                for ep in item.get("endpoints") or []:
                    _rename_endpoint_node(ep, renames)
            else:
                _rename_endpoint_node(item.get("endpoint"), renames)
            continue

        eps = item.get("endpoints")
        if not isinstance(eps, list):
            continue
        for i, ep in enumerate(eps):
            ep_str = scalar_str(ep)
            renamed = _renamed_endpoint_str(ep_str, renames)
            if renamed != ep_str:
                eps[i] = renamed
        if isinstance(eps, CommentedSeq):
            eps.fa.set_flow_style()


# ── Document reconciliation ─────────────────────────────────────────


def sync_document(
    doc: CommentedMap,
    elements: list[CyElement],
    link_save_format: LinkSaveFormat = "flat",
    node_keys: dict[str, str] | None = None,
) -> dict[str, str]:
    """Reconcile ``doc`` in place with the graph; return the rename map.

    ``node_keys`` maps graph node ids to the document keys they were saved
    under by earlier saves of the same session. It is updated in place, so a
    node renamed twice before the graph reloads still finds its subtree.
    """
    if node_keys is None:
        node_keys = {}
    # Validate shape before touching anything.
    nodes = nodes_map(doc)
    check_links(doc)

    regular_nodes = [el for el in elements if _is_regular_node(el)]
    bridge_clouds = [el for el in elements if _is_bridge_cloud(el)]
    edges = [el for el in elements if el.group == "edges"]
    bridge_kinds = {el.data.id: _extra(el).kind for el in bridge_clouds}

    renames: dict[str, str] = {}

    # ── Step 1-3: nodes ──────────────────────────────────────────────
    keep_keys: set[str] = set()
    for el in regular_nodes:
        keep_keys.add(_upsert_node(doc, nodes, el, renames, node_keys))
    _materialize_bridges(nodes, bridge_clouds)
    _remove_stale_nodes(nodes, keep_keys | set(bridge_kinds))
    for node_id in set(node_keys) - {el.data.id for el in regular_nodes}:
        del node_keys[node_id]

    # ── Step 4-5: links ──────────────────────────────────────────────
    links = links_seq(doc)
    for edge in edges:
        _upsert_link(links, edge, link_save_format, bridge_kinds, renames)

    payload_flat_keys = set()
    for edge in edges:
        if edge.data.yamlProvenance == "extended":
            continue
        eps = edge_endpoints(edge.data)
        if eps:
            payload_flat_keys.add(_flat_key(eps, renames))
    special_cloud_ids = {el.data.id for el in elements if _is_cloud(el) and is_special_endpoint(el.data.id)}
    _prune_links(links, payload_flat_keys, special_cloud_ids, renames)

    # ── Step 6: renames reach every link, new ones included ──────────
    _propagate_renames(links, renames)
    return renames


# ── Annotations ─────────────────────────────────────────────────────


def _round_px(value: float) -> int:
    # Half-up, matching the viewer's rounding.
    return math.floor(value + 0.5)


def _geo(lat: object, lng: object) -> GeoCoordinates | None:
    if not lat or not lng:
        return None
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if math.isnan(lat_f) or math.isnan(lng_f):
        return None
    return GeoCoordinates(lat=lat_f, lng=lng_f)


def _group_level(parent: str | None) -> tuple[str | None, str | None]:
    """Split a ``group:level`` parent id; anything else means no group."""
    if not parent:
        return None, None
    parts = parent.split(":")
    if len(parts) != 2:
        return None, None
    return parts[0], parts[1]


def build_annotations(existing: TopologyAnnotations, elements: list[CyElement]) -> TopologyAnnotations:
    """Rebuild node and cloud-node annotations; other annotation kinds carry over."""
    node_annotations: list[NodeAnnotation] = []
    for el in elements:
        if not _is_regular_node(el):
            continue
        pos = el.position or Position()
        group, level = _group_level(el.parent)
        node_annotations.append(NodeAnnotation(
            id=el.data.id,
            position=PixelPosition(x=_round_px(pos.x), y=_round_px(pos.y)),
            icon=el.data.topoViewerRole,
            geoCoordinates=_geo(el.data.lat, el.data.lng),
            groupLabelPos=el.data.groupLabelPos or None,
            group=group,
            level=level,
        ))

    cloud_annotations: list[CloudNodeAnnotation] = []
    for el in elements:
        if not _is_cloud(el):
            continue
        pos = el.position or Position()
        group, level = _group_level(el.parent)
        cloud_annotations.append(CloudNodeAnnotation(
            id=el.data.id,
            type=_extra(el).kind or "host",
            label=el.data.name or el.data.id,
            position=Position(x=pos.x, y=pos.y),
            group=group,
            level=level,
        ))

    return existing.model_copy(update={
        "nodeAnnotations": node_annotations,
        "cloudNodeAnnotations": cloud_annotations,
    })


# ── Entry point ─────────────────────────────────────────────────────


async def save_viewport(
    mode: Mode,
    session: TopologySession,
    payload: Iterable[CyElement | dict],
    link_save_format: LinkSaveFormat = "flat",
    store: AnnotationStore = annotation_store,
    set_internal_update: InternalUpdateCallback | None = None,
) -> None:
    """Persist the graph: annotations always, the topology document in edit mode only."""
    if mode not in ("view", "edit"):
        raise ValueError(f"Invalid mode {mode!r}")
    elements = _parse_elements(payload)

    if mode == "edit":
        renames = sync_document(session.document, elements, link_save_format, session.node_keys)
        if renames:
            log.info("Applied %d rename(s) in %s", len(renames), session.path)

    annotations = await store.load(session.path)
    await store.save(session.path, build_annotations(annotations, elements))

    if mode == "view":
        log.info("View mode: saved annotations only, %s not touched", session.path)
        return

    await session.write(set_internal_update)

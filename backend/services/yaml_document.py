"""Format-preserving access to a clab topology document.

The document is held as a ruamel.yaml round-trip tree so comments, key order
and quoting outside the touched subtrees survive a save. Only the helpers here
know about ruamel types; the services work on ``CommentedMap`` /
``CommentedSeq`` as ordinary dicts and lists.
"""

from __future__ import annotations

import io
from typing import Any

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.error import YAMLError

from errors import StructuralError


def _yaml() -> YAML:
    y = YAML()  # round-trip
    y.preserve_quotes = True
    y.indent(mapping=2, sequence=4, offset=2)
    y.width = 4096
    return y


def parse_document(yaml_content: str) -> CommentedMap:
    """Parse clab YAML text into an editable tree."""
    try:
        doc = _yaml().load(yaml_content)
    except YAMLError as e:
        raise StructuralError(f"Topology YAML could not be parsed: {e}") from e
    if not isinstance(doc, CommentedMap):
        raise StructuralError("Topology YAML root is not a mapping")
    return doc


def dump_document(doc: CommentedMap) -> str:
    stream = io.StringIO()
    _yaml().dump(doc, stream)
    return stream.getvalue()


def _topology_section(doc: Any) -> CommentedMap:
    section = doc.get("topology") if isinstance(doc, dict) else None
    if not isinstance(section, CommentedMap):
        raise StructuralError("YAML topology is not a map")
    return section


def nodes_map(doc: CommentedMap) -> CommentedMap:
    """Return ``topology.nodes``, forced to block style."""
    nodes = _topology_section(doc).get("nodes")
    if not isinstance(nodes, CommentedMap):
        raise StructuralError("YAML topology nodes is not a map")
    nodes.fa.set_block_style()
    return nodes


def check_links(doc: CommentedMap) -> None:
    """Raise unless ``topology.links`` is a sequence, empty or absent."""
    links = _topology_section(doc).get("links")
    if links is not None and not isinstance(links, CommentedSeq):
        raise StructuralError("YAML topology links is not a sequence")


def links_seq(doc: CommentedMap, create: bool = True) -> CommentedSeq | None:
    """Return ``topology.links`` in block style, creating it when absent."""
    check_links(doc)
    section = _topology_section(doc)
    links = section.get("links")
    if links is None:
        if not create:
            return None
        links = CommentedSeq()
        section["links"] = links
    links.fa.set_block_style()
    return links


def block_map(items: list[tuple[str, Any]] | None = None) -> CommentedMap:
    m = CommentedMap()
    m.fa.set_block_style()
    for key, value in items or []:
        m[key] = value
    return m


def endpoint_map(node: str, interface: str, mac: str | None = None) -> CommentedMap:
    m = CommentedMap()
    m["node"] = node
    m["interface"] = interface
    if mac:
        m["mac"] = mac
    return m


def flow_seq(items: list) -> CommentedSeq:
    seq = CommentedSeq(items)
    seq.fa.set_flow_style()
    return seq


def block_seq(items: list) -> CommentedSeq:
    seq = CommentedSeq(items)
    seq.fa.set_block_style()
    return seq


def scalar_str(value: Any) -> str:
    """Stringify a scalar the way it reads in the file; None becomes ''."""
    return "" if value is None else str(value)


def rename_key(mapping: CommentedMap, old: str, new: str) -> None:
    """Rename ``old`` to ``new`` keeping its position and attached comments."""
    value = mapping[old]
    if new in mapping:
        mapping[new] = value
    else:
        mapping.insert(list(mapping.keys()).index(old), new, value)
    comment = mapping.ca.items.pop(old, None)
    del mapping[old]
    if comment is not None:
        mapping.ca.items[new] = comment

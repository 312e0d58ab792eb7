"""Resolve the node properties containerlab would apply without an explicit value.

Precedence (later wins): ``topology.defaults`` -> ``topology.kinds[kind]`` ->
``topology.groups[group]``. The node's own keys are not part of the result;
callers compare against it to decide whether an explicit value is redundant.
"""

from __future__ import annotations

from typing import Any

_INHERITED_KEYS = ("kind", "image", "type")


def _table(section: dict, name: str) -> dict:
    value = section.get(name)
    return value if isinstance(value, dict) else {}


def resolve_node_config(
    topology: dict | None,
    group: str | None = None,
    kind: str | None = None,
) -> dict[str, Any]:
    """Return the effective ``{kind, image, type}`` for a node in ``group``.

    ``kind`` is the node's explicit kind, if any; it selects which
    ``kinds`` entry contributes image/type.
    """
    section = (topology or {}).get("topology")
    section = section if isinstance(section, dict) else {}

    defaults = _table(section, "defaults")
    group_cfg = _table(_table(section, "groups"), group) if group else {}
    kind_name = kind or group_cfg.get("kind") or defaults.get("kind")
    kind_cfg = _table(_table(section, "kinds"), kind_name) if kind_name else {}

    resolved: dict[str, Any] = {}
    for layer in (defaults, kind_cfg, group_cfg):
        for key in _INHERITED_KEYS:
            if layer.get(key) is not None:
                resolved[key] = layer[key]
    if kind_name:
        resolved["kind"] = kind_name
    return resolved

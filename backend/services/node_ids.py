"""Pick ids for nodes added from the editor, derived from the ids already present."""

from __future__ import annotations

import re
from collections.abc import Iterable

_HOST_ENDPOINT_RE = re.compile(r"^host:eth(\d+)$")


def next_node_id(existing_ids: Iterable[str], prefix: str = "nodeId-") -> str:
    """Return ``<prefix><n>`` with n one past the highest numeric suffix in use."""
    highest = 0
    for node_id in existing_ids:
        if not node_id.startswith(prefix):
            continue
        suffix = node_id[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1}"


def next_host_endpoint_id(existing_ids: Iterable[str]) -> str:
    """Return the next free ``host:eth<n>`` id (``host:eth1`` when none exist)."""
    nums = [int(m.group(1)) for m in map(_HOST_ENDPOINT_RE.match, existing_ids) if m]
    return f"host:eth{max(nums) + 1 if nums else 1}"

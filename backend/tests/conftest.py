"""
Shared fixtures for topology viewer backend tests.
"""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from services.topology_session import SessionRegistry, TopologySession, WriteGuard

BASE_TOPOLOGY = """\
name: lab
topology:
  defaults:
    kind: linux
  kinds:
    nokia_srlinux:
      image: ghcr.io/nokia/srlinux:latest
      type: ixrd1
  groups:
    spines:
      kind: nokia_srlinux
    servers:
      kind: linux
      image: alpine:latest
  nodes:
    # core router
    srl1:
      kind: nokia_srlinux
      group: spines
    client1:
      image: alpine:latest
  links:
    - endpoints: [srl1:e1-1, client1:eth1]
"""


@pytest.fixture
def guard() -> WriteGuard:
    return WriteGuard(grace_seconds=0)


@pytest.fixture
def make_session(tmp_path: Path, guard: WriteGuard):
    def _make(content: str = BASE_TOPOLOGY, name: str = "lab") -> TopologySession:
        path = tmp_path / f"{name}.clab.yml"
        path.write_text(content)
        return TopologySession(path, guard)

    return _make


@pytest.fixture
def session(make_session) -> TopologySession:
    return make_session()


@pytest.fixture
def registry(tmp_path: Path, guard: WriteGuard) -> SessionRegistry:
    return SessionRegistry(workdir=tmp_path, guard=guard)


def read_yaml(path: Path) -> dict:
    return yaml.safe_load(path.read_text())


def node(
    node_id: str,
    name: str | None = None,
    role: str = "router",
    x: float = 0,
    y: float = 0,
    parent: str | None = None,
    **extra,
) -> dict:
    element = {
        "group": "nodes",
        "data": {
            "id": node_id,
            "name": name or node_id,
            "topoViewerRole": role,
            "extraData": extra,
        },
        "position": {"x": x, "y": y},
    }
    if parent:
        element["parent"] = parent
    return element


def cloud(node_id: str, kind: str, name: str | None = None, x: float = 0, y: float = 0) -> dict:
    return node(node_id, name=name, role="cloud", x=x, y=y, kind=kind)


def edge(source: str, source_ep: str, target: str, target_ep: str, **data) -> dict:
    return {
        "group": "edges",
        "data": {
            "id": f"{source}:{source_ep}--{target}:{target_ep}",
            "source": source,
            "target": target,
            "sourceEndpoint": source_ep,
            "targetEndpoint": target_ep,
            **data,
        },
    }

"""
Tests for graph <-> document synchronization.
"""
from __future__ import annotations

import json

import pytest

from conftest import BASE_TOPOLOGY, cloud, edge, node, read_yaml
from errors import StructuralError
from schemas import CyElement, ElementData
from services.annotations import annotations_path
from services.viewport_sync import edge_endpoints, save_viewport, sync_document


def base_payload(**srl_overrides) -> list[dict]:
    srl = {
        "kind": "nokia_srlinux",
        "group": "spines",
        "image": "ghcr.io/nokia/srlinux:latest",
        "type": "ixrd1",
        **srl_overrides,
    }
    return [
        node("srl1", x=100.4, y=200.6, **srl),
        node("client1", role="client", x=300, y=200, kind="linux", image="alpine:latest"),
        edge("srl1", "e1-1", "client1", "eth1"),
    ]


SIMPLE_TOPOLOGY = """\
name: simple
topology:
  groups:
    g1:
      kind: X
  nodes:
    n1:
      kind: X
    n2:
      kind: linux
  links: []
"""


@pytest.mark.asyncio
async def test_flat_example_elides_inherited_kind(make_session) -> None:
    session = make_session(SIMPLE_TOPOLOGY)
    payload = [node("n1", kind="X", group="g1"), edge("n1", "eth1", "n2", "eth1")]

    await save_viewport("edit", session, payload, "flat")

    topo = read_yaml(session.path)["topology"]
    assert topo["nodes"] == {"n1": {"group": "g1"}}
    assert topo["links"] == [{"endpoints": ["n1:eth1", "n2:eth1"]}]


@pytest.mark.asyncio
async def test_extended_example_writes_macvlan_link(make_session) -> None:
    session = make_session(SIMPLE_TOPOLOGY)
    payload = [
        node("n1", kind="X", group="g1"),
        cloud("macvlan:eth0", "macvlan"),
        edge("n1", "eth1", "macvlan:eth0", ""),
    ]

    await save_viewport("edit", session, payload, "extended")

    topo = read_yaml(session.path)["topology"]
    assert "n2" not in topo["nodes"]
    assert "macvlan:eth0" not in topo["nodes"]
    assert topo["links"] == [{
        "type": "macvlan",
        "host-interface": "eth0",
        "endpoint": {"node": "n1", "interface": "eth1"},
    }]


@pytest.mark.asyncio
async def test_second_save_is_byte_identical(session) -> None:
    await save_viewport("edit", session, base_payload(), "flat")
    first = session.path.read_text()

    await save_viewport("edit", session, base_payload(), "flat")

    assert session.path.read_text() == first
    assert len(read_yaml(session.path)["topology"]["links"]) == 1


@pytest.mark.asyncio
async def test_reloaded_document_saves_identically(session, make_session) -> None:
    await save_viewport("edit", session, base_payload(), "extended")
    first = session.path.read_text()

    fresh = make_session(first, name="reloaded")
    await save_viewport("edit", fresh, base_payload(), "extended")

    assert fresh.path.read_text() == first


@pytest.mark.asyncio
async def test_inherited_properties_are_elided(session) -> None:
    await save_viewport("edit", session, base_payload(), "flat")

    nodes = read_yaml(session.path)["topology"]["nodes"]
    assert nodes["srl1"] == {"group": "spines"}
    assert nodes["client1"] == {"image": "alpine:latest"}


@pytest.mark.asyncio
async def test_group_change_brings_explicit_kind_back(session) -> None:
    await save_viewport("edit", session, base_payload(), "flat")
    await save_viewport("edit", session, base_payload(group="servers"), "flat")

    srl1 = read_yaml(session.path)["topology"]["nodes"]["srl1"]
    assert srl1["group"] == "servers"
    assert srl1["kind"] == "nokia_srlinux"
    assert srl1["image"] == "ghcr.io/nokia/srlinux:latest"
    assert "type" not in srl1


@pytest.mark.asyncio
async def test_type_dropped_for_kinds_without_hardware_type(make_session) -> None:
    session = make_session(SIMPLE_TOPOLOGY)
    payload = [node("n1", kind="linux", type="ixrd3")]

    await save_viewport("edit", session, payload, "flat")

    assert read_yaml(session.path)["topology"]["nodes"]["n1"] == {"kind": "linux"}


@pytest.mark.asyncio
async def test_view_mode_never_touches_document(session) -> None:
    before = session.path.read_text()
    payload = base_payload(group="servers") + [node("new1", kind="linux")]

    await save_viewport("view", session, payload, "extended")

    assert session.path.read_text() == before
    saved = json.loads(annotations_path(session.path).read_text())
    assert [a["id"] for a in saved["nodeAnnotations"]] == ["srl1", "client1", "new1"]


@pytest.mark.asyncio
async def test_rename_propagates_to_keys_and_links(make_session) -> None:
    content = BASE_TOPOLOGY + (
        "    - type: host\n"
        "      endpoint:\n"
        "        node: srl1\n"
        "        interface: e1-2\n"
        "      host-interface: tap0\n"
    )
    session = make_session(content)
    payload = base_payload()
    payload[0]["data"]["name"] = "spine1"
    payload += [cloud("host:tap0", "host"), edge("srl1", "e1-2", "host:tap0", "")]

    await save_viewport("edit", session, payload, "flat")

    topo = read_yaml(session.path)["topology"]
    assert "srl1" not in topo["nodes"]
    assert list(topo["nodes"]) == ["spine1", "client1"]
    assert topo["links"] == [
        {"endpoints": ["spine1:e1-1", "client1:eth1"]},
        {"type": "host", "endpoint": {"node": "spine1", "interface": "e1-2"}, "host-interface": "tap0"},
    ]


@pytest.mark.asyncio
async def test_rename_applies_to_links_added_in_same_save(session) -> None:
    payload = base_payload()
    payload[0]["data"]["name"] = "spine1"
    payload.append(edge("srl1", "e1-5", "client1", "eth5"))

    await save_viewport("edit", session, payload, "flat")
    first = session.path.read_text()
    await save_viewport("edit", session, payload, "flat")

    links = read_yaml(session.path)["topology"]["links"]
    assert {"endpoints": ["spine1:e1-5", "client1:eth5"]} in links
    assert len(links) == 2
    assert session.path.read_text() == first


@pytest.mark.asyncio
async def test_stale_nodes_removed_but_legacy_kinds_kept(make_session) -> None:
    session = make_session(
        "topology:\n"
        "  nodes:\n"
        "    old1:\n"
        "      kind: linux\n"
        "    br-legacy:\n"
        "      kind: bridge\n"
        "    hostnode:\n"
        "      kind: host\n"
        "    n1: {}\n"
    )

    await save_viewport("edit", session, [node("n1", kind="linux")], "flat")

    nodes = read_yaml(session.path)["topology"]["nodes"]
    assert set(nodes) == {"br-legacy", "hostnode", "n1"}


@pytest.mark.asyncio
async def test_links_missing_from_graph_are_pruned(make_session) -> None:
    session = make_session(
        "topology:\n"
        "  nodes:\n"
        "    a: {kind: linux}\n"
        "    b: {kind: linux}\n"
        "  links:\n"
        "    - endpoints: [a:eth1, b:eth1]\n"
        "    - endpoints: [a:eth2, b:eth2]\n"
        "    - type: macvlan\n"
        "      endpoint: {node: a, interface: eth3}\n"
        "      host-interface: eth0\n"
        "    - type: vxlan\n"
        "      endpoint: {node: a, interface: eth4}\n"
        "      remote: 192.0.2.1\n"
        "      vni: 100\n"
        "      udp-port: 4789\n"
        "    - type: dummy\n"
        "      endpoint: {node: b, interface: eth9}\n"
    )
    payload = [
        node("a", kind="linux"),
        node("b", kind="linux"),
        edge("a", "eth1", "b", "eth1"),
        edge("a", "eth4", "vxlan:192.0.2.1/100", "", yamlProvenance="extended"),
    ]

    await save_viewport("edit", session, payload, "flat")

    links = read_yaml(session.path)["topology"]["links"]
    assert [l.get("type", "flat") for l in links] == ["flat", "vxlan", "dummy"]
    assert links[0]["endpoints"] == ["a:eth1", "b:eth1"]


@pytest.mark.asyncio
async def test_bridge_cloud_is_materialized_with_veth_link(session) -> None:
    payload = base_payload() + [
        cloud("bridge:br0", "bridge"),
        edge("srl1", "e1-3", "bridge:br0", "eth1"),
    ]

    await save_viewport("edit", session, payload, "extended")
    first = session.path.read_text()
    await save_viewport("edit", session, payload, "extended")

    topo = read_yaml(session.path)["topology"]
    assert topo["nodes"]["bridge:br0"] == {"kind": "bridge"}
    assert topo["links"][-1] == {
        "type": "veth",
        "endpoints": [
            {"node": "bridge:br0", "interface": "eth1"},
            {"node": "srl1", "interface": "e1-3"},
        ],
    }
    assert session.path.read_text() == first


@pytest.mark.asyncio
async def test_bridge_edge_keeps_interface_in_flat_mode(session) -> None:
    payload = base_payload() + [
        cloud("bridge:br0", "bridge"),
        edge("srl1", "e1-3", "bridge:br0", "eth1"),
    ]

    await save_viewport("edit", session, payload, "flat")
    first = session.path.read_text()
    await save_viewport("edit", session, payload, "flat")

    links = read_yaml(session.path)["topology"]["links"]
    assert links == [
        {"endpoints": ["srl1:e1-1", "client1:eth1"]},
        {"endpoints": ["srl1:e1-3", "bridge:br0:eth1"]},
    ]
    assert session.path.read_text() == first


@pytest.mark.asyncio
async def test_second_rename_before_reload_keeps_node_settings(make_session) -> None:
    session = make_session(BASE_TOPOLOGY.replace(
        "      group: spines\n",
        "      group: spines\n      mgmt-ipv4: 10.0.0.5\n      binds:\n        - /tmp/cfg:/cfg\n",
    ))
    payload = base_payload()
    payload[0]["data"]["name"] = "spine1"
    await save_viewport("edit", session, payload, "flat")

    # The graph still knows the node as srl1 until it reloads.
    payload[0]["data"]["name"] = "spine9"
    await save_viewport("edit", session, payload, "flat")

    topo = read_yaml(session.path)["topology"]
    assert list(topo["nodes"]) == ["spine9", "client1"]
    assert topo["nodes"]["spine9"] == {
        "group": "spines",
        "mgmt-ipv4": "10.0.0.5",
        "binds": ["/tmp/cfg:/cfg"],
    }
    assert topo["links"] == [{"endpoints": ["spine9:e1-1", "client1:eth1"]}]
    assert session.node_keys == {"srl1": "spine9", "client1": "client1"}


@pytest.mark.asyncio
async def test_rename_back_to_original_id(session) -> None:
    payload = base_payload()
    payload[0]["data"]["name"] = "spine1"
    await save_viewport("edit", session, payload, "flat")

    payload[0]["data"]["name"] = "srl1"
    await save_viewport("edit", session, payload, "flat")

    topo = read_yaml(session.path)["topology"]
    assert list(topo["nodes"]) == ["srl1", "client1"]
    assert topo["nodes"]["srl1"] == {"group": "spines"}
    assert topo["links"] == [{"endpoints": ["srl1:e1-1", "client1:eth1"]}]


@pytest.mark.asyncio
async def test_existing_extended_link_not_duplicated_in_flat_mode(make_session) -> None:
    session = make_session(
        "topology:\n"
        "  nodes:\n"
        "    a: {kind: linux}\n"
        "  links:\n"
        "    - type: host\n"
        "      endpoint: {node: a, interface: eth1}\n"
        "      host-interface: tap0\n"
    )
    payload = [node("a", kind="linux"), cloud("host:tap0", "host"), edge("a", "eth1", "host:tap0", "")]

    await save_viewport("edit", session, payload, "flat")

    assert len(read_yaml(session.path)["topology"]["links"]) == 1


@pytest.mark.asyncio
async def test_comments_and_untouched_sections_survive(make_session) -> None:
    content = BASE_TOPOLOGY.replace("    spines:\n", "    spines:  # spine layer\n")
    session = make_session("# lab file header\n" + content)

    await save_viewport("edit", session, base_payload(), "flat")

    text = session.path.read_text()
    assert text.startswith("# lab file header\n")
    assert "# spine layer" in text
    assert "# core router" in text
    assert "srl1:e1-1" in text


@pytest.mark.asyncio
async def test_missing_links_key_is_created(make_session) -> None:
    session = make_session("topology:\n  nodes:\n    a:\n      kind: linux\n")

    await save_viewport("edit", session, [node("a", kind="linux"), edge("a", "eth1", "b", "eth1")], "flat")

    assert read_yaml(session.path)["topology"]["links"] == [{"endpoints": ["a:eth1", "b:eth1"]}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content",
    [
        "topology:\n  nodes: [a, b]\n  links: []\n",
        "topology:\n  nodes:\n    a: {}\n  links: oops\n",
        "name: no-topology\n",
    ],
)
async def test_structural_errors_abort_before_any_write(make_session, content: str) -> None:
    session = make_session(content)

    with pytest.raises(StructuralError):
        await save_viewport("edit", session, [node("a", kind="linux")], "flat")

    assert session.path.read_text() == content
    assert not annotations_path(session.path).exists()


@pytest.mark.asyncio
async def test_annotations_rebuilt_from_payload(session) -> None:
    annotations_path(session.path).write_text(json.dumps({
        "freeTextAnnotations": [{"id": "t1", "text": "hello", "position": {"x": 1, "y": 2}}],
        "nodeAnnotations": [{"id": "gone", "position": {"x": 0, "y": 0}}],
    }))
    payload = base_payload()
    payload[0]["parent"] = "dc1:1"
    payload[0]["data"].update(lat="52.52", lng="13.40", groupLabelPos="top-center")
    payload += [
        cloud("host:eth1", "host", name="uplink", x=10.6, y=20.2),
        node("group1:1", role="group"),
        node("note", role="freeText"),
    ]

    await save_viewport("view", session, payload)

    raw = annotations_path(session.path).read_text()
    assert '"x": 100,' in raw
    saved = json.loads(raw)
    assert saved["freeTextAnnotations"][0]["text"] == "hello"
    srl1, client1 = saved["nodeAnnotations"]
    assert srl1 == {
        "id": "srl1",
        "position": {"x": 100, "y": 201},
        "geoCoordinates": {"lat": 52.52, "lng": 13.4},
        "icon": "router",
        "groupLabelPos": "top-center",
        "group": "dc1",
        "level": "1",
    }
    assert "geoCoordinates" not in client1
    assert saved["cloudNodeAnnotations"] == [{
        "id": "host:eth1",
        "type": "host",
        "label": "uplink",
        "position": {"x": 10.6, "y": 20.2},
    }]


@pytest.mark.asyncio
async def test_internal_update_flag_brackets_the_write(session) -> None:
    calls: list[bool] = []

    await save_viewport("edit", session, base_payload(), "flat", set_internal_update=calls.append)

    assert calls == [True, False]


@pytest.mark.asyncio
async def test_view_mode_does_not_raise_internal_update(session) -> None:
    calls: list[bool] = []

    await save_viewport("view", session, base_payload(), set_internal_update=calls.append)

    assert calls == []


def test_sync_document_returns_rename_map(session) -> None:
    payload = [CyElement.model_validate(el) for el in base_payload()]
    payload[1].data.name = "host-a"

    renames = sync_document(session.document, payload)

    assert renames == {"client1": "host-a"}


def test_edge_endpoints_prefers_explicit_array() -> None:
    data = ElementData(
        id="e1", source="a", target="b", sourceEndpoint="eth1", targetEndpoint="eth2",
        endpoints=["a:e1-1", "b:e1-2"],
    )
    assert edge_endpoints(data) == ["a:e1-1", "b:e1-2"]

    data.endpoints = ["a", "b:e1-2"]
    assert edge_endpoints(data) == ["a:eth1", "b:eth2"]

    data.targetEndpoint = ""
    assert edge_endpoints(data) is None

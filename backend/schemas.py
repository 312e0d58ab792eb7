from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ── Graph payload (mirrors the viewer's element JSON) ──────────────


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class NodeExtraData(BaseModel):
    kind: str | None = None
    image: str | None = None
    type: str | None = None
    group: str | None = None
    longname: str | None = None
    mgmtIpv4Address: str | None = None
    networkInterface: str | None = None

    model_config = ConfigDict(extra="allow")


class ElementData(BaseModel):
    id: str
    name: str | None = None
    topoViewerRole: str | None = None
    extraData: NodeExtraData | None = None
    lat: str | float | None = None
    lng: str | float | None = None
    groupLabelPos: str | None = None
    # edges only
    source: str | None = None
    target: str | None = None
    sourceEndpoint: str | None = None
    targetEndpoint: str | None = None
    endpoints: list[Any] | None = None
    yamlProvenance: str | None = None

    model_config = ConfigDict(extra="allow")


class CyElement(BaseModel):
    group: Literal["nodes", "edges"]
    data: ElementData
    position: Position | None = None
    parent: str | None = None

    model_config = ConfigDict(extra="allow")


# ── Annotation sidecar ─────────────────────────────────────────────


class GeoCoordinates(BaseModel):
    lat: float
    lng: float


class PixelPosition(BaseModel):
    x: int = 0
    y: int = 0


class NodeAnnotation(BaseModel):
    id: str
    position: PixelPosition | None = None
    geoCoordinates: GeoCoordinates | None = None
    icon: str | None = None
    groupLabelPos: str | None = None
    group: str | None = None
    level: str | None = None


class CloudNodeAnnotation(BaseModel):
    id: str
    type: str = "host"
    label: str
    position: Position
    group: str | None = None
    level: str | None = None


class FreeTextAnnotation(BaseModel):
    id: str
    text: str
    position: Position
    fontSize: int | None = None
    fontColor: str | None = None
    backgroundColor: str | None = None
    fontWeight: Literal["normal", "bold"] | None = None
    fontStyle: Literal["normal", "italic"] | None = None
    textDecoration: Literal["none", "underline"] | None = None
    fontFamily: str | None = None
    width: float | None = None
    height: float | None = None
    zIndex: int | None = None


class GroupStyleAnnotation(BaseModel):
    id: str
    backgroundColor: str | None = None
    backgroundOpacity: float | None = None
    borderColor: str | None = None
    borderWidth: float | None = None
    borderStyle: Literal["solid", "dotted", "dashed", "double"] | None = None
    borderRadius: float | None = None
    color: str | None = None


class TopologyAnnotations(BaseModel):
    freeTextAnnotations: list[FreeTextAnnotation] = Field(default_factory=list)
    groupStyleAnnotations: list[GroupStyleAnnotation] = Field(default_factory=list)
    cloudNodeAnnotations: list[CloudNodeAnnotation] = Field(default_factory=list)
    nodeAnnotations: list[NodeAnnotation] = Field(default_factory=list)


# ── Links ──────────────────────────────────────────────────────────


LinkType = Literal[
    "short",
    "veth",
    "mgmt-net",
    "macvlan",
    "host",
    "vxlan",
    "vxlan-stitch",
    "dummy",
]


class NormalizedLinkMeta(BaseModel):
    hostInterface: str | None = None
    mode: str | None = None
    remote: str | None = None
    vni: int | None = None
    udpPort: int | None = None


class NormalizedLink(BaseModel):
    sourceNode: str
    sourceIface: str
    targetNode: str
    targetIface: str
    provenance: Literal["short", "extended"]
    linkType: LinkType
    meta: NormalizedLinkMeta | None = None


class LinkEndpoint(BaseModel):
    node: str
    interface: str
    mac: str | None = None


class ExtendedLinkUpdate(BaseModel):
    type: Literal["veth", "mgmt-net", "macvlan", "host", "vxlan", "vxlan-stitch", "dummy"]
    endpoint: LinkEndpoint
    host_interface: str | None = Field(default=None, alias="host-interface")
    mode: str | None = None
    remote: str | None = None
    vni: int | None = None
    udp_port: int | None = Field(default=None, alias="udp-port")
    mtu: int | None = None
    labels: dict[str, str | int] | None = None
    vars: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True)


# ── API request/response models ────────────────────────────────────


class ViewportSaveRequest(BaseModel):
    mode: Literal["view", "edit"]
    payload: list[CyElement]
    linkSaveFormat: Literal["flat", "extended"] | None = None


class LinkListResponse(BaseModel):
    links: list[NormalizedLink]


class NextNodeIdResponse(BaseModel):
    nodeId: str
    hostEndpointId: str

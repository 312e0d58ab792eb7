import logging

from fastapi import APIRouter, HTTPException, Query

from config import DEFAULT_LINK_SAVE_FORMAT
from errors import LinkNotFoundError, LinkValidationError, StructuralError
from schemas import (
    ExtendedLinkUpdate,
    LinkListResponse,
    NextNodeIdResponse,
    TopologyAnnotations,
    ViewportSaveRequest,
)
from services import extended_link, link_normalizer, node_ids, viewport_sync
from services.annotations import annotation_store
from services.topology_session import TopologySession, registry

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/viewer", tags=["viewer"])


# ── Helpers ─────────────────────────────────────────────────────────


def _get_session(topology_id: str) -> TopologySession:
    try:
        return registry.get(topology_id)
    except FileNotFoundError:
        raise HTTPException(404, "Topology not found")


def _document(session: TopologySession):
    try:
        return session.document
    except StructuralError as e:
        raise HTTPException(422, str(e))


# ── Save ────────────────────────────────────────────────────────────


@router.post("/{topology_id}/save")
async def save(topology_id: str, body: ViewportSaveRequest):
    session = _get_session(topology_id)
    link_format = body.linkSaveFormat or DEFAULT_LINK_SAVE_FORMAT
    try:
        await viewport_sync.save_viewport(
            body.mode,
            session,
            body.payload,
            link_save_format=link_format,
        )
    except StructuralError as e:
        raise HTTPException(422, str(e))
    return {"status": "saved", "mode": body.mode}


# ── Links ───────────────────────────────────────────────────────────


@router.get("/{topology_id}/links", response_model=LinkListResponse)
def list_links(topology_id: str):
    doc = _document(_get_session(topology_id))
    return {"links": link_normalizer.normalize_links(doc)}


@router.put("/{topology_id}/links")
async def update_link(topology_id: str, body: ExtendedLinkUpdate):
    session = _get_session(topology_id)
    _document(session)
    try:
        await extended_link.update_extended_link(session, body)
    except LinkNotFoundError as e:
        raise HTTPException(404, str(e))
    except LinkValidationError as e:
        raise HTTPException(400, str(e))
    except StructuralError as e:
        raise HTTPException(422, str(e))
    return {"status": "updated"}


# ── Annotations / ids ───────────────────────────────────────────────


@router.get("/{topology_id}/annotations", response_model=TopologyAnnotations)
async def get_annotations(topology_id: str):
    session = _get_session(topology_id)
    return await annotation_store.load(session.path)


@router.get("/{topology_id}/next-node-id", response_model=NextNodeIdResponse)
def next_node_id(topology_id: str, existing: list[str] = Query(default=[])):
    doc = _document(_get_session(topology_id))
    nodes = (doc.get("topology") or {}).get("nodes") or {}
    ids = [*existing, *(str(k) for k in nodes)]
    return {
        "nodeId": node_ids.next_node_id(ids),
        "hostEndpointId": node_ids.next_host_endpoint_id(ids),
    }

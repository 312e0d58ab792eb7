"""Sidecar storage for presentation-only metadata (positions, icons, groups).

The sidecar lives next to the topology document and never touches it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from config import ANNOTATIONS_SUFFIX
from schemas import TopologyAnnotations

log = logging.getLogger(__name__)


def annotations_path(document_path: Path) -> Path:
    return document_path.with_name(document_path.name + ANNOTATIONS_SUFFIX)


class AnnotationStore:
    """Load and save :class:`TopologyAnnotations` keyed by document path."""

    async def load(self, document_path: Path) -> TopologyAnnotations:
        path = annotations_path(document_path)
        if not path.exists():
            return TopologyAnnotations()
        try:
            return TopologyAnnotations.model_validate(json.loads(path.read_text()))
        except (json.JSONDecodeError, ValidationError) as e:
            log.warning("Ignoring unreadable annotations %s: %s", path, e)
            return TopologyAnnotations()

    async def save(self, document_path: Path, annotations: TopologyAnnotations) -> Path:
        path = annotations_path(document_path)
        path.write_text(annotations.model_dump_json(indent=2, exclude_none=True) + "\n")
        log.debug("Saved annotations to %s", path)
        return path


annotation_store = AnnotationStore()

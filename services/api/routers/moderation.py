# services/api/routers/moderation.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from core.moderation import Worklist
from core.validation import STATUS_FILTER_ALL, validate_status_filter
from dependencies import Engine, Moderation, ModeratorActor
from models.converters import document_to_api
from schemas import DocumentOut, WorklistOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/moderation", tags=["moderation"])


def _worklist_out(worklist: Worklist, status_filter: str) -> dict:
    return {
        "status_filter": status_filter,
        "items": [
            {
                "document_id": item.document_id,
                "document_title": item.document_title,
                "document_status": item.document_status,
                "owner_id": item.owner_id,
                "is_current": item.is_current,
                "version": item.version.to_api(),
            }
            for item in worklist.items
        ],
        "errors": list(worklist.errors),
    }


@router.get("/worklist", response_model=WorklistOut)
def get_worklist(
    moderation: Moderation,
    actor: ModeratorActor,
    status_filter: str = Query(STATUS_FILTER_ALL, alias="status"),
):
    """Every version of every document, highest version number first."""
    status_filter = validate_status_filter(status_filter)
    return _worklist_out(moderation.fetch_worklist(status_filter), status_filter)


@router.post("/documents/{document_id}/versions/{v}/approve", response_model=WorklistOut)
def approve_version(
    document_id: int,
    v: int,
    moderation: Moderation,
    actor: ModeratorActor,
    list_filter: str = Query(STATUS_FILTER_ALL),
):
    """Approve version v (it becomes current) and return the refreshed worklist."""
    list_filter = validate_status_filter(list_filter)
    worklist = moderation.approve_version(document_id, v, list_filter)
    logger.info(f"{actor.stamp} approved document {document_id} v{v}")
    return _worklist_out(worklist, list_filter)


@router.post("/documents/{document_id}/versions/{v}/reject", response_model=WorklistOut)
def reject_version(
    document_id: int,
    v: int,
    moderation: Moderation,
    actor: ModeratorActor,
    list_filter: str = Query(STATUS_FILTER_ALL),
):
    """Reject version v; the document falls back to its best remaining version."""
    list_filter = validate_status_filter(list_filter)
    worklist = moderation.reject_version(document_id, v, list_filter)
    logger.info(f"{actor.stamp} rejected document {document_id} v{v}")
    return _worklist_out(worklist, list_filter)


@router.post("/documents/{document_id}/approve", response_model=DocumentOut)
def approve_document(document_id: int, engine: Engine, actor: ModeratorActor):
    """Approve the document's current version and the document itself."""
    doc = engine.approve_document(document_id)
    logger.info(f"{actor.stamp} approved document {document_id}")
    return document_to_api(doc)


@router.post("/documents/{document_id}/reject", response_model=DocumentOut)
def reject_document(document_id: int, engine: Engine, actor: ModeratorActor):
    doc = engine.reject_document(document_id)
    logger.info(f"{actor.stamp} rejected document {document_id}")
    return document_to_api(doc)

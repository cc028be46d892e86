# services/api/routers/documents.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, Query, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ValidationError

from core.errors import ValidationFailure
from core.lifecycle import UploadedFile, VersionOverride as OverrideData
from core.repository import (
    approved_documents,
    approved_user_documents,
    search_documents,
)
from core.validation import validate_version_status
from dependencies import CurrentActor, Engine, Repository, RequiredActor
from models import Document
from models.converters import document_to_api
from schemas import (
    DocumentCreate,
    DocumentOut,
    DocumentUpdate,
    RepositoryOut,
    VersionOut,
    VersionOverride,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])

SEARCH_SCOPES = ("all", "mine", "approved", "approved_mine")


# ====== Helpers ======

def _out(docs: List[Document]) -> List[Dict[str, Any]]:
    return [document_to_api(d) for d in docs]


def _parse_part(raw: Optional[str], model: type[BaseModel], part: str) -> Optional[BaseModel]:
    """Multipart requests carry their JSON body as a form field."""
    if raw is None or not raw.strip():
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid {part}: {e.errors()[0].get('msg')}", code="INVALID_PAYLOAD")


async def _read_upload(file: Optional[UploadFile]) -> Optional[UploadedFile]:
    if file is None:
        return None
    data = await file.read()
    if not data:
        raise ValidationFailure("Uploaded file is empty", code="EMPTY_FILE")
    return UploadedFile(filename=file.filename or "upload", data=data)


# ====== Documents ======

@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def create_document(
    repo: Repository,
    actor: RequiredActor,
    payload: str = Form(..., description="DocumentCreate as JSON"),
    file: UploadFile | None = File(default=None),
):
    """
    Create a document. With a file, version 1 is created from it (pending).
    """
    body = _parse_part(payload, DocumentCreate, "payload")
    if body is None:
        raise ValidationFailure("payload is required", code="MISSING_FIELD")
    upload = await _read_upload(file)

    doc = await run_in_threadpool(
        repo.create_document, body.model_dump(exclude_none=True), upload, actor
    )
    return document_to_api(doc)


@router.get("", response_model=List[DocumentOut])
def list_documents(
    repo: Repository,
    actor: CurrentActor,
    owner: Optional[str] = Query(None, description="'me' for the caller's own documents"),
    status_filter: Optional[str] = Query(None, alias="status"),
):
    """List documents, newest first. Optional owner and status filters."""
    if owner:
        if owner == "me":
            if actor is None:
                raise ValidationFailure("owner=me requires X-User-Id", code="MISSING_OWNER")
            owner = actor.user_id
        docs = repo.list_documents_by_owner(owner)
        if status_filter:
            wanted = validate_version_status(status_filter)
            docs = [d for d in docs if d.status == wanted]
    elif status_filter:
        docs = repo.list_documents_by_status(status_filter)
    else:
        docs = repo.list_documents()
    return _out(docs)


@router.get("/search", response_model=List[DocumentOut])
def search(
    repo: Repository,
    actor: CurrentActor,
    q: str = Query("", description="Case-insensitive match on title or status"),
    scope: str = Query("all"),
):
    if scope not in SEARCH_SCOPES:
        raise ValidationFailure(f"scope must be one of {list(SEARCH_SCOPES)}", code="INVALID_SCOPE")

    if scope in ("mine", "approved_mine"):
        if actor is None:
            raise ValidationFailure(f"scope={scope} requires X-User-Id", code="MISSING_OWNER")
        docs = repo.list_documents_by_owner(actor.user_id)
        if scope == "approved_mine":
            docs = approved_user_documents(docs, actor.user_id)
    else:
        docs = repo.list_documents()
        if scope == "approved":
            docs = approved_documents(docs)

    return _out(search_documents(docs, q))


@router.get("/repository", response_model=RepositoryOut)
def repository(repo: Repository, actor: CurrentActor):
    """
    Global + caller-owned listings in one call. Load failures come back in
    `error` instead of failing the request.
    """
    snap = repo.refresh_all(actor)
    return {
        "documents": _out(snap.documents),
        "user_documents": _out(snap.user_documents),
        "approved_documents": _out(snap.approved_documents),
        "approved_user_documents": _out(snap.approved_user_documents),
        "error": snap.error,
    }


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(document_id: int, repo: Repository):
    return document_to_api(repo.get_document(document_id))


@router.patch("/{document_id}", response_model=DocumentOut)
def update_document(document_id: int, body: DocumentUpdate, repo: Repository, actor: RequiredActor):
    """Update metadata. Status, title and files change only through versions/moderation."""
    doc = repo.update_document(document_id, body.model_dump(exclude_unset=True), actor)
    return document_to_api(doc)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(document_id: int, repo: Repository, actor: RequiredActor):
    repo.delete_document(document_id)
    logger.info(f"Document {document_id} deleted by {actor.stamp}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ====== Versions ======

@router.post("/{document_id}/versions", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def create_version(
    document_id: int,
    engine: Engine,
    actor: RequiredActor,
    override: str | None = Form(default=None, description="VersionOverride as JSON"),
    file: UploadFile | None = File(default=None),
):
    """
    Submit a new pending version. Omitted fields (and the file, when none is
    uploaded) are copied from the current version.
    """
    body = _parse_part(override, VersionOverride, "override")
    upload = await _read_upload(file)
    data = OverrideData(**body.model_dump()) if body is not None else None

    doc = await run_in_threadpool(engine.create_new_version, document_id, upload, data, actor)
    return document_to_api(doc)


@router.get("/{document_id}/versions", response_model=List[VersionOut])
def list_versions(document_id: int, engine: Engine):
    """Version history, oldest first. Legacy documents get their initial version persisted here."""
    return [v.to_api() for v in engine.fetch_versions(document_id)]


@router.post("/{document_id}/recompute", response_model=DocumentOut)
def recompute(document_id: int, engine: Engine):
    return document_to_api(engine.recompute_document(document_id))

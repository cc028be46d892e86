# services/api/core/repository.py
"""
Document listing facade: CRUD over the document record plus the derived
read views (approved, owned-by-caller) and search.

Version history is never touched here directly; anything that creates or
moderates versions goes through VersionLifecycleEngine.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from adapters.base import StorageAdapter
from core.errors import ValidationFailure
from core.identity import Actor
from core.lifecycle import UploadedFile, VersionLifecycleEngine, VersionOverride
from core.validation import require_text, validate_collaborator_emails, validate_version_status
from models import Document
from models.converters import document_from_row
from models.version import STATUS_PENDING
from models.version_history import normalize_versions

logger = logging.getLogger(__name__)

# Fields a caller may set on create. Everything else on the record is either
# store-managed or derived from the version history.
EDITABLE_FIELDS = ("title", "contents", "tags", "document_type", "collaborators")
# The title follows the current version; retitling goes through a new version.
UPDATABLE_FIELDS = ("contents", "tags", "document_type", "collaborators")


@dataclass
class RepositorySnapshot:
    documents: List[Document] = field(default_factory=list)
    user_documents: List[Document] = field(default_factory=list)
    approved_documents: List[Document] = field(default_factory=list)
    approved_user_documents: List[Document] = field(default_factory=list)
    error: Optional[str] = None


def approved_documents(docs: List[Document]) -> List[Document]:
    return [d for d in docs if d.is_approved]


def approved_user_documents(docs: List[Document], user_id: str) -> List[Document]:
    return [d for d in docs if d.is_approved and d.user_id == user_id]


def search_documents(docs: List[Document], query: Optional[str]) -> List[Document]:
    """Case-insensitive substring match on title or status. Blank query returns `docs` as is."""
    q = (query or "").strip().lower()
    if not q:
        return docs
    return [d for d in docs if q in (d.title or "").lower() or q in (d.status or "").lower()]


def _clean_fields(data: Dict[str, Any], partial: bool, allowed: tuple = EDITABLE_FIELDS) -> Dict[str, Any]:
    rejected = sorted(k for k in data if k not in allowed)
    if rejected:
        raise ValidationFailure(
            f"Field(s) not editable: {', '.join(rejected)}", code="FIELD_NOT_EDITABLE"
        )

    out: Dict[str, Any] = {}
    if "title" in data or not partial:
        out["title"] = require_text(data.get("title"), "title")
    if "document_type" in data:
        out["document_type"] = str(data.get("document_type") or "").strip()
    if "contents" in data:
        out["contents"] = str(data.get("contents") or "")
    if "tags" in data:
        out["tags"] = data.get("tags")
    if "collaborators" in data:
        out["collaborators"] = validate_collaborator_emails(data.get("collaborators"))
    return out


class DocumentRepository:
    def __init__(self, storage: StorageAdapter, engine: VersionLifecycleEngine):
        self.storage = storage
        self.engine = engine
        # Last failure seen by refresh_all; the UI shows it as a dismissible notice.
        self.last_error: Optional[str] = None

    def clear_error(self) -> None:
        self.last_error = None

    # ---------- reads ----------

    def _load(self, rows: List[Dict[str, Any]]) -> List[Document]:
        return [document_from_row(r) for r in rows]

    def list_documents(self) -> List[Document]:
        return self._load(self.storage.list_documents())

    def list_documents_by_owner(self, user_id: str) -> List[Document]:
        return self._load(self.storage.list_documents(user_id=user_id))

    def list_documents_by_status(self, status: str) -> List[Document]:
        return self._load(self.storage.list_documents(status=validate_version_status(status)))

    def get_document(self, document_id: int) -> Document:
        return self.engine.load_document(document_id)

    def refresh_all(self, actor: Optional[Actor]) -> RepositorySnapshot:
        """
        Reload the global list and the caller's own list. Failures are
        recorded on the snapshot and in `last_error`, never raised.
        """
        snapshot = RepositorySnapshot()

        try:
            snapshot.documents = self.list_documents()
        except Exception as e:
            logger.error(f"Repository refresh: failed to load documents: {e}")
            snapshot.error = f"Failed to load documents: {e}"

        if actor is not None:
            try:
                snapshot.user_documents = self.list_documents_by_owner(actor.user_id)
            except Exception as e:
                logger.error(f"Repository refresh: failed to load documents of {actor.user_id}: {e}")
                snapshot.error = f"Failed to load your documents: {e}"

        snapshot.approved_documents = approved_documents(snapshot.documents)
        if actor is not None:
            snapshot.approved_user_documents = approved_user_documents(
                snapshot.user_documents, actor.user_id
            )

        if snapshot.error:
            self.last_error = snapshot.error
        return snapshot

    # ---------- writes ----------

    def create_document(
        self,
        data: Dict[str, Any],
        file: Optional[UploadedFile] = None,
        actor: Optional[Actor] = None,
    ) -> Document:
        """
        Insert a pending document together with its pending version 1. The
        file, when given, becomes that version's file.
        """
        fields = _clean_fields(data, partial=False)
        owner = actor.user_id if actor else ""
        if not owner:
            raise ValidationFailure("An owner (X-User-Id) is required", code="MISSING_OWNER")

        record = {
            **fields,
            "user_id": owner,
            "status": STATUS_PENDING,
            "last_edited_by": actor.stamp if actor else "",
        }
        doc = document_from_row(self.storage.create_document(record))
        logger.info(f"Created document {doc.id} for {owner}")

        try:
            return self.engine.create_new_version(
                doc.id,
                file=file,
                override=VersionOverride(notes="Initial upload"),
                actor=actor,
            )
        except Exception:
            # No half-created documents: a record without its first version
            # would look like a legacy document.
            logger.error(f"Rolling back document {doc.id}: first version failed")
            self.storage.delete_document(doc.id)
            raise

    def update_document(
        self,
        document_id: int,
        updates: Dict[str, Any],
        actor: Optional[Actor] = None,
    ) -> Document:
        """
        Overwrite metadata fields. Status, file, title and versions are not
        editable here; a new title is submitted with a new version.
        """
        fields = _clean_fields(updates, partial=True, allowed=UPDATABLE_FIELDS)
        if not fields:
            raise ValidationFailure("No fields to update", code="EMPTY_UPDATE")
        if actor:
            fields["last_edited_by"] = actor.stamp
        return document_from_row(self.storage.update_document(document_id, fields))

    def delete_document(self, document_id: int) -> None:
        """Delete the record, then every file it referenced (best effort)."""
        doc = self.engine.load_document(document_id)
        refs = {v.file_url for v in normalize_versions(doc).versions if v.file_url}
        if doc.attach_file:
            refs.add(doc.attach_file)

        self.storage.delete_document(document_id)
        logger.info(f"Deleted document {document_id}")

        for ref in sorted(refs):
            self.engine.discard_blob(ref)

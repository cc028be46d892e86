# services/api/core/lifecycle.py
"""
Version lifecycle engine.

Owns every invariant of the version history:
  - version numbers are unique, strictly increasing, never reused
  - version content is immutable; only `status` changes
  - the document's aggregate fields (status, current_version, attach_file,
    title) are derived from the versions

Each operation is ONE read-modify-write of the document record. When the
store supports conditional writes the write is conditioned on the row_rev
that was read and retried on conflict; otherwise it is last-writer-wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random,
)

from adapters.base import StorageAdapter, utc_iso
from core.blob_storage import BlobStorage
from core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    UpstreamFailure,
    document_not_found,
    version_not_found,
)
from core.identity import Actor
from core.validation import validate_version_status
from models import Document, Version
from models.converters import document_from_row
from models.version import STATUS_APPROVED, STATUS_PENDING, STATUS_REJECTED
from models.version_history import (
    NormalizedHistory,
    find_version,
    highest_version,
    normalize_versions,
    versions_to_storage,
)

logger = logging.getLogger(__name__)

# mutate(document, history) -> column updates, or None for "nothing to write"
Mutation = Callable[[Document, NormalizedHistory], Optional[Dict[str, Any]]]


@dataclass
class UploadedFile:
    filename: str
    data: bytes


@dataclass
class VersionOverride:
    """Submitter-supplied payload; None means "copy from the previous state"."""
    title: Optional[str] = None
    contents: Optional[str] = None
    tags: Any = None
    notes: Optional[str] = None


def _pick(*values: Optional[str]) -> str:
    """First non-empty string."""
    for v in values:
        if v:
            return v
    return ""


def next_version_number(document: Document, versions: List[Version]) -> int:
    """
    max(current_version, highest v) + 1. Moderation can move current_version
    backward, so current_version + 1 alone could collide with an existing v.
    """
    return max([document.current_version or 0] + [v.v for v in versions]) + 1


def derive_aggregate(document: Document, versions: List[Version]) -> Dict[str, Any]:
    """
    Recompute policy, in priority order:
      1. any approved  -> approved; pointer, file and title follow the
                          approved version with the highest v
      2. any pending   -> pending
      3. otherwise     -> rejected

    Returns only the fields that differ from `document`, so applying the
    result and deriving again yields {}.
    """
    if not versions:
        return {}

    target: Dict[str, Any]
    approved = [v for v in versions if v.status == STATUS_APPROVED]
    if approved:
        best = max(approved, key=lambda v: v.v)
        target = {
            "status": STATUS_APPROVED,
            "current_version": best.v,
            "attach_file": best.file_url,
            "title": best.title or document.title,
        }
    else:
        status = (
            STATUS_PENDING
            if any(v.status == STATUS_PENDING for v in versions)
            else STATUS_REJECTED
        )
        target = {"status": status}
        # Keep the pointer valid even when nothing is approved.
        if find_version(versions, document.current_version or 0) is None:
            latest = highest_version(versions)
            target["current_version"] = latest.v
            target["attach_file"] = latest.file_url

    return {k: v for k, v in target.items() if getattr(document, k) != v}


def _set_status(versions: List[Version], target: Version, status: str) -> List[Version]:
    return [v.with_status(status) if v.v == target.v else v for v in versions]


class VersionLifecycleEngine:
    def __init__(
        self,
        storage: StorageAdapter,
        blobs: Optional[BlobStorage] = None,
        write_attempts: int = 3,
    ):
        self.storage = storage
        self.blobs = blobs
        self.write_attempts = max(1, write_attempts)

    # ---------- plumbing ----------

    def load_document(self, document_id: int) -> Document:
        row = self.storage.get_document(document_id)
        if not row:
            raise document_not_found(document_id)
        return document_from_row(row)

    def _read_modify_write(self, document_id: int, mutate: Mutation) -> Document:
        conditional = bool(getattr(self.storage, "supports_conditional_writes", False))

        def attempt() -> Document:
            doc = self.load_document(document_id)
            updates = mutate(doc, normalize_versions(doc))
            if not updates:
                return doc
            row = self.storage.update_document(
                document_id,
                updates,
                expected_rev=doc.row_rev if conditional else None,
            )
            return document_from_row(row)

        retryer = Retrying(
            stop=stop_after_attempt(self.write_attempts),
            wait=wait_random(min=0, max=0.05),
            retry=retry_if_exception_type(ConflictError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retryer(attempt)

    # ---------- operations ----------

    def create_new_version(
        self,
        document_id: int,
        file: Optional[UploadedFile] = None,
        override: Optional[VersionOverride] = None,
        actor: Optional[Actor] = None,
    ) -> Document:
        """
        Append a pending version and point the document at it.

        The upload happens before the write window opens; if the write then
        fails, the uploaded blob is removed again.
        """
        self.load_document(document_id)
        override = override or VersionOverride()
        stamp = actor.stamp if actor else ""

        file_url: Optional[str] = None
        if file is not None:
            if self.blobs is None:
                raise UpstreamFailure("No blob storage configured for file uploads")
            file_url = self.blobs.upload(file.data, file.filename)

        def mutate(doc: Document, history: NormalizedHistory) -> Dict[str, Any]:
            versions = history.versions
            next_v = next_version_number(doc, versions)
            base = find_version(versions, doc.current_version or 0) or highest_version(versions)

            new = Version(
                v=next_v,
                file_url=_pick(file_url, base.file_url if base else None, doc.attach_file),
                title=_pick(override.title, base.title if base else None, doc.title),
                contents=_pick(override.contents, base.contents if base else None, doc.contents),
                tags=override.tags if override.tags is not None else (
                    base.tags if base and base.tags is not None else doc.tags
                ),
                status=STATUS_PENDING,
                notes=override.notes or "",
                created_at=utc_iso(),
                created_by=stamp or doc.user_id,
            ).clone()
            versions.append(new)

            return {
                "version": versions_to_storage(versions),
                "current_version": new.v,
                "attach_file": new.file_url,
                "title": new.title,
                "status": STATUS_PENDING,
                "last_edited_by": stamp or doc.last_edited_by,
            }

        try:
            doc = self._read_modify_write(document_id, mutate)
        except Exception:
            if file_url:
                self.discard_blob(file_url)
            raise

        logger.info(f"Document {document_id}: created version {doc.current_version}")
        return doc

    def seed_initial_version(self, document_id: int) -> List[Version]:
        """
        Persist the synthesized initial version of a legacy document.
        Returns the stored versions unchanged when a history already exists,
        and [] when there is nothing to import (no legacy payload, no
        attach_file).
        """
        doc = self.load_document(document_id)
        history = normalize_versions(doc)
        if not history.synthesized or not history.versions:
            return history.versions

        def mutate(doc: Document, history: NormalizedHistory) -> Optional[Dict[str, Any]]:
            if not history.synthesized or not history.versions:
                return None  # seeded concurrently
            updates: Dict[str, Any] = {"version": versions_to_storage(history.versions)}
            seeded = history.versions[0]
            if doc.current_version != seeded.v:
                updates["current_version"] = seeded.v
            return updates

        seeded_doc = self._read_modify_write(document_id, mutate)
        logger.info(f"Document {document_id}: seeded initial version from legacy data")
        return normalize_versions(seeded_doc).versions

    def fetch_versions(self, document_id: int) -> List[Version]:
        return self.seed_initial_version(document_id)

    def set_current_version_status(self, document_id: int, status: str) -> Document:
        """
        Overwrite the status of the current version (falling back to the
        highest v for a stale pointer). No-op when there are no versions.
        """
        status = validate_version_status(status)

        def mutate(doc: Document, history: NormalizedHistory) -> Optional[Dict[str, Any]]:
            versions = history.versions
            if not versions:
                return None
            target = find_version(versions, doc.current_version or 0) or highest_version(versions)
            if target.status == status and not history.synthesized:
                return None
            return {"version": versions_to_storage(_set_status(versions, target, status))}

        return self._read_modify_write(document_id, mutate)

    def recompute_document(self, document_id: int) -> Document:
        """Re-derive the aggregate fields. Writes nothing when already consistent."""

        def mutate(doc: Document, history: NormalizedHistory) -> Optional[Dict[str, Any]]:
            updates = derive_aggregate(doc, history.versions)
            if updates and history.synthesized:
                updates["version"] = versions_to_storage(history.versions)
            return updates or None

        return self._read_modify_write(document_id, mutate)

    def _target_version(self, doc: Document, history: NormalizedHistory, v: int) -> Version:
        if not history.versions:
            raise InvalidStateError(
                f"Document {doc.id} has no versions", code="DOCUMENT_HAS_NO_VERSIONS"
            )
        target = find_version(history.versions, v)
        if target is None:
            raise version_not_found(doc.id, v)
        return target

    def approve_version(self, document_id: int, v: int) -> Document:
        """Approve version v and promote it, even over a newer approved version."""

        def mutate(doc: Document, history: NormalizedHistory) -> Dict[str, Any]:
            target = self._target_version(doc, history, v)
            versions = _set_status(history.versions, target, STATUS_APPROVED)
            return {
                "version": versions_to_storage(versions),
                "current_version": target.v,
                "attach_file": target.file_url,
                "title": target.title or doc.title,
                "status": STATUS_APPROVED,
            }

        doc = self._read_modify_write(document_id, mutate)
        logger.info(f"Document {document_id}: approved version {v}")
        return doc

    def reject_version(self, document_id: int, v: int) -> Document:
        """
        Reject version v, then recompute in the same write, so rejecting the
        active version falls back to the best remaining approved one.
        """

        def mutate(doc: Document, history: NormalizedHistory) -> Dict[str, Any]:
            target = self._target_version(doc, history, v)
            versions = _set_status(history.versions, target, STATUS_REJECTED)
            updates = derive_aggregate(doc, versions)
            updates["version"] = versions_to_storage(versions)
            return updates

        doc = self._read_modify_write(document_id, mutate)
        logger.info(
            f"Document {document_id}: rejected version {v} "
            f"(now {doc.status}, current_version={doc.current_version})"
        )
        return doc

    def _moderate_document(self, document_id: int, status: str) -> Document:
        def mutate(doc: Document, history: NormalizedHistory) -> Dict[str, Any]:
            updates: Dict[str, Any] = {"status": status}
            versions = history.versions
            if versions:
                target = find_version(versions, doc.current_version or 0) or highest_version(versions)
                updates["version"] = versions_to_storage(_set_status(versions, target, status))
                if doc.current_version != target.v:
                    updates["current_version"] = target.v
                    updates["attach_file"] = target.file_url
            return updates

        doc = self._read_modify_write(document_id, mutate)
        logger.info(f"Document {document_id}: set to {status}")
        return doc

    def approve_document(self, document_id: int) -> Document:
        return self._moderate_document(document_id, STATUS_APPROVED)

    def reject_document(self, document_id: int) -> Document:
        return self._moderate_document(document_id, STATUS_REJECTED)

    # ---------- blobs ----------

    def discard_blob(self, reference: str) -> None:
        """Best-effort removal of a blob nothing references any more."""
        if self.blobs is None:
            return
        try:
            self.blobs.delete(reference)
        except NotFoundError:
            logger.debug(f"Blob already gone: {reference}")
        except Exception as e:
            logger.warning(f"Could not remove orphaned blob {reference}: {e}")

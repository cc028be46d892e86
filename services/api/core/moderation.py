# services/api/core/moderation.py
"""
Moderation worklist: every version of every document, flattened and
filtered by version status.

Reads here are aggregations across many documents, so a failure on one
document is recorded in `Worklist.errors` and the rest of the list is still
returned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from adapters.base import StorageAdapter
from core.lifecycle import VersionLifecycleEngine
from core.validation import STATUS_FILTER_ALL, validate_status_filter
from models import Document, Version
from models.converters import document_from_row
from models.version_history import normalize_versions

logger = logging.getLogger(__name__)


@dataclass
class WorklistItem:
    document_id: int
    document_title: str
    document_status: str
    owner_id: str
    is_current: bool
    version: Version


@dataclass
class Worklist:
    items: List[WorklistItem] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ModerationQueryService:
    def __init__(self, storage: StorageAdapter, engine: VersionLifecycleEngine):
        self.storage = storage
        self.engine = engine

    def _versions_for(self, doc: Document) -> List[Version]:
        history = normalize_versions(doc)
        if history.synthesized and history.versions:
            # Legacy document: persist the initial version so moderating it
            # acts on stored data.
            return self.engine.seed_initial_version(doc.id)
        return history.versions

    def fetch_worklist(self, status_filter: Optional[str] = STATUS_FILTER_ALL) -> Worklist:
        status_filter = validate_status_filter(status_filter)
        result = Worklist()

        try:
            rows = self.storage.list_documents()
        except Exception as e:
            logger.error(f"Worklist: failed to load documents: {e}")
            result.errors.append(f"Failed to load documents: {e}")
            return result

        # (document, version) pairs; docs arrive newest first
        collected = []
        for rank, row in enumerate(rows):
            try:
                doc = document_from_row(row)
                versions = self._versions_for(doc)
            except Exception as e:
                logger.error(f"Worklist: skipping document {row.get('id')!r}: {e}")
                result.errors.append(f"Document {row.get('id')}: {e}")
                continue

            for ver in versions:
                if status_filter != STATUS_FILTER_ALL and ver.status != status_filter:
                    continue
                collected.append((rank, WorklistItem(
                    document_id=doc.id,
                    document_title=doc.title,
                    document_status=doc.status,
                    owner_id=doc.user_id,
                    is_current=doc.current_version == ver.v,
                    version=ver,
                )))

        # Highest v first; ties keep the newer document first.
        collected.sort(key=lambda pair: (-pair[1].version.v, pair[0]))
        result.items = [item for _, item in collected]

        logger.info(
            f"Worklist[{status_filter}]: {len(result.items)} version(s), "
            f"{len(result.errors)} error(s)"
        )
        return result

    def approve_version(self, document_id: int, v: int, list_filter: Optional[str] = STATUS_FILTER_ALL) -> Worklist:
        list_filter = validate_status_filter(list_filter)
        self.engine.approve_version(document_id, v)
        return self.fetch_worklist(list_filter)

    def reject_version(self, document_id: int, v: int, list_filter: Optional[str] = STATUS_FILTER_ALL) -> Worklist:
        list_filter = validate_status_filter(list_filter)
        self.engine.reject_version(document_id, v)
        return self.fetch_worklist(list_filter)

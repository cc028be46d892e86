# services/api/models/version_history.py
"""
Stored version data comes in three shapes:

    VersionList   - JSON array of version objects with numeric `v`
    LegacyScalar  - a single object from before versioning existed (no `v`)
    NoHistory     - nothing stored

`parse_version_field` resolves the raw column into one of these once, at
load time. `normalize_versions` is the only code that looks at the shape;
everything downstream works on a plain sorted list of Version.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from .version import STATUS_APPROVED, STATUS_PENDING, Version, safe_version_number

if TYPE_CHECKING:
    from .document import Document

logger = logging.getLogger(__name__)

INITIAL_IMPORT_NOTE = "Initial import"


@dataclass(frozen=True)
class NoHistory:
    pass


@dataclass(frozen=True)
class LegacyScalar:
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VersionList:
    versions: Tuple[Version, ...] = ()


VersionField = Union[NoHistory, LegacyScalar, VersionList]


@dataclass
class NormalizedHistory:
    versions: List[Version]
    # True when `versions` was built from document fields rather than read
    # from the store, i.e. persisting it would be a seed.
    synthesized: bool = False


def parse_version_field(raw: Any) -> VersionField:
    """Resolve the raw `version` column (JSON text, list, dict or None)."""
    if raw is None:
        return NoHistory()

    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return NoHistory()
        try:
            raw = json.loads(s)
        except json.JSONDecodeError:
            logger.warning("Unparseable version field, treating as empty: %.80s", s)
            return NoHistory()

    if isinstance(raw, list):
        seen: Dict[int, Version] = {}
        for entry in raw:
            if not isinstance(entry, dict):
                logger.warning("Skipping non-object version entry: %r", entry)
                continue
            try:
                ver = Version.from_storage(entry)
            except ValueError:
                logger.warning("Skipping version entry without numeric v: %r", entry)
                continue
            if ver.v in seen:
                logger.warning("Duplicate version number %s, keeping first entry", ver.v)
                continue
            seen[ver.v] = ver
        return VersionList(tuple(sorted(seen.values(), key=lambda x: x.v)))

    if isinstance(raw, dict):
        if not raw:
            return NoHistory()
        v = safe_version_number(raw.get("v"))
        if v is not None and v >= 1:
            return VersionList((Version.from_storage(raw),))
        return LegacyScalar(dict(raw))

    logger.warning("Unexpected version field type %s, treating as empty", type(raw).__name__)
    return NoHistory()


def _synthesize_initial(document: "Document", payload: Dict[str, Any]) -> Version:
    cv = document.current_version
    return Version(
        v=cv if cv and cv > 0 else 1,
        file_url=document.attach_file or str(payload.get("file_url") or payload.get("attach_file") or ""),
        title=document.title or str(payload.get("title") or ""),
        contents=document.contents or str(payload.get("contents") or ""),
        tags=document.tags if document.tags is not None else payload.get("tags"),
        status=STATUS_APPROVED if document.status == STATUS_APPROVED else STATUS_PENDING,
        notes=INITIAL_IMPORT_NOTE,
        created_at=document.created_at or str(payload.get("created_at") or ""),
        created_by=document.user_id or str(payload.get("created_by") or ""),
    ).clone()


def normalize_versions(document: "Document") -> NormalizedHistory:
    """
    Canonical, sorted version list for a document. Pure: no I/O and the
    returned versions are copies, so callers may mutate them freely.
    """
    history = document.history

    if isinstance(history, VersionList) and history.versions:
        return NormalizedHistory([v.clone() for v in sorted(history.versions, key=lambda x: x.v)])

    if isinstance(history, LegacyScalar):
        return NormalizedHistory([_synthesize_initial(document, history.payload)], synthesized=True)

    # Empty list or nothing stored: only a bare attach_file can be imported.
    if document.attach_file:
        return NormalizedHistory([_synthesize_initial(document, {})], synthesized=True)

    return NormalizedHistory([])


# ---------- lookups over a normalized list ----------

def find_version(versions: List[Version], v: int) -> Optional[Version]:
    return next((x for x in versions if x.v == v), None)


def highest_version(versions: List[Version]) -> Optional[Version]:
    return max(versions, key=lambda x: x.v) if versions else None


def versions_to_storage(versions: List[Version]) -> List[Dict[str, Any]]:
    return [v.to_storage() for v in sorted(versions, key=lambda x: x.v)]

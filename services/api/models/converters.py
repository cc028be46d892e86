from __future__ import annotations

import json
from typing import Any, Dict, List

from . import Document
from .version import coerce_status, safe_version_number
from .version_history import normalize_versions, parse_version_field


def _json_or_raw(v: Any) -> Any:
    """
    Sheets and SQLite text columns hold JSON as strings; the JSON file store
    holds real objects. Decode strings that look like JSON, keep the rest.
    """
    if not isinstance(v, str):
        return v
    s = v.strip()
    if not s:
        return None
    if s[0] in "[{":
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            return v
    return v


def _collaborators(v: Any) -> List[str]:
    """Accepts a JSON list, a {email: ...} mapping or comma-separated text."""
    v = _json_or_raw(v)
    if not v:
        return []
    if isinstance(v, dict):
        return [str(k).strip() for k in v.keys() if str(k).strip()]
    if isinstance(v, list):
        return [str(x).strip() for x in v if str(x).strip()]
    return [e.strip() for e in str(v).split(",") if e.strip()]


def document_from_row(row: Dict[str, Any]) -> Document:
    """Convert a raw store row into a Document. The version field is parsed here, once."""
    doc_id = safe_version_number(row.get("id"))
    if doc_id is None:
        raise ValueError(f"Row has no numeric id: {row.get('id')!r}")

    cv = safe_version_number(row.get("current_version"))

    return Document(
        id=doc_id,
        user_id=str(row.get("user_id") or ""),
        status=coerce_status(row.get("status")),
        title=str(row.get("title") or ""),
        contents=str(row.get("contents") or ""),
        tags=_json_or_raw(row.get("tags")),
        document_type=str(row.get("document_type") or ""),
        collaborators=_collaborators(row.get("collaborators")),
        attach_file=str(row.get("attach_file") or ""),
        current_version=cv if cv and cv > 0 else None,
        history=parse_version_field(row.get("version")),
        last_edited_by=str(row.get("last_edited_by") or ""),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
        row_rev=safe_version_number(row.get("row_rev")) or 0,
    )


def document_to_api(doc: Document) -> Dict[str, Any]:
    """API shape; `versions` is always the canonical normalized list."""
    return {
        "id": doc.id,
        "user_id": doc.user_id,
        "status": doc.status,
        "title": doc.title,
        "contents": doc.contents,
        "tags": doc.tags,
        "document_type": doc.document_type,
        "collaborators": list(doc.collaborators),
        "attach_file": doc.attach_file or None,
        "current_version": doc.current_version,
        "versions": [v.to_api() for v in normalize_versions(doc).versions],
        "last_edited_by": doc.last_edited_by or None,
        "created_at": doc.created_at,
        "updated_at": doc.updated_at,
    }

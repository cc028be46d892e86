# services/api/models/version.py
from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

VERSION_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


def coerce_status(value: Any, default: str = STATUS_PENDING) -> str:
    """
    Lower-case/trim a stored status. Unknown or empty values fall back to
    `default` so a malformed cell never breaks recompute.
    """
    s = str(value or "").strip().lower()
    return s if s in VERSION_STATUSES else default


def safe_version_number(val: Any) -> Optional[int]:
    """
    Parse a version number from JSON / sheet data.

    Accepts 3, 3.0, "3", "3.0". Returns None for anything that is not a
    whole number (booleans included, since bool is an int subclass).
    """
    if val is None or isinstance(val, bool):
        return None
    try:
        f = float(str(val).strip())
    except (TypeError, ValueError):
        return None
    if not f.is_integer():
        return None
    return int(f)


@dataclass
class Version:
    """
    One snapshot of a document's content plus its own moderation status.

    Content fields are immutable once the version is persisted; only
    `status` is ever rewritten (via `with_status`).
    """

    v: int
    file_url: str = ""
    title: str = ""
    contents: str = ""
    tags: Any = None
    status: str = STATUS_PENDING
    notes: str = ""
    created_at: str = ""
    created_by: str = ""

    def validate(self) -> None:
        if self.v < 1:
            raise ValueError(f"v must be >= 1, got {self.v}")
        if self.status not in VERSION_STATUSES:
            raise ValueError(f"status must be one of {VERSION_STATUSES}, got {self.status!r}")

    def with_status(self, status: str) -> "Version":
        return replace(self, status=status, tags=copy.deepcopy(self.tags))

    def clone(self) -> "Version":
        return replace(self, tags=copy.deepcopy(self.tags))

    # --------------------
    # Mapping
    # --------------------
    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Version":
        """
        Build from a stored JSON object. Raises ValueError when the entry
        has no usable numeric `v`.
        """
        v = safe_version_number(row.get("v"))
        if v is None or v < 1:
            raise ValueError("VERSION_WITHOUT_NUMBER")
        return cls(
            v=v,
            file_url=str(row.get("file_url") or ""),
            title=str(row.get("title") or ""),
            contents=str(row.get("contents") or ""),
            tags=copy.deepcopy(row.get("tags")),
            status=coerce_status(row.get("status")),
            notes=str(row.get("notes") or ""),
            created_at=str(row.get("created_at") or ""),
            created_by=str(row.get("created_by") or ""),
        )

    def to_storage(self) -> Dict[str, Any]:
        return copy.deepcopy(asdict(self))

    def to_api(self) -> Dict[str, Any]:
        return self.to_storage()

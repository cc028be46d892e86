from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from .version import STATUS_APPROVED, STATUS_PENDING
from .version_history import NoHistory, VersionField


@dataclass
class Document:
    """
    Domain model for a submitted document.

    This is a pure data object that is easy to map:
      - from store rows (dict[str, Any], JSON columns possibly as text)
      - to API payloads (see models.converters)

    `status`, `current_version`, `attach_file` and `title` are aggregate
    fields derived from the version history by the lifecycle engine.
    """
    id: int
    user_id: str = ""

    status: str = STATUS_PENDING
    title: str = ""
    contents: str = ""
    tags: Any = None
    document_type: str = ""
    collaborators: List[str] = field(default_factory=list)

    attach_file: str = ""
    current_version: Optional[int] = None
    history: VersionField = field(default_factory=NoHistory)

    last_edited_by: str = ""
    created_at: str = ""
    updated_at: str = ""

    # Write counter maintained by the store; basis for conditional writes.
    row_rev: int = 0

    @property
    def is_approved(self) -> bool:
        return self.status == STATUS_APPROVED

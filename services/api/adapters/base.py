"""
Storage adapter interface for the document moderation API.
Defines the contract that all storage backends must implement.
"""

import time
from typing import Protocol, List, Dict, Any, Optional

# Columns of the single `documents` record. `version` holds the embedded
# version history (JSON array); `row_rev` is the optimistic-concurrency
# counter bumped by every successful write.
DOCUMENT_COLUMNS = [
    "id",
    "user_id",
    "status",
    "title",
    "contents",
    "tags",
    "document_type",
    "collaborators",
    "attach_file",
    "current_version",
    "version",
    "last_edited_by",
    "created_at",
    "updated_at",
    "row_rev",
]

# Columns the store owns; callers may not write them directly.
STORE_MANAGED_COLUMNS = {"id", "created_at", "updated_at", "row_rev"}

# Columns holding structured values (serialized as JSON by text-only stores).
JSON_COLUMNS = {"tags", "collaborators", "version"}


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class StorageAdapter(Protocol):
    """
    Protocol defining the interface for all storage adapters.

    This allows swapping between the JSON file store, SQLite / any
    SQLAlchemy database and Google Sheets without changing the lifecycle
    engine or the routers.

    Rows are plain dicts keyed by DOCUMENT_COLUMNS. Structured columns may
    come back either decoded or as JSON text; models.converters accepts both.

    Errors:
        - core.errors.NotFoundError   unknown document id
        - core.errors.ConflictError   conditional write lost a race
        - core.errors.UpstreamFailure backend call failed
    """

    # Whether update_document honours `expected_rev`. Backends without
    # compare-and-swap fall back to last-writer-wins.
    supports_conditional_writes: bool

    def list_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return documents as dictionaries, newest `created_at` first.
        Optional exact-match filters on owner and document status.
        """
        ...

    def get_document(self, document_id: int) -> Optional[Dict[str, Any]]:
        """
        Fetch a document row by id.

        Returns:
            Dict with document fields, or None if not found.
        """
        ...

    def create_document(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert a new document.

        The store assigns `id`, `created_at`, `updated_at` and `row_rev`
        (ignoring any values passed for them) and returns the stored row.
        """
        ...

    def update_document(
        self,
        document_id: int,
        updates: Dict[str, Any],
        expected_rev: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Overwrite only the provided keys in ONE atomic record write.

        Implementations should:
            - bump 'updated_at' and 'row_rev' internally
            - when expected_rev is given and supported, write only if the
              stored row_rev still equals it, else raise ConflictError

        Returns:
            The updated row.
        """
        ...

    def delete_document(self, document_id: int) -> None:
        """Delete a document record (and with it its embedded versions)."""
        ...

    def ping(self) -> None:
        """Cheap connectivity check for readiness probes. Raises on failure."""
        ...

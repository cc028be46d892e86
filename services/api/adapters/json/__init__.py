"""
JSON file storage adapter for the document moderation API.
Simple file-based storage for quick demos and testing.
Writes are serialized with an in-process lock, so compare-and-swap holds
within one process only (not across several workers sharing the file).
"""
import copy
import json
import threading
from typing import List, Dict, Any, Optional
from pathlib import Path

from core.errors import ConflictError, UpstreamFailure, document_not_found
from ..base import DOCUMENT_COLUMNS, STORE_MANAGED_COLUMNS, utc_iso


class JsonAdapter:
    """
    JSON file-based storage adapter.
    Stores all document records in one JSON file under the data directory.
    Uses atomic file operations for basic consistency.
    """

    supports_conditional_writes = True

    def __init__(self, data_dir: str = "data"):
        """
        Initialize the JSON adapter.

        Args:
            data_dir: Directory to store JSON files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.documents_file = self.data_dir / "documents.json"
        self._lock = threading.RLock()

        if not self.documents_file.exists():
            self._write_file(self.documents_file, [])

    def _read_file(self, filepath: Path) -> List[Dict[str, Any]]:
        """Read and parse a JSON file."""
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError as e:
            raise UpstreamFailure(f"Corrupt store file {filepath}: {e}") from e

    def _write_file(self, filepath: Path, data: List[Dict[str, Any]]) -> None:
        """Write data to a JSON file atomically."""
        # Write to temporary file first
        tmp_file = filepath.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        # Atomic rename
        tmp_file.replace(filepath)

    def list_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._read_file(self.documents_file)
        if user_id is not None:
            rows = [r for r in rows if r.get("user_id") == user_id]
        if status is not None:
            rows = [r for r in rows if r.get("status") == status]
        # id breaks ties between documents created within the same second
        rows.sort(key=lambda r: (r.get("created_at") or "", r.get("id") or 0), reverse=True)
        return copy.deepcopy(rows)

    def get_document(self, document_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            rows = self._read_file(self.documents_file)
        row = next((r for r in rows if r.get("id") == document_id), None)
        return copy.deepcopy(row) if row else None

    def create_document(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_iso()
        with self._lock:
            rows = self._read_file(self.documents_file)
            next_id = max((r.get("id") or 0 for r in rows), default=0) + 1
            row: Dict[str, Any] = {col: None for col in DOCUMENT_COLUMNS}
            row.update({k: copy.deepcopy(v) for k, v in data.items()
                        if k in DOCUMENT_COLUMNS and k not in STORE_MANAGED_COLUMNS})
            row.update({"id": next_id, "created_at": now, "updated_at": now, "row_rev": 1})
            rows.append(row)
            self._write_file(self.documents_file, rows)
        return copy.deepcopy(row)

    def update_document(
        self,
        document_id: int,
        updates: Dict[str, Any],
        expected_rev: Optional[int] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            rows = self._read_file(self.documents_file)
            row = next((r for r in rows if r.get("id") == document_id), None)
            if not row:
                raise document_not_found(document_id)

            if expected_rev is not None and int(row.get("row_rev") or 0) != expected_rev:
                raise ConflictError(
                    f"Document {document_id} changed (rev {row.get('row_rev')} != {expected_rev})"
                )

            for k, v in updates.items():
                if k in DOCUMENT_COLUMNS and k not in STORE_MANAGED_COLUMNS:
                    row[k] = copy.deepcopy(v)
            row["updated_at"] = utc_iso()
            row["row_rev"] = int(row.get("row_rev") or 0) + 1

            self._write_file(self.documents_file, rows)
        return copy.deepcopy(row)

    def delete_document(self, document_id: int) -> None:
        with self._lock:
            rows = self._read_file(self.documents_file)
            kept = [r for r in rows if r.get("id") != document_id]
            if len(kept) == len(rows):
                raise document_not_found(document_id)
            self._write_file(self.documents_file, kept)

    def ping(self) -> None:
        if not self.documents_file.exists():
            raise UpstreamFailure(f"Store file missing: {self.documents_file}")

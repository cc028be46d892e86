# services/api/adapters/sheets/__init__.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import gspread
from cachetools import TTLCache
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.errors import UpstreamFailure, document_not_found
from ..base import DOCUMENT_COLUMNS, JSON_COLUMNS, STORE_MANAGED_COLUMNS, utc_iso

logger = logging.getLogger(__name__)

# ========== Sheet schema (HEADERS) ==========

DOCUMENTS_TAB = "documents"

HEADERS = {
    DOCUMENTS_TAB: DOCUMENT_COLUMNS[:],
}


def _safe_int(v, default=None):
    try:
        if v is None:
            return default
        s = str(v).strip()
        if s == "":
            return default
        # allow "3.0" etc
        return int(float(s))
    except (TypeError, ValueError):
        return default


def _to_cell(col: str, value: Any) -> Any:
    if value is None:
        return ""
    if col in JSON_COLUMNS and not isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return value


def _sa_client_from_json_or_path(google_sa_json: str) -> gspread.Client:
    """
    Accepts either:
      - absolute/relative path to a service-account JSON file, OR
      - a literal JSON string.
    Returns an authorized gspread Client.
    """
    if not google_sa_json:
        raise ValueError("GOOGLE_SA_JSON is required (path to file or inline JSON).")

    # Try to treat as inline JSON first
    try:
        parsed = json.loads(google_sa_json)
        creds = Credentials.from_service_account_info(
            parsed,
            scopes=["https://www.googleapis.com/auth/spreadsheets"],
        )
        return gspread.authorize(creds)
    except json.JSONDecodeError:
        # Not JSON; treat as file path
        creds = Credentials.from_service_account_file(
            google_sa_json,
            scopes=["https://www.googleapis.com/auth/spreadsheets"],
        )
        return gspread.authorize(creds)


# ========== Retry decorator for Google Sheets API calls ==========
def retry_sheets_api(func):
    """
    Retry Sheets API calls with exponential backoff on quota errors.
    After the last attempt the APIError surfaces as UpstreamFailure.
    """
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((gspread.exceptions.APIError,)),
        reraise=True,
    )
    def attempt(*args, **kwargs):
        return func(*args, **kwargs)

    def wrapper(*args, **kwargs):
        try:
            return attempt(*args, **kwargs)
        except gspread.exceptions.APIError as e:
            raise UpstreamFailure(f"Google Sheets call {func.__name__} failed: {e}") from e

    return wrapper


class SheetsAdapter:
    """
    Google Sheets as the remote row store: one row per document, the version
    history as JSON text in the `version` column.

    Sheets has no compare-and-swap, so writes are last-writer-wins: two
    moderators acting on the same document at the same moment can lose one
    of the two updates. Ids come from max(id)+1 and share the same race.
    """

    supports_conditional_writes = False

    def __init__(self, google_sa_json: Optional[str], spreadsheet_id: Optional[str]) -> None:
        if not google_sa_json or not spreadsheet_id:
            raise ValueError("SheetsAdapter requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")

        self.gc = _sa_client_from_json_or_path(google_sa_json)
        self.ss = self.gc.open_by_key(spreadsheet_id)

        self.ws: dict[str, gspread.Worksheet] = {}
        self.colmap: dict[str, dict[str, int]] = {}
        for tab in HEADERS:
            self.ws[tab] = self._ensure_worksheet(tab)
            self.colmap[tab] = self._ensure_headers(tab)

        # Short-lived read cache, cleared on every write
        self._rows_cache: TTLCache = TTLCache(maxsize=4, ttl=5)

    # ========== Worksheet helpers ==========

    def _ensure_worksheet(self, name: str) -> gspread.Worksheet:
        try:
            return self.ss.worksheet(name)
        except gspread.WorksheetNotFound:
            return self.ss.add_worksheet(
                title=name,
                rows=200,
                cols=len(HEADERS[name]) + 2,
            )

    def _ensure_headers(self, name: str) -> dict[str, int]:
        ws = self.ws[name]
        values = ws.get_values("1:1")
        existing = values[0] if values else []

        base = HEADERS[name][:]
        if not existing:
            ws.update("A1", [base])
            header = base
        else:
            # If required base columns are missing, append them at the end.
            # If the sheet already has extra columns, KEEP them.
            missing = [c for c in base if c not in existing]
            header = existing + missing if missing else existing
            if header != existing:
                ws.update("1:1", [header])

        return {col: idx + 1 for idx, col in enumerate(header)}

    @retry_sheets_api
    def _get_all_dicts(self, tab: str) -> list[dict[str, Any]]:
        """Get all rows from a tab as dictionaries. WITH RETRY."""
        if tab in self._rows_cache:
            return [dict(r) for r in self._rows_cache[tab]]
        ws = self.ws[tab]
        rows = ws.get_all_values()
        if not rows:
            return []
        header = rows[0]
        out = []
        for r in rows[1:]:
            out.append({header[i]: (r[i] if i < len(r) else "") for i in range(len(header))})
        self._rows_cache[tab] = out
        return [dict(r) for r in out]

    @retry_sheets_api
    def _append_rows(self, tab: str, rows: list[list[Any]]) -> None:
        """Append rows to tab. WITH RETRY."""
        if rows:
            self.ws[tab].append_rows(rows, value_input_option="RAW")
        self._rows_cache.clear()

    @retry_sheets_api
    def _update_cells(self, tab: str, row_idx: int, updates: dict[str, Any]) -> None:
        """Update specific cells in a row with one batch call. WITH RETRY."""
        colmap = self.colmap[tab]
        data = []
        for k, v in updates.items():
            if k not in colmap:
                continue
            a1 = gspread.utils.rowcol_to_a1(row_idx, colmap[k])
            data.append({"range": a1, "values": [[_to_cell(k, v)]]})
        if data:
            self.ws[tab].batch_update(data, value_input_option="RAW")
        self._rows_cache.clear()

    @retry_sheets_api
    def _delete_row(self, tab: str, row_idx: int) -> None:
        self.ws[tab].delete_rows(row_idx)
        self._rows_cache.clear()

    @retry_sheets_api
    def _find_row_by_value(self, tab: str, col_name: str, value: str) -> Optional[int]:
        """Find row index by column value."""
        ws = self.ws[tab]
        col_idx = self.colmap[tab][col_name]
        col_vals = ws.col_values(col_idx)
        for i, v in enumerate(col_vals[1:], start=2):  # skip header
            if v == value:
                return i
        return None

    def _append_dict_row(self, tab: str, data: dict[str, Any]) -> None:
        """Append one row using the sheet's current header order."""
        header = sorted(self.colmap[tab], key=self.colmap[tab].get)
        row = [_to_cell(col, data.get(col)) for col in header]
        self._append_rows(tab, [row])

    # ========== StorageAdapter API ==========

    def list_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        rows = [r for r in self._get_all_dicts(DOCUMENTS_TAB) if _safe_int(r.get("id")) is not None]
        if user_id is not None:
            rows = [r for r in rows if r.get("user_id") == user_id]
        if status is not None:
            rows = [r for r in rows if r.get("status") == status]
        rows.sort(key=lambda r: (r.get("created_at") or "", _safe_int(r.get("id"), 0)), reverse=True)
        return rows

    def get_document(self, document_id: int) -> Optional[Dict[str, Any]]:
        return next(
            (r for r in self._get_all_dicts(DOCUMENTS_TAB) if _safe_int(r.get("id")) == document_id),
            None,
        )

    def create_document(self, data: Dict[str, Any]) -> Dict[str, Any]:
        existing = self._get_all_dicts(DOCUMENTS_TAB)
        next_id = max((_safe_int(r.get("id"), 0) for r in existing), default=0) + 1
        now = utc_iso()

        row = {col: None for col in DOCUMENT_COLUMNS}
        row.update({k: v for k, v in data.items()
                    if k in DOCUMENT_COLUMNS and k not in STORE_MANAGED_COLUMNS})
        row.update({"id": next_id, "created_at": now, "updated_at": now, "row_rev": 1})

        self._append_dict_row(DOCUMENTS_TAB, row)
        logger.info(f"Sheets: created document {next_id}")
        return row

    def update_document(
        self,
        document_id: int,
        updates: Dict[str, Any],
        expected_rev: Optional[int] = None,
    ) -> Dict[str, Any]:
        # expected_rev cannot be enforced here (no conditional writes).
        current = self.get_document(document_id)
        row_idx = self._find_row_by_value(DOCUMENTS_TAB, "id", str(document_id))
        if not current or not row_idx:
            raise document_not_found(document_id)

        values = {k: v for k, v in updates.items()
                  if k in DOCUMENT_COLUMNS and k not in STORE_MANAGED_COLUMNS}
        values["updated_at"] = utc_iso()
        values["row_rev"] = _safe_int(current.get("row_rev"), 0) + 1

        self._update_cells(DOCUMENTS_TAB, row_idx, values)
        current.update(values)
        return current

    def delete_document(self, document_id: int) -> None:
        row_idx = self._find_row_by_value(DOCUMENTS_TAB, "id", str(document_id))
        if not row_idx:
            raise document_not_found(document_id)
        self._delete_row(DOCUMENTS_TAB, row_idx)

    @retry_sheets_api
    def ping(self) -> None:
        self.ws[DOCUMENTS_TAB].acell("A1")

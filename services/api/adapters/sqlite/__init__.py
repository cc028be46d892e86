# services/api/adapters/sqlite/__init__.py
from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import ConflictError, UpstreamFailure, document_not_found
from ..base import DOCUMENT_COLUMNS, JSON_COLUMNS, STORE_MANAGED_COLUMNS, utc_iso

# ---- Engine (SQLite) with WAL & pragmas -------------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)

def make_engine(db_url: str) -> Engine:
    # Create data dir if sqlite file
    if db_url.startswith("sqlite:///"):
        file_path = db_url.replace("sqlite:///", "", 1)
        _ensure_dir(file_path)

    engine = create_engine(db_url, future=True, pool_pre_ping=True)

    # Apply pragmas per-connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        if isinstance(dbapi_connection, sqlite3.Connection):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA temp_store=MEMORY;")
            cursor.close()

    return engine

# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String, nullable=False, default=""),
    Column("status", String, nullable=False, default="pending"),
    Column("title", Text),
    Column("contents", Text),
    Column("tags", Text),            # JSON
    Column("document_type", String),
    Column("collaborators", Text),   # JSON list of emails
    Column("attach_file", Text),
    Column("current_version", Integer),
    Column("version", Text),         # JSON array of version objects
    Column("last_edited_by", String),
    Column("created_at", String, nullable=False),
    Column("updated_at", String, nullable=False),
    Column("row_rev", Integer, nullable=False, default=1),
    CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_documents_status"),
)

Index("idx_documents_user", documents.c.user_id)
Index("idx_documents_status", documents.c.status)


def _to_db(col: str, value: Any) -> Any:
    if col in JSON_COLUMNS and value is not None and not isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return value


def _writable(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: _to_db(k, v)
        for k, v in values.items()
        if k in DOCUMENT_COLUMNS and k not in STORE_MANAGED_COLUMNS
    }

# ---- Adapter implementation --------------------------------------------------

@dataclass(frozen=True)
class SqliteAdapter:
    """
    SQLAlchemy Core adapter. Despite the name it runs against any
    SQLAlchemy URL; the pragmas only apply to sqlite connections.

    Conditional writes: UPDATE ... WHERE id = :id AND row_rev = :expected.
    """
    engine: Engine

    supports_conditional_writes = True

    @classmethod
    def from_url(cls, db_url: str = "sqlite:///data/documents.db") -> "SqliteAdapter":
        eng = make_engine(db_url)
        metadata.create_all(eng)
        return cls(engine=eng)

    def list_documents(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        q = select(documents)
        if user_id is not None:
            q = q.where(documents.c.user_id == user_id)
        if status is not None:
            q = q.where(documents.c.status == status)
        q = q.order_by(documents.c.created_at.desc(), documents.c.id.desc())
        try:
            with self.engine.begin() as conn:
                return [dict(r) for r in conn.execute(q).mappings().all()]
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to list documents: {e}") from e

    def get_document(self, document_id: int) -> Optional[Dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                row = conn.execute(
                    select(documents).where(documents.c.id == document_id)
                ).mappings().first()
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to read document {document_id}: {e}") from e
        return dict(row) if row else None

    def create_document(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_iso()
        values = _writable(data)
        values.setdefault("user_id", "")
        values.setdefault("status", "pending")
        values.update(created_at=now, updated_at=now, row_rev=1)
        try:
            with self.engine.begin() as conn:
                res = conn.execute(insert(documents).values(**values))
                new_id = res.inserted_primary_key[0]
                row = conn.execute(
                    select(documents).where(documents.c.id == new_id)
                ).mappings().first()
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to create document: {e}") from e
        return dict(row)

    def update_document(
        self,
        document_id: int,
        updates: Dict[str, Any],
        expected_rev: Optional[int] = None,
    ) -> Dict[str, Any]:
        stmt = update(documents).where(documents.c.id == document_id)
        if expected_rev is not None:
            stmt = stmt.where(documents.c.row_rev == expected_rev)
        stmt = stmt.values(
            **_writable(updates),
            updated_at=utc_iso(),
            row_rev=documents.c.row_rev + 1,
        )

        try:
            with self.engine.begin() as conn:
                res = conn.execute(stmt)
                if res.rowcount == 0:
                    exists = conn.execute(
                        select(documents.c.id).where(documents.c.id == document_id)
                    ).first()
                    if not exists:
                        raise document_not_found(document_id)
                    raise ConflictError(
                        f"Document {document_id} changed since rev {expected_rev}"
                    )
                row = conn.execute(
                    select(documents).where(documents.c.id == document_id)
                ).mappings().first()
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to update document {document_id}: {e}") from e
        return dict(row)

    def delete_document(self, document_id: int) -> None:
        try:
            with self.engine.begin() as conn:
                res = conn.execute(delete(documents).where(documents.c.id == document_id))
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Failed to delete document {document_id}: {e}") from e
        if res.rowcount == 0:
            raise document_not_found(document_id)

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except SQLAlchemyError as e:
            raise UpstreamFailure(f"Database not reachable: {e}") from e

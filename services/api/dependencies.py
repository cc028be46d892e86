# services/api/dependencies.py
"""
Wiring for routers: storage adapter, blob storage and the services built on
them, plus the caller identity taken from request headers.

Everything is built lazily on first use and cached for the process, so
importing the app never touches Sheets / Drive. Tests replace these via
app.dependency_overrides.
"""
from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status

from core.blob_storage import BlobStorage, LocalBlobStorage
from core.classifier import GroqClassifier
from core.identity import Actor, actor_from_headers
from core.lifecycle import VersionLifecycleEngine
from core.moderation import ModerationQueryService
from core.repository import DocumentRepository
from settings import get_settings

logger = logging.getLogger(__name__)

_storage_adapter = None
_blob_storage: Optional[BlobStorage] = None


def build_storage_adapter(settings=None):
    settings = settings or get_settings()
    backend = (settings.storage_backend or "json").lower()

    if backend == "sheets":
        from adapters.sheets import SheetsAdapter

        sa_json = settings.resolved_google_sa_json()
        if not sa_json or not settings.sheets_spreadsheet_id:
            raise ValueError("Google Sheets requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")
        logger.info("Initializing Google Sheets adapter...")
        return SheetsAdapter(google_sa_json=sa_json, spreadsheet_id=settings.sheets_spreadsheet_id)

    if backend == "sqlite":
        from adapters.sqlite import SqliteAdapter

        logger.info(f"Initializing SQL adapter ({settings.db_url.split('://')[0]})")
        return SqliteAdapter.from_url(settings.db_url)

    if backend == "json":
        from adapters.json import JsonAdapter

        logger.info(f"Initializing JSON file adapter in {settings.data_dir}")
        return JsonAdapter(settings.data_dir)

    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


def build_blob_storage(settings=None) -> BlobStorage:
    settings = settings or get_settings()
    backend = (settings.blob_backend or "local").lower()

    if backend == "drive":
        from core.drive_client import DriveBlobStorage

        return DriveBlobStorage()
    if backend == "local":
        return LocalBlobStorage(settings.blob_dir, settings.blob_public_base_url)

    raise ValueError(f"Unknown BLOB_BACKEND: {backend}")


# ---- DI helpers (used by routers/*) ----

def get_storage_adapter():
    global _storage_adapter
    if _storage_adapter is None:
        _storage_adapter = build_storage_adapter()
    return _storage_adapter


def get_blob_storage() -> BlobStorage:
    global _blob_storage
    if _blob_storage is None:
        _blob_storage = build_blob_storage()
    return _blob_storage


def get_engine(
    storage=Depends(get_storage_adapter),
    blobs: BlobStorage = Depends(get_blob_storage),
) -> VersionLifecycleEngine:
    return VersionLifecycleEngine(storage, blobs, get_settings().write_retry_attempts)


def get_repository(
    storage=Depends(get_storage_adapter),
    engine: VersionLifecycleEngine = Depends(get_engine),
) -> DocumentRepository:
    return DocumentRepository(storage, engine)


def get_moderation(
    storage=Depends(get_storage_adapter),
    engine: VersionLifecycleEngine = Depends(get_engine),
) -> ModerationQueryService:
    return ModerationQueryService(storage, engine)


def get_classifier() -> GroqClassifier:
    s = get_settings()
    return GroqClassifier(
        api_key=s.groq_api_key,
        model=s.groq_model,
        base_url=s.groq_base_url,
        timeout_s=s.groq_timeout_s,
    )


def get_current_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_email: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
) -> Optional[Actor]:
    return actor_from_headers(x_user_id, x_user_email, x_user_role)


def require_actor(actor: Optional[Actor] = Depends(get_current_actor)) -> Actor:
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header required")
    return actor


def require_moderator(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.is_moderator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Moderator role required")
    return actor


# ---- DI aliases ----
Storage = Annotated[object, Depends(get_storage_adapter)]
Engine = Annotated[VersionLifecycleEngine, Depends(get_engine)]
Repository = Annotated[DocumentRepository, Depends(get_repository)]
Moderation = Annotated[ModerationQueryService, Depends(get_moderation)]
Classifier = Annotated[GroqClassifier, Depends(get_classifier)]
CurrentActor = Annotated[Optional[Actor], Depends(get_current_actor)]
RequiredActor = Annotated[Actor, Depends(require_actor)]
ModeratorActor = Annotated[Actor, Depends(require_moderator)]

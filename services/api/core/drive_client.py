# services/api/core/drive_client.py
from __future__ import annotations
import logging
import os
import json
import mimetypes
from io import BytesIO
from typing import Optional
from pathlib import Path
from urllib.parse import parse_qs, urlparse

from google.oauth2.credentials import Credentials as UserCredentials
from google.auth.transport.requests import Request
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from core.blob_storage import generate_blob_name
from core.errors import NotFoundError, UpstreamFailure, ValidationFailure
from settings import get_settings

logger = logging.getLogger(__name__)

_drive_service = None

# We only need "drive.file" – upload + manage files created by this app
SCOPES = ["https://www.googleapis.com/auth/drive.file"]

# Paths relative to services/api/
BASE_DIR = Path(__file__).resolve().parent.parent
CREDS_DIR = BASE_DIR / "creds"
TOKEN_FILE = CREDS_DIR / "drive_token.json"

DOWNLOAD_URL = "https://drive.google.com/uc?export=download&id={file_id}"


def _get_drive_credentials() -> UserCredentials:
    """
    Load user OAuth credentials.

    Priority:
    1) If DRIVE_TOKEN_JSON env var is set (prod), use that.
    2) Else, fall back to local creds/drive_token.json (dev).
    """
    token_env = os.getenv("DRIVE_TOKEN_JSON")

    if token_env:
        try:
            info = json.loads(token_env)
            creds = UserCredentials.from_authorized_user_info(info, SCOPES)
        except Exception as e:
            logger.exception("Failed to load DRIVE_TOKEN_JSON from env: %s", e)
            raise
    else:
        if not TOKEN_FILE.exists():
            msg = (
                f"Drive token not found in env or at {TOKEN_FILE}. "
                "Set DRIVE_TOKEN_JSON or place an authorized user token there."
            )
            logger.error(msg)
            raise RuntimeError(msg)

        creds = UserCredentials.from_authorized_user_file(str(TOKEN_FILE), SCOPES)

    # Refresh if expired and we have a refresh token
    if creds.expired and creds.refresh_token:
        try:
            logger.info("Refreshing Google Drive OAuth token...")
            creds.refresh(Request())

            # If we are using file-based creds (dev), persist refreshed token
            if not token_env:
                CREDS_DIR.mkdir(parents=True, exist_ok=True)
                TOKEN_FILE.write_text(creds.to_json())
                logger.info("Google Drive OAuth token refreshed and saved.")
            else:
                logger.info("Drive OAuth token refreshed (env-based creds, not writing to disk).")
        except Exception as e:
            logger.exception("Failed to refresh Drive OAuth token: %s", e)
            raise

    return creds



def get_drive_service():
    """
    Lazily construct and cache a Google Drive v3 service client
    using the OAuth user credentials.
    """
    global _drive_service
    if _drive_service is None:
        creds = _get_drive_credentials()
        _drive_service = build(
            "drive",
            "v3",
            credentials=creds,
            cache_discovery=False,
        )
        logger.info("Initialized Google Drive client using OAuth user credentials.")
    return _drive_service


def _ensure_folder(service, name: str, parent_id: Optional[str] = None) -> str:
    """
    Find (or create) a folder with given name under parent_id (or My Drive root).
    Returns the folder ID.
    """
    folder_name = name.strip()
    if not folder_name:
        folder_name = "UNTITLED"

    # NOTE: escape single quotes once and reuse
    safe_name = folder_name.replace("'", "\\'")
    q = (
        "mimeType = 'application/vnd.google-apps.folder' "
        f"and name = '{safe_name}' "
        "and trashed = false"
    )
    if parent_id:
        q += f" and '{parent_id}' in parents"

    result = service.files().list(
        q=q,
        spaces="drive",
        fields="files(id, name)",
        pageSize=1,
    ).execute()

    files = result.get("files", [])
    if files:
        return files[0]["id"]

    metadata = {
        "name": folder_name,
        "mimeType": "application/vnd.google-apps.folder",
    }
    if parent_id:
        metadata["parents"] = [parent_id]

    created = service.files().create(
        body=metadata,
        fields="id",
    ).execute()
    return created["id"]


def file_id_from_url(reference: str) -> str:
    """Extract the Drive file id from a download URL or a /file/d/<id>/ link."""
    if "/file/d/" in (reference or ""):
        return reference.split("/file/d/")[1].split("/")[0].split("?")[0]
    ids = parse_qs(urlparse(reference or "").query).get("id")
    if not ids or not ids[0]:
        raise ValidationFailure(f"Invalid file URL: {reference!r}", code="INVALID_FILE_URL")
    return ids[0]


class DriveBlobStorage:
    """
    Blob storage on Google Drive. Every upload lands in the configured root
    folder and is shared "anyone with the link can read"; the reference is a
    direct download URL.
    """

    def __init__(self, service=None):
        self._service = service
        self._root_folder_id: Optional[str] = None

    @property
    def service(self):
        if self._service is None:
            self._service = get_drive_service()
        return self._service

    def _root(self) -> str:
        if self._root_folder_id is None:
            settings = get_settings()
            configured = (settings.gdrive_root_folder_id or "").strip()
            self._root_folder_id = configured or _ensure_folder(
                self.service, settings.gdrive_root_folder_name or "Document_Moderation"
            )
        return self._root_folder_id

    def upload(self, data: bytes, suggested_name: str) -> str:
        file_name = generate_blob_name(suggested_name)
        mimetype = mimetypes.guess_type(suggested_name or "")[0] or "application/octet-stream"
        try:
            media = MediaIoBaseUpload(BytesIO(data), mimetype=mimetype, resumable=False)
            created = self.service.files().create(
                body={"name": file_name, "parents": [self._root()]},
                media_body=media,
                fields="id",
            ).execute()
            file_id = created["id"]

            # Make it downloadable by link (anyone with the link can read)
            try:
                self.service.permissions().create(
                    fileId=file_id,
                    body={"role": "reader", "type": "anyone"},
                    fields="id",
                ).execute()
            except HttpError as e:
                logger.warning("Failed to set public permission for file %s: %s", file_id, e)
        except HttpError as e:
            raise UpstreamFailure(f"Drive upload of {suggested_name!r} failed: {e}") from e

        logger.info("Uploaded %s to Drive file_id=%s", file_name, file_id)
        return DOWNLOAD_URL.format(file_id=file_id)

    def delete(self, reference: str) -> bool:
        file_id = file_id_from_url(reference)
        try:
            self.service.files().delete(fileId=file_id).execute()
        except HttpError as e:
            if getattr(e.resp, "status", None) == 404:
                raise NotFoundError(f"File not found: {reference}", code="BLOB_NOT_FOUND")
            raise UpstreamFailure(f"Drive delete of {file_id} failed: {e}") from e
        logger.info("Deleted Drive file_id=%s", file_id)
        return True

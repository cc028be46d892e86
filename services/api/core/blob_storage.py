# services/api/core/blob_storage.py
"""
Blob storage collaborator: durable storage for uploaded files.

The core only needs two calls:
    upload(data, suggested_name) -> stable reference (public URL)
    delete(reference)            -> True, or NotFoundError
"""
from __future__ import annotations

import logging
import secrets
import string
import time
from pathlib import Path
from typing import Protocol

from core.errors import NotFoundError, UpstreamFailure, ValidationFailure

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


class BlobStorage(Protocol):
    def upload(self, data: bytes, suggested_name: str) -> str:
        ...

    def delete(self, reference: str) -> bool:
        ...


def generate_blob_name(suggested_name: str) -> str:
    """
    Unique stored name: <epoch_ms>_<random>.<ext>, keeping only the
    extension of the caller's file name.
    """
    ext = ""
    if "." in (suggested_name or ""):
        ext = suggested_name.rsplit(".", 1)[-1].strip().lower()
        ext = "".join(ch for ch in ext if ch.isalnum())[:10]
    rand = "".join(secrets.choice(_ALPHABET) for _ in range(7))
    name = f"{int(time.time() * 1000)}_{rand}"
    return f"{name}.{ext}" if ext else name


class LocalBlobStorage:
    """
    Filesystem-backed blob store. References are `<public_base_url>/<name>`;
    main.py serves the directory under /files.
    """

    def __init__(self, root_dir: str, public_base_url: str):
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def upload(self, data: bytes, suggested_name: str) -> str:
        name = generate_blob_name(suggested_name)
        try:
            (self.root / name).write_bytes(data)
        except OSError as e:
            raise UpstreamFailure(f"Failed to store file {suggested_name!r}: {e}") from e
        logger.info("Stored blob %s (%d bytes)", name, len(data))
        return f"{self.public_base_url}/{name}"

    def _name_from_reference(self, reference: str) -> str:
        prefix = self.public_base_url + "/"
        if not reference or not reference.startswith(prefix):
            raise ValidationFailure(f"Invalid file URL: {reference!r}", code="INVALID_FILE_URL")
        name = reference[len(prefix):]
        if not name or "/" in name or name.startswith("."):
            raise ValidationFailure(f"Invalid file URL: {reference!r}", code="INVALID_FILE_URL")
        return name

    def delete(self, reference: str) -> bool:
        path = self.root / self._name_from_reference(reference)
        try:
            path.unlink()
        except FileNotFoundError:
            raise NotFoundError(f"File not found: {reference}", code="BLOB_NOT_FOUND")
        except OSError as e:
            raise UpstreamFailure(f"Failed to delete file {reference}: {e}") from e
        logger.info("Deleted blob %s", path.name)
        return True

"""
Error kinds raised by the document moderation core.

Routers never need to catch these: main.py installs one exception handler
per kind and maps it to an HTTP status.
"""
from __future__ import annotations

from typing import Optional


class DocumentModerationError(Exception):
    """Base class. `code` is a stable machine-readable identifier."""

    code = "ERROR"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFoundError(DocumentModerationError):
    """Document, version or blob does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationFailure(DocumentModerationError):
    code = "VALIDATION_FAILED"
    status_code = 400


class UpstreamFailure(DocumentModerationError):
    """Store, blob service or classifier call failed."""

    code = "UPSTREAM_FAILED"
    status_code = 502


class InvalidStateError(DocumentModerationError):
    """Operation needs versions (or other state) the document does not have."""

    code = "INVALID_STATE"
    status_code = 409


class ConflictError(DocumentModerationError):
    """
    A conditional write lost the race: the record changed after it was read.
    The lifecycle engine retries these; callers only see one when retries
    are exhausted.
    """

    code = "WRITE_CONFLICT"
    status_code = 409


def document_not_found(document_id: int) -> NotFoundError:
    return NotFoundError(f"Document {document_id} not found", code="DOCUMENT_NOT_FOUND")


def version_not_found(document_id: int, v: int) -> NotFoundError:
    return NotFoundError(
        f"Version {v} not found on document {document_id}", code="VERSION_NOT_FOUND"
    )

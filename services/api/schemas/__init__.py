"""
Pydantic schemas for API request/response validation.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .document import (
    DocumentCreate,
    DocumentOut,
    DocumentUpdate,
    RepositoryOut,
    VersionOut,
    VersionOverride,
)

# ============ Moderation Schemas ============


class WorklistItemOut(BaseModel):
    """One version in the moderation worklist, with its document context."""
    document_id: int
    document_title: str
    document_status: str
    owner_id: str
    is_current: bool = Field(..., description="Whether this is the document's current_version")
    version: VersionOut


class WorklistOut(BaseModel):
    """
    Flattened worklist, highest version number first.

    `errors` lists documents that could not be loaded; the rest of the list
    is still returned.
    """
    status_filter: str
    items: List[WorklistItemOut] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


# ============ Analysis Schemas ============


class AnalysisRequest(BaseModel):
    """Text extracted from a document (OCR runs client-side)."""
    text: str = Field(..., min_length=1, description="Extracted document text")

    @field_validator("text")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class AnalysisOut(BaseModel):
    """Suggested classification for a document."""
    document_type: str
    title: str
    tags: List[str] = Field(default_factory=list)


# ============ Health Check ============


class HealthCheck(BaseModel):
    """Health check response."""
    ok: bool = True
    backend: Optional[str] = None


# Re-export all
__all__ = [
    "DocumentCreate",
    "DocumentUpdate",
    "DocumentOut",
    "RepositoryOut",
    "VersionOverride",
    "VersionOut",
    "WorklistItemOut",
    "WorklistOut",
    "AnalysisRequest",
    "AnalysisOut",
    "HealthCheck",
]

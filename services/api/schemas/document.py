"""
Pydantic schemas for documents and their versions.
"""
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class DocumentBase(BaseModel):
    """Fields shared by create and update requests."""
    contents: Optional[str] = Field(None, description="Extracted / typed document text")
    tags: Optional[Any] = Field(None, description="Free-form tags (usually a list of strings)")
    document_type: Optional[str] = Field(None, max_length=200, description="Classification label")
    collaborators: Optional[List[str]] = Field(None, description="Collaborator emails")


class DocumentCreate(DocumentBase):
    """Schema for creating a document via API (the multipart `payload` part)."""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=500, description="Document title")


class DocumentUpdate(DocumentBase):
    """
    Partial metadata update. Status, file, title and version fields are
    managed by the lifecycle endpoints and are rejected here.
    """
    model_config = ConfigDict(extra="forbid")


class VersionOverride(BaseModel):
    """Optional payload for a new version; omitted fields are copied from the current one."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, max_length=500)
    contents: Optional[str] = None
    tags: Optional[Any] = None
    notes: Optional[str] = Field(None, max_length=2000, description="Submitter's change note")


class VersionOut(BaseModel):
    """One entry of a document's version history."""
    v: int
    file_url: Optional[str] = None
    title: str = ""
    contents: str = ""
    tags: Optional[Any] = None
    status: str
    notes: str = ""
    created_at: str = ""
    created_by: str = ""


class DocumentOut(BaseModel):
    """Schema for document output."""
    id: int = Field(..., description="Document ID")
    user_id: str
    status: str
    title: str
    contents: str = ""
    tags: Optional[Any] = None
    document_type: str = ""
    collaborators: List[str] = Field(default_factory=list)
    attach_file: Optional[str] = None
    current_version: Optional[int] = None
    versions: List[VersionOut] = Field(default_factory=list)
    last_edited_by: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


class RepositoryOut(BaseModel):
    """Global and caller-owned listings, with approved-only views."""
    documents: List[DocumentOut] = Field(default_factory=list)
    user_documents: List[DocumentOut] = Field(default_factory=list)
    approved_documents: List[DocumentOut] = Field(default_factory=list)
    approved_user_documents: List[DocumentOut] = Field(default_factory=list)
    error: Optional[str] = None

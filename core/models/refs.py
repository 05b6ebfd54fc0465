"""Data reference models for artifact storage and tracking."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class DataReference(BaseModel):
    """Reference to a stored artifact with metadata for retrieval and verification.

    Attributes:
        storage_uri: Absolute file path to the artifact
        content_hash: SHA256 hash of the content for integrity verification
        content_type: MIME type (e.g., "application/json", "application/pdf")
        size_bytes: Size of the artifact in bytes
        stored_at: Timestamp when the artifact was stored
    """
    storage_uri: str = Field(..., description="Absolute file path to the artifact")
    content_hash: str = Field(..., description="SHA256 hash of content")
    content_type: str = Field(default="application/json", description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    stored_at: datetime = Field(default_factory=datetime.now, description="Storage timestamp")


class SourceFileRef(BaseModel):
    """Where an uploaded supplier quote ended up.

    Attributes:
        file_name: Original file name as uploaded
        file_url: URL recorded on the quote record; a ``placeholder://`` URL
            when storing the file failed
        stored: Whether the file was actually written to the artifact store
        data_ref: Artifact reference when stored
    """
    file_name: str = Field(..., description="Original file name")
    file_url: str = Field(..., description="Stored location or placeholder URL")
    stored: bool = Field(default=True, description="Whether the file was stored")
    data_ref: Optional[DataReference] = Field(None, description="Artifact reference when stored")

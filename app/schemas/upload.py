"""
Pydantic schemas for upload operations
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResultCode(str, Enum):
    """Stable result codes returned to the presentation layer."""

    UPLOAD_SUCCESS = "UPLOAD_SUCCESS"
    UPLOADING = "UPLOADING"
    NOT_UPLOADED = "NOT_UPLOADED"
    UPLOAD_FILE_FAILED = "UPLOAD_FILE_FAILED"


class ChunkPartInfo(BaseModel):
    """A chunk already stored by the backend."""

    part_number: int
    etag: str


class UploadCheckResult(BaseModel):
    """Schema for the resume / dedup check."""

    code: ResultCode
    upload_id: str = ""
    session_id: Optional[UUID] = None
    completed_chunks: List[ChunkPartInfo] = Field(default_factory=list)
    url: Optional[str] = None


class InitUploadRequest(BaseModel):
    """Schema for starting a multipart upload."""

    file_identifier: str = Field(..., min_length=1, max_length=128, description="Content hash (MD5/SHA-256)")
    file_name: str = Field(..., min_length=1, max_length=500, description="Original file name")
    total_size: int = Field(..., gt=0, description="File size in bytes")
    chunk_size: int = Field(..., gt=0, description="Chunk size in bytes")
    chunk_num: int = Field(..., gt=0, description="Number of chunks")

    @field_validator("file_identifier", "file_name")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class InitUploadResponse(BaseModel):
    """Schema for the multipart upload token."""

    upload_id: str


class ChunkUploadResponse(BaseModel):
    """Schema for an accepted chunk."""

    upload_id: str
    part_number: int
    etag: str


class UploadUrlResponse(BaseModel):
    """Schema for a stored object's public URL."""

    code: ResultCode = ResultCode.UPLOAD_SUCCESS
    url: str


class ChunkReceiptResponse(BaseModel):
    """Schema for a ledger entry."""

    chunk_index: int
    receipt_token: str
    recorded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UploadSessionResponse(BaseModel):
    """Schema for an upload session and its ledger."""

    id: UUID
    content_fingerprint: str
    backend_session_token: str
    original_file_name: str
    storage_key: str
    bucket: str
    content_type: str
    total_size_bytes: int
    chunk_size_bytes: int
    total_chunk_count: int
    status: str
    created_at: datetime
    updated_at: datetime
    receipts: List[ChunkReceiptResponse] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, value):
        return getattr(value, "value", value)


class HealthCheck(BaseModel):
    """Schema for health check response."""

    status: str = "healthy"
    timestamp: datetime
    version: str = "1.0.0"
    database_connected: bool = True
    s3_configured: bool = True


class ApiInfo(BaseModel):
    """Schema for API information."""

    name: str = "S3 Resumable Upload API"
    version: str = "1.0.0"
    description: str = "Resumable chunked uploads to S3-compatible storage"
    endpoints: dict = {
        "single": "/api/v1/upload/single",
        "check": "/api/v1/upload/multipart/check/{fingerprint}",
        "init": "/api/v1/upload/multipart/init",
        "part": "/api/v1/upload/multipart/part",
        "merge": "/api/v1/upload/multipart/merge/{fingerprint}",
        "session": "/api/v1/upload/multipart/sessions/{session_id}",
        "health": "/api/v1/health",
        "docs": "/docs"
    }

"""
Pydantic schemas for the S3 Resumable Upload API
"""

from app.schemas.upload import (
    ChunkPartInfo,
    ChunkReceiptResponse,
    ChunkUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    ResultCode,
    UploadCheckResult,
    UploadSessionResponse,
    UploadUrlResponse
)

__all__ = [
    "ChunkPartInfo",
    "ChunkReceiptResponse",
    "ChunkUploadResponse",
    "InitUploadRequest",
    "InitUploadResponse",
    "ResultCode",
    "UploadCheckResult",
    "UploadSessionResponse",
    "UploadUrlResponse"
]

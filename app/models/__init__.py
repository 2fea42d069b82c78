"""
Database models for the S3 Resumable Upload API
"""

from app.models.chunk_receipt import ChunkReceipt
from app.models.upload_session import UploadSession, UploadStatus

__all__ = ["ChunkReceipt", "UploadSession", "UploadStatus"]

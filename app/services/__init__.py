"""
Business logic services for the S3 Resumable Upload API
"""

from app.services.s3_service import S3Gateway
from app.services.storage_gateway import ChunkPart, ObjectStorageGateway

__all__ = ["S3Gateway", "ChunkPart", "ObjectStorageGateway"]

"""
FastAPI dependencies for services and request validation
"""

from fastapi import Depends, HTTPException, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.services.s3_service import get_storage_gateway
from app.services.storage_gateway import ObjectStorageGateway
from app.services.upload_service import MultipartUploadService

settings = get_settings()


def get_gateway() -> ObjectStorageGateway:
    """
    Get the shared storage gateway.

    Raises:
        HTTPException: If S3 is not configured
    """
    try:
        return get_storage_gateway()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Object storage is not configured: {str(e)}"
        )


def get_upload_service(
    db: AsyncSession = Depends(get_db),
    gateway: ObjectStorageGateway = Depends(get_gateway)
) -> MultipartUploadService:
    """
    Build the upload service for one request.

    Args:
        db: Database session
        gateway: Shared storage gateway

    Returns:
        MultipartUploadService
    """
    return MultipartUploadService(db, gateway, settings)


async def read_upload_file(file: UploadFile, max_size_bytes: int) -> bytes:
    """
    Read an uploaded file, enforcing a size limit.

    Args:
        file: Uploaded file from FastAPI
        max_size_bytes: Largest accepted payload

    Returns:
        File content

    Raises:
        HTTPException: If the file is missing, empty or too large
    """
    if not file:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file provided"
        )

    # Check file size
    file.file.seek(0, 2)  # Seek to end
    file_size = file.file.tell()
    file.file.seek(0)  # Reset to beginning

    if file_size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty file"
        )

    if file_size > max_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size: {max_size_bytes} bytes"
        )

    return await file.read()

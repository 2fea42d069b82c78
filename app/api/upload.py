"""
Upload API endpoints for single-shot and resumable multipart uploads
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile

from app.config import get_settings
from app.core.dependencies import get_upload_service, read_upload_file
from app.schemas.upload import (
    ChunkReceiptResponse,
    ChunkUploadResponse,
    InitUploadRequest,
    InitUploadResponse,
    UploadCheckResult,
    UploadSessionResponse,
    UploadUrlResponse,
)
from app.services.upload_service import MultipartUploadService

router = APIRouter()
settings = get_settings()


@router.post("/single", response_model=UploadUrlResponse)
async def upload_single(
    file: UploadFile = File(...),
    service: MultipartUploadService = Depends(get_upload_service)
) -> UploadUrlResponse:
    """
    Upload a small file in one request.

    Args:
        file: File to upload
        service: Upload service

    Returns:
        UploadUrlResponse: Public URL of the stored object
    """
    data = await read_upload_file(file, settings.s3_multipart_threshold)
    url = await service.put_single(data, file.filename or "")
    return UploadUrlResponse(url=url)


@router.get("/multipart/check/{fingerprint}", response_model=UploadCheckResult)
async def check_file(
    fingerprint: str,
    service: MultipartUploadService = Depends(get_upload_service)
) -> UploadCheckResult:
    """
    Check whether a file was uploaded before, or which chunks are stored.

    Args:
        fingerprint: Content hash of the file
        service: Upload service

    Returns:
        UploadCheckResult: NOT_UPLOADED, UPLOADING or UPLOAD_SUCCESS
    """
    return await service.resolve(fingerprint)


@router.post("/multipart/init", response_model=InitUploadResponse)
async def init_multipart_upload(
    request: InitUploadRequest,
    service: MultipartUploadService = Depends(get_upload_service)
) -> InitUploadResponse:
    """
    Start a multipart upload. Call only when the check returned NOT_UPLOADED.

    Args:
        request: File identifier, name, sizes and chunk count
        service: Upload service

    Returns:
        InitUploadResponse: Upload id used for the chunk uploads
    """
    upload_id = await service.begin(
        fingerprint=request.file_identifier,
        file_name=request.file_name,
        total_size=request.total_size,
        chunk_size=request.chunk_size,
        chunk_count=request.chunk_num
    )
    return InitUploadResponse(upload_id=upload_id)


@router.post("/multipart/part", response_model=ChunkUploadResponse)
async def upload_part(
    file: UploadFile = File(...),
    upload_id: str = Form(...),
    part_number: int = Form(...),
    service: MultipartUploadService = Depends(get_upload_service)
) -> ChunkUploadResponse:
    """
    Upload one chunk of a multipart upload.

    Args:
        file: Chunk content
        upload_id: Upload id returned by init
        part_number: 1-based chunk number
        service: Upload service

    Returns:
        ChunkUploadResponse: The stored chunk's ETag
    """
    data = await read_upload_file(file, settings.max_chunk_size_bytes)
    etag = await service.accept_chunk(upload_id, part_number, data)
    return ChunkUploadResponse(upload_id=upload_id, part_number=part_number, etag=etag)


@router.post("/multipart/merge/{fingerprint}", response_model=UploadUrlResponse)
async def merge_multipart_upload(
    fingerprint: str,
    service: MultipartUploadService = Depends(get_upload_service)
) -> UploadUrlResponse:
    """
    Merge the uploaded chunks into the final object.

    Args:
        fingerprint: Content hash of the file
        service: Upload service

    Returns:
        UploadUrlResponse: Public URL of the merged object
    """
    url = await service.finalize(fingerprint)
    return UploadUrlResponse(url=url)


@router.get("/multipart/sessions/{session_id}", response_model=UploadSessionResponse)
async def get_upload_session(
    session_id: UUID,
    service: MultipartUploadService = Depends(get_upload_service)
) -> UploadSessionResponse:
    """
    Get an upload session with the chunk receipts recorded for it.

    Args:
        session_id: Session UUID
        service: Upload service

    Returns:
        UploadSessionResponse: Session state and ledger
    """
    session, receipts = await service.get_session(session_id)
    response = UploadSessionResponse.model_validate(session)
    response.receipts = [ChunkReceiptResponse.model_validate(r) for r in receipts]
    return response

"""
Multipart upload service: dedup, resume, chunk acceptance and merge
"""

import logging
import mimetypes
import os
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.exceptions import ErrorKind, UploadError
from app.models.chunk_receipt import ChunkReceipt
from app.models.upload_session import UploadSession, UploadStatus
from app.repositories.chunk_receipt_repository import ChunkReceiptRepository
from app.repositories.upload_session_repository import UploadSessionRepository
from app.schemas.upload import ChunkPartInfo, ResultCode, UploadCheckResult
from app.services.storage_gateway import ChunkPart, ObjectStorageGateway

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# S3 accepts part numbers 1..10000
MAX_CHUNK_COUNT = 10000

_UNSAFE_KEY_CHARS = re.compile(r"[^\w.\-]+")


def _split_file_name(file_name: str) -> Tuple[str, str]:
    """Split a client file name into (sanitized base name, lowercase extension)."""
    name = file_name.replace("\\", "/").rsplit("/", 1)[-1]
    base, extension = os.path.splitext(name)
    base = _UNSAFE_KEY_CHARS.sub("_", base).strip("._") or "file"
    extension = _UNSAFE_KEY_CHARS.sub("", extension.lstrip(".")).lower()
    return base, extension


def build_multipart_key(file_name: str, fingerprint: str, now: Optional[datetime] = None) -> str:
    """
    Build the object key of a multipart upload.

    Format: ``YYYY/MM/DD/<base>_<fingerprint>.<ext>``. The fingerprint keeps
    uploads of different files with the same name apart.

    Args:
        file_name: Original file name
        fingerprint: Content hash
        now: Creation time (defaults to current UTC time)

    Returns:
        Object key
    """
    now = now or datetime.now(timezone.utc)
    base, extension = _split_file_name(file_name)
    safe_fingerprint = _UNSAFE_KEY_CHARS.sub("_", fingerprint)
    key = f"{now:%Y/%m/%d}/{base}_{safe_fingerprint}"
    return f"{key}.{extension}" if extension else key


def build_single_key(file_name: str, prefix: str = "", now: Optional[datetime] = None) -> str:
    """
    Build the object key of a single-shot upload.

    Format: ``<prefix>YYYY-MM-DD/<uuid4>.<ext>``.

    Args:
        file_name: Original file name
        prefix: Key prefix
        now: Upload time (defaults to current UTC time)

    Returns:
        Object key
    """
    now = now or datetime.now(timezone.utc)
    _, extension = _split_file_name(file_name)
    unique_name = f"{uuid4()}.{extension}" if extension else str(uuid4())
    return f"{prefix}{now:%Y-%m-%d}/{unique_name}"


def guess_content_type(key: str) -> str:
    """Get a MIME type from the key extension, defaulting to opaque binary."""
    content_type, _ = mimetypes.guess_type(key)
    return content_type or DEFAULT_CONTENT_TYPE


class MultipartUploadService:
    """Service driving the multipart-upload state machine."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: ObjectStorageGateway,
        settings: Optional[Settings] = None
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.sessions = UploadSessionRepository(db)
        self.receipts = ChunkReceiptRepository(db)

    async def resolve(self, fingerprint: Optional[str]) -> UploadCheckResult:
        """
        Check whether content was uploaded, is being uploaded, or is new.

        Args:
            fingerprint: Content hash

        Returns:
            UploadCheckResult with NOT_UPLOADED, UPLOADING (token and stored
            chunks) or UPLOAD_SUCCESS (public URL)
        """
        if not fingerprint or not fingerprint.strip():
            return UploadCheckResult(code=ResultCode.NOT_UPLOADED)

        session = await self.sessions.get_active_by_fingerprint(fingerprint.strip())
        if session is None:
            return UploadCheckResult(code=ResultCode.NOT_UPLOADED)

        if session.status == UploadStatus.COMPLETE:
            return UploadCheckResult(
                code=ResultCode.UPLOAD_SUCCESS,
                upload_id=session.backend_session_token,
                session_id=session.id,
                url=self.gateway.public_url(session.bucket, session.storage_key)
            )

        try:
            parts = await self._reconcile(session)
        except UploadError as e:
            # Restarting is safer than reporting a resume state we can't verify
            logger.warning(
                f"Reconciliation failed for session {session.id} ({e.kind.value}): {e.message}"
            )
            if e.kind == ErrorKind.BACKEND_SESSION_GONE:
                await self.sessions.transition(
                    session.id, UploadStatus.UPLOADING, UploadStatus.FAILED
                )
            return UploadCheckResult(code=ResultCode.NOT_UPLOADED)

        return UploadCheckResult(
            code=ResultCode.UPLOADING,
            upload_id=session.backend_session_token,
            session_id=session.id,
            completed_chunks=[
                ChunkPartInfo(part_number=part.index, etag=part.receipt) for part in parts
            ]
        )

    async def begin(
        self,
        fingerprint: str,
        file_name: str,
        total_size: int,
        chunk_size: int,
        chunk_count: int
    ) -> str:
        """
        Open a multipart upload session, or return the one already open.

        Args:
            fingerprint: Content hash
            file_name: Original file name
            total_size: File size in bytes
            chunk_size: Chunk size in bytes
            chunk_count: Number of chunks

        Returns:
            Backend upload token

        Raises:
            UploadError: INVALID_ARGUMENT, BACKEND_UNAVAILABLE,
                BACKEND_REJECTED, DUPLICATE_FINGERPRINT (only if the race
                winner disappeared)
        """
        if not fingerprint or not fingerprint.strip():
            raise UploadError(ErrorKind.INVALID_ARGUMENT, "File identifier must not be blank")
        if not file_name or not file_name.strip():
            raise UploadError(ErrorKind.INVALID_ARGUMENT, "File name must not be blank")
        if total_size <= 0 or chunk_size <= 0 or chunk_count <= 0:
            raise UploadError(
                ErrorKind.INVALID_ARGUMENT,
                "Total size, chunk size and chunk count must be positive"
            )
        if chunk_count > MAX_CHUNK_COUNT:
            raise UploadError(
                ErrorKind.INVALID_ARGUMENT,
                f"Chunk count {chunk_count} exceeds the limit of {MAX_CHUNK_COUNT}",
                {"max_chunks": MAX_CHUNK_COUNT}
            )
        if total_size > self.settings.max_file_size_bytes:
            raise UploadError(
                ErrorKind.FILE_TOO_LARGE,
                f"File too large. Maximum size: {self.settings.max_file_size_mb}MB"
            )
        fingerprint = fingerprint.strip()

        existing = await self.sessions.get_active_by_fingerprint(fingerprint)
        if existing is not None:
            return existing.backend_session_token

        bucket = self.gateway.bucket_name
        storage_key = build_multipart_key(file_name, fingerprint)
        content_type = guess_content_type(storage_key)

        token = await self.gateway.begin_session(bucket, storage_key, content_type)

        session = UploadSession(
            content_fingerprint=fingerprint,
            backend_session_token=token,
            original_file_name=file_name,
            storage_key=storage_key,
            bucket=bucket,
            content_type=content_type,
            total_size_bytes=total_size,
            chunk_size_bytes=chunk_size,
            total_chunk_count=chunk_count,
            status=UploadStatus.UPLOADING
        )

        try:
            session = await self.sessions.create(session)
        except UploadError as e:
            if e.kind != ErrorKind.DUPLICATE_FINGERPRINT:
                raise
            return await self._yield_to_winner(fingerprint, bucket, storage_key, token, e)

        logger.info(
            f"Created upload session {session.id} for {file_name} "
            f"({chunk_count} chunks, fingerprint {fingerprint})"
        )
        return token

    async def _yield_to_winner(
        self,
        fingerprint: str,
        bucket: str,
        storage_key: str,
        token: str,
        conflict: UploadError
    ) -> str:
        """Drop the backend session of a lost begin race and return the winner's token."""
        logger.info(f"Lost begin race for {fingerprint}, aborting backend session {token}")
        try:
            await self.gateway.abort_session(bucket, storage_key, token)
        except UploadError as e:
            logger.warning(f"Could not abort backend session {token}: {e.message}")

        winner = await self.sessions.get_active_by_fingerprint(fingerprint)
        if winner is None:
            raise conflict
        return winner.backend_session_token

    async def accept_chunk(self, token: str, chunk_index: int, data: bytes) -> str:
        """
        Store one chunk and record its receipt.

        Args:
            token: Backend upload token
            chunk_index: 1-based chunk number
            data: Chunk content

        Returns:
            Backend receipt (ETag)

        Raises:
            UploadError: SESSION_NOT_FOUND, CHUNK_INDEX_OUT_OF_RANGE,
                BACKEND_UNAVAILABLE, BACKEND_REJECTED
        """
        session = await self.sessions.get_by_backend_token(token) if token else None
        if session is None:
            raise UploadError(
                ErrorKind.SESSION_NOT_FOUND,
                f"No open upload session for upload id {token!r}"
            )

        if chunk_index < 1 or chunk_index > session.total_chunk_count:
            raise UploadError(
                ErrorKind.CHUNK_INDEX_OUT_OF_RANGE,
                f"Chunk index {chunk_index} outside 1..{session.total_chunk_count}",
                {"chunk_index": chunk_index, "total_chunks": session.total_chunk_count}
            )

        receipt = await self.gateway.put_chunk(
            token, session.bucket, session.storage_key, chunk_index, data
        )
        await self.receipts.record(session.id, chunk_index, receipt)

        logger.debug(f"Accepted chunk {chunk_index}/{session.total_chunk_count} for session {session.id}")
        return receipt

    async def finalize(self, fingerprint: str) -> str:
        """
        Merge the stored chunks into the final object.

        Args:
            fingerprint: Content hash

        Returns:
            Public URL of the object

        Raises:
            UploadError: INVALID_ARGUMENT, SESSION_NOT_FOUND,
                INCOMPLETE_UPLOAD, BACKEND_UNAVAILABLE, BACKEND_REJECTED,
                UPLOAD_FAILED
        """
        if not fingerprint or not fingerprint.strip():
            raise UploadError(ErrorKind.INVALID_ARGUMENT, "File identifier must not be blank")

        session = await self.sessions.get_active_by_fingerprint(fingerprint.strip())
        if session is None:
            raise UploadError(
                ErrorKind.SESSION_NOT_FOUND,
                f"No upload session for {fingerprint}"
            )

        if session.status == UploadStatus.COMPLETE:
            return self.gateway.public_url(session.bucket, session.storage_key)

        try:
            parts = await self._reconcile(session)
        except UploadError as e:
            if e.kind == ErrorKind.BACKEND_SESSION_GONE:
                return await self._fail(session, e)
            raise

        stored = {part.index: part for part in parts}
        missing = [i for i in range(1, session.total_chunk_count + 1) if i not in stored]
        if missing:
            raise UploadError(
                ErrorKind.INCOMPLETE_UPLOAD,
                f"Missing chunks: {missing}",
                {"missing_chunks": missing}
            )

        ordered = [stored[i] for i in range(1, session.total_chunk_count + 1)]
        try:
            final_key = await self.gateway.finalize(
                session.bucket, session.storage_key, session.backend_session_token, ordered
            )
        except UploadError as e:
            if e.kind == ErrorKind.BACKEND_SESSION_GONE:
                return await self._fail(session, e)
            raise

        await self.sessions.transition(
            session.id,
            UploadStatus.UPLOADING,
            UploadStatus.COMPLETE,
            storage_key=final_key
        )
        logger.info(f"Upload session {session.id} complete: s3://{session.bucket}/{final_key}")
        return self.gateway.public_url(session.bucket, final_key)

    async def _fail(self, session: UploadSession, cause: UploadError) -> str:
        """
        Mark a session FAILED after an unrecoverable backend error.

        The backend upload is aborted so S3 drops the stored parts. Returns
        the URL instead when a concurrent finalize completed the
        session first.
        """
        moved = await self.sessions.transition(
            session.id, UploadStatus.UPLOADING, UploadStatus.FAILED
        )
        if moved:
            try:
                await self.gateway.abort_session(
                    session.bucket, session.storage_key, session.backend_session_token
                )
            except UploadError as e:
                logger.warning(f"Could not abort backend session for {session.id}: {e.message}")
        else:
            current = await self.sessions.get_by_id(session.id)
            if current is not None and current.status == UploadStatus.COMPLETE:
                return self.gateway.public_url(current.bucket, current.storage_key)

        logger.error(f"Upload session {session.id} failed: {cause.message}")
        raise UploadError(
            ErrorKind.UPLOAD_FAILED,
            f"Upload failed and must be restarted: {cause.message}",
            {"session_id": str(session.id)}
        )

    async def _reconcile(self, session: UploadSession) -> List[ChunkPart]:
        """Replace the local chunk view with the backend listing."""
        parts = await self.gateway.list_completed_chunks(
            session.bucket, session.storage_key, session.backend_session_token
        )
        await self.receipts.merge(session.id, parts)
        return parts

    async def get_session(self, session_id: UUID) -> Tuple[UploadSession, List[ChunkReceipt]]:
        """
        Get a session and its ledger.

        Args:
            session_id: Session UUID

        Returns:
            Tuple of (session, receipts ascending by chunk index)
        """
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise UploadError(ErrorKind.SESSION_NOT_FOUND, f"Upload session {session_id} not found")
        return session, await self.receipts.list_ordered(session.id)

    async def delete_session(self, session_id: UUID) -> None:
        """
        Delete a session and its chunk receipts.

        An open backend upload is aborted first so S3 drops its parts.

        Args:
            session_id: Session UUID
        """
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise UploadError(ErrorKind.SESSION_NOT_FOUND, f"Upload session {session_id} not found")

        if session.status == UploadStatus.UPLOADING and session.backend_session_token:
            try:
                await self.gateway.abort_session(
                    session.bucket, session.storage_key, session.backend_session_token
                )
            except UploadError as e:
                logger.warning(f"Could not abort backend session for {session.id}: {e.message}")

        await self.sessions.delete(session)
        logger.info(f"Deleted upload session {session_id}")

    async def put_single(self, data: bytes, original_file_name: str) -> str:
        """
        Upload a small file in one request.

        Args:
            data: File content
            original_file_name: Client file name, used for the extension

        Returns:
            Public URL of the object
        """
        if not data:
            raise UploadError(ErrorKind.INVALID_ARGUMENT, "Empty file")
        if len(data) > self.settings.s3_multipart_threshold:
            raise UploadError(
                ErrorKind.FILE_TOO_LARGE,
                "File exceeds the single upload limit, use multipart upload",
                {"limit_bytes": self.settings.s3_multipart_threshold}
            )

        bucket = self.gateway.bucket_name
        key = build_single_key(original_file_name or "", self.settings.s3_single_upload_prefix)
        await self.gateway.put_whole(bucket, key, data, guess_content_type(key))
        return self.gateway.public_url(bucket, key)

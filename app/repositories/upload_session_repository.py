"""
Upload session repository (fingerprint registry) for database operations
"""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func

from app.core.exceptions import ErrorKind, UploadError
from app.models.chunk_receipt import ChunkReceipt
from app.models.upload_session import UploadSession, UploadStatus


class UploadSessionRepository:
    """Repository for upload session database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_by_fingerprint(self, fingerprint: str) -> Optional[UploadSession]:
        """
        Get the session registered for a fingerprint, ignoring failed ones.

        Args:
            fingerprint: Content hash supplied by the client

        Returns:
            UploadSession if one is uploading or complete, None otherwise
        """
        query = select(UploadSession).where(
            and_(
                UploadSession.content_fingerprint == fingerprint,
                UploadSession.status != UploadStatus.FAILED
            )
        ).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id(self, session_id: UUID) -> Optional[UploadSession]:
        """
        Get session by ID.

        Args:
            session_id: Session UUID

        Returns:
            UploadSession or None if not found
        """
        query = select(UploadSession).where(
            UploadSession.id == session_id
        ).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_backend_token(self, token: str) -> Optional[UploadSession]:
        """
        Get the uploading session that owns a backend upload token.

        Args:
            token: S3 UploadId

        Returns:
            UploadSession or None if no uploading session has that token
        """
        query = select(UploadSession).where(
            and_(
                UploadSession.backend_session_token == token,
                UploadSession.status == UploadStatus.UPLOADING
            )
        ).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return result.scalars().first()

    async def create(self, session: UploadSession) -> UploadSession:
        """
        Persist a new session.

        Args:
            session: Session to insert

        Returns:
            Created session

        Raises:
            UploadError: DUPLICATE_FINGERPRINT if an active session already
                holds the fingerprint
        """
        self.db.add(session)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise UploadError(
                ErrorKind.DUPLICATE_FINGERPRINT,
                f"An active upload session already exists for {session.content_fingerprint}",
                {"fingerprint": session.content_fingerprint}
            )
        await self.db.refresh(session)
        return session

    async def transition(
        self,
        session_id: UUID,
        from_status: UploadStatus,
        to_status: UploadStatus,
        **fields: Any
    ) -> bool:
        """
        Move a session between states if it is still in ``from_status``.

        Args:
            session_id: Session UUID
            from_status: Required current status
            to_status: New status
            **fields: Extra columns to set in the same update

        Returns:
            True if the row was updated
        """
        stmt = (
            update(UploadSession)
            .where(
                and_(
                    UploadSession.id == session_id,
                    UploadSession.status == from_status
                )
            )
            .values(status=to_status, updated_at=func.now(), **fields)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        return result.rowcount > 0

    async def delete(self, session: UploadSession) -> None:
        """
        Delete a session together with its chunk receipts.

        Receipts go first and both deletes share one commit.

        Args:
            session: Session to delete
        """
        await self.db.execute(
            delete(ChunkReceipt).where(ChunkReceipt.session_id == session.id)
        )
        await self.db.execute(
            delete(UploadSession).where(UploadSession.id == session.id)
        )
        await self.db.commit()

"""
Chunk receipt repository (chunk ledger) for database operations
"""

from typing import Iterable, List
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func

from app.models.chunk_receipt import ChunkReceipt
from app.services.storage_gateway import ChunkPart


class ChunkReceiptRepository:
    """Repository for chunk receipt database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        if self.db.bind.dialect.name == "postgresql":
            return postgresql_insert(ChunkReceipt)
        return sqlite_insert(ChunkReceipt)

    async def _upsert(self, session_id: UUID, chunk_index: int, receipt_token: str) -> None:
        stmt = self._insert().values(
            session_id=session_id,
            chunk_index=chunk_index,
            receipt_token=receipt_token
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ChunkReceipt.session_id, ChunkReceipt.chunk_index],
            set_={
                "receipt_token": stmt.excluded.receipt_token,
                "recorded_at": func.now()
            }
        )
        await self.db.execute(stmt)

    async def record(self, session_id: UUID, chunk_index: int, receipt_token: str) -> ChunkReceipt:
        """
        Record the receipt of a chunk, replacing any earlier receipt.

        Args:
            session_id: Owning session
            chunk_index: 1-based chunk number
            receipt_token: Backend receipt (ETag)

        Returns:
            Stored receipt
        """
        await self._upsert(session_id, chunk_index, receipt_token)
        await self.db.commit()

        query = select(ChunkReceipt).where(
            and_(
                ChunkReceipt.session_id == session_id,
                ChunkReceipt.chunk_index == chunk_index
            )
        ).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def list_ordered(self, session_id: UUID) -> List[ChunkReceipt]:
        """
        Get the receipts of a session ascending by chunk index.

        Args:
            session_id: Owning session

        Returns:
            List of receipts
        """
        query = select(ChunkReceipt).where(
            ChunkReceipt.session_id == session_id
        ).order_by(ChunkReceipt.chunk_index).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def merge(self, session_id: UUID, parts: Iterable[ChunkPart]) -> None:
        """
        Bring the ledger in line with the backend listing.

        Every listed part overwrites the local receipt for its index.

        Args:
            session_id: Owning session
            parts: Parts reported by the storage backend
        """
        for part in parts:
            await self._upsert(session_id, part.index, part.receipt)
        await self.db.commit()

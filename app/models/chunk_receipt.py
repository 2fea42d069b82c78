"""
Chunk receipt model for multipart upload parts
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base


class ChunkReceipt(Base):
    """Proof that one chunk was accepted by the storage backend."""

    __tablename__ = "chunk_receipts"
    __table_args__ = (
        UniqueConstraint("session_id", "chunk_index", name="uq_chunk_receipts_session_index"),
    )

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4
    )

    # Reference only; rows are removed together with their session
    session_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("upload_sessions.id"),
        nullable=False,
        index=True
    )

    # 1-based part number
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # S3 ETag
    receipt_token: Mapped[str] = mapped_column(String(255), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<ChunkReceipt(session_id={self.session_id}, chunk_index={self.chunk_index}, "
            f"receipt_token='{self.receipt_token}')>"
        )

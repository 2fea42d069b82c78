"""
Upload session model for tracking multipart uploads
"""

import enum
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Enum, Index, Integer, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.database import Base


class UploadStatus(str, enum.Enum):
    """Lifecycle of a multipart upload session."""

    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"


class UploadSession(Base):
    """One multipart-upload attempt for one content fingerprint."""

    __tablename__ = "upload_sessions"
    __table_args__ = (
        # At most one session that is not FAILED per fingerprint
        Index(
            "uq_upload_sessions_active_fingerprint",
            "content_fingerprint",
            unique=True,
            postgresql_where=text("status != 'failed'"),
            sqlite_where=text("status != 'failed'"),
        ),
    )

    # Primary key
    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4
    )

    # Dedup key
    content_fingerprint: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # S3 multipart UploadId
    backend_session_token: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="",
        index=True
    )

    # File details
    original_file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    bucket: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default="application/octet-stream"
    )

    # Fixed at creation
    total_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chunk_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_chunk_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Status
    status: Mapped[UploadStatus] = mapped_column(
        Enum(
            UploadStatus,
            name="upload_status",
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses]
        ),
        nullable=False,
        default=UploadStatus.UPLOADING
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<UploadSession(id={self.id}, fingerprint='{self.content_fingerprint}', "
            f"status='{self.status.value}')>"
        )

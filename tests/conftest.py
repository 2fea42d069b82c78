"""Pytest configuration and fixtures for the upload API tests."""

import os

# Must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("S3_BUCKET_NAME", "test-bucket")

import itertools
from typing import Callable, Dict, List, Optional, Sequence

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import app.models  # noqa: F401  registers tables
from app.config import Settings
from app.core.exceptions import ErrorKind, UploadError
from app.database import Base
from app.services.storage_gateway import ChunkPart
from app.services.upload_service import MultipartUploadService


class FakeGateway:
    """In-memory stand-in for S3 multipart uploads."""

    def __init__(self, bucket_name: str = "test-bucket"):
        self.bucket_name = bucket_name
        self.uploads: Dict[str, Dict] = {}
        self.objects: Dict[str, bytes] = {}
        self.aborted: List[str] = []
        self.calls: List[str] = []
        self._tokens = itertools.count(1)

        # Failure injection
        self.list_error: Optional[UploadError] = None
        self.finalize_error: Optional[UploadError] = None
        self.put_error: Optional[UploadError] = None
        self.on_begin: Optional[Callable] = None
        self.on_finalize: Optional[Callable] = None

    async def begin_session(self, bucket: str, key: str, content_type: str) -> str:
        self.calls.append("begin_session")
        token = f"upload-{next(self._tokens)}"
        self.uploads[token] = {"bucket": bucket, "key": key, "content_type": content_type, "parts": {}}
        if self.on_begin is not None:
            await self.on_begin(token)
        return token

    async def put_chunk(self, token: str, bucket: str, key: str, chunk_index: int, data: bytes) -> str:
        self.calls.append("put_chunk")
        if self.put_error is not None:
            raise self.put_error
        if token not in self.uploads:
            raise UploadError(ErrorKind.BACKEND_SESSION_GONE, "NoSuchUpload")
        receipt = f'"etag-{chunk_index}-{len(data)}-{data[:8].hex()}"'
        self.uploads[token]["parts"][chunk_index] = (receipt, data)
        return receipt

    async def list_completed_chunks(self, bucket: str, key: str, token: str) -> List[ChunkPart]:
        self.calls.append("list_completed_chunks")
        if self.list_error is not None:
            raise self.list_error
        if token not in self.uploads:
            raise UploadError(ErrorKind.BACKEND_SESSION_GONE, "NoSuchUpload")
        parts = self.uploads[token]["parts"]
        return [ChunkPart(index=i, receipt=parts[i][0]) for i in sorted(parts)]

    async def finalize(self, bucket: str, key: str, token: str, parts: Sequence[ChunkPart]) -> str:
        self.calls.append("finalize")
        if self.on_finalize is not None:
            await self.on_finalize(token)
        if self.finalize_error is not None:
            raise self.finalize_error
        upload = self.uploads.pop(token, None)
        if upload is None:
            raise UploadError(ErrorKind.BACKEND_SESSION_GONE, "NoSuchUpload")
        self.objects[key] = b"".join(upload["parts"][p.index][1] for p in parts)
        return key

    async def abort_session(self, bucket: str, key: str, token: str) -> None:
        self.calls.append("abort_session")
        self.aborted.append(token)
        self.uploads.pop(token, None)

    def public_url(self, bucket: str, key: str) -> str:
        return f"https://cdn.example.com/{bucket}/{key}"

    async def put_whole(self, bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self.calls.append("put_whole")
        self.objects[key] = data


@pytest.fixture
def settings():
    """Settings used by the service under test."""
    return Settings(
        s3_bucket_name="test-bucket",
        s3_multipart_threshold=1024,
        max_file_size_mb=10,
        s3_single_upload_prefix="single/"
    )


@pytest.fixture
def gateway():
    """Fresh in-memory gateway."""
    return FakeGateway()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """SQLite database with the upload tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'uploads.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test database."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    """Database session for one test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def service(db, gateway, settings):
    """Upload service wired to the test database and fake gateway."""
    return MultipartUploadService(db, gateway, settings)

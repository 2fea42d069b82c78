"""
Object storage gateway contract used by the upload service
"""

from dataclasses import dataclass
from typing import List, Protocol, Sequence


@dataclass(frozen=True)
class ChunkPart:
    """A chunk the backend has stored: its 1-based index and receipt (ETag)."""

    index: int
    receipt: str


class ObjectStorageGateway(Protocol):
    """
    Multipart-upload primitives of an S3-compatible backend.

    Implementations raise ``UploadError`` with kind ``BACKEND_UNAVAILABLE``
    for transient failures and ``BACKEND_SESSION_GONE`` when the backend
    reports the upload session (or bucket) no longer exists.
    """

    bucket_name: str

    async def begin_session(self, bucket: str, key: str, content_type: str) -> str:
        """Open a multipart upload and return its backend token."""
        ...

    async def put_chunk(
        self,
        token: str,
        bucket: str,
        key: str,
        chunk_index: int,
        data: bytes
    ) -> str:
        """Store one chunk and return its receipt."""
        ...

    async def list_completed_chunks(self, bucket: str, key: str, token: str) -> List[ChunkPart]:
        """Authoritative list of stored chunks, ascending by index."""
        ...

    async def finalize(
        self,
        bucket: str,
        key: str,
        token: str,
        parts: Sequence[ChunkPart]
    ) -> str:
        """Assemble the parts into one object and return its key."""
        ...

    async def abort_session(self, bucket: str, key: str, token: str) -> None:
        """Discard a multipart upload and any parts stored under it."""
        ...

    def public_url(self, bucket: str, key: str) -> str:
        """URL under which the object is served."""
        ...

    async def put_whole(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream"
    ) -> None:
        """Store a complete object in one request."""
        ...

"""
Error kinds raised by the upload subsystem
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Explicit failure kinds; callers branch on these, not on exception types."""

    # Caller contract errors
    INVALID_ARGUMENT = "invalid_argument"
    CHUNK_INDEX_OUT_OF_RANGE = "chunk_index_out_of_range"
    SESSION_NOT_FOUND = "session_not_found"
    FILE_TOO_LARGE = "file_too_large"

    # Conflicts
    DUPLICATE_FINGERPRINT = "duplicate_fingerprint"

    # Not fatal, session stays open
    INCOMPLETE_UPLOAD = "incomplete_upload"

    # Storage backend
    BACKEND_UNAVAILABLE = "backend_unavailable"
    BACKEND_SESSION_GONE = "backend_session_gone"
    BACKEND_REJECTED = "backend_rejected"

    # Terminal failure of a session at finalize time
    UPLOAD_FAILED = "upload_failed"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.CHUNK_INDEX_OUT_OF_RANGE: 400,
    ErrorKind.SESSION_NOT_FOUND: 404,
    ErrorKind.FILE_TOO_LARGE: 413,
    ErrorKind.DUPLICATE_FINGERPRINT: 409,
    ErrorKind.INCOMPLETE_UPLOAD: 409,
    ErrorKind.BACKEND_UNAVAILABLE: 503,
    ErrorKind.BACKEND_SESSION_GONE: 502,
    ErrorKind.BACKEND_REJECTED: 502,
    ErrorKind.UPLOAD_FAILED: 500,
}


class UploadError(Exception):
    """
    Failure of an upload operation.

    Args:
        kind: What went wrong
        message: Human readable description
        details: Extra payload for the caller (e.g. missing chunk indices)
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND.get(self.kind, 500)

    def __repr__(self) -> str:
        return f"<UploadError(kind={self.kind.value}, message='{self.message}')>"

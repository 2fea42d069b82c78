"""
Core functionality for the S3 Resumable Upload API
"""

from app.core.exceptions import ErrorKind, UploadError
from app.core.middleware import add_cors_middleware, add_security_middleware

__all__ = [
    "ErrorKind",
    "UploadError",
    "add_cors_middleware",
    "add_security_middleware"
]

"""
Middleware for CORS, trusted hosts, request logging and upload size
"""

import logging
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import get_settings

settings = get_settings()

# Use a custom logger name instead of "uvicorn.access" to avoid conflicts
logger = logging.getLogger("app.middleware")

# Multipart form overhead allowed on top of the payload
FORM_OVERHEAD_BYTES = 64 * 1024


def add_cors_middleware(app: FastAPI) -> None:
    """
    Add CORS middleware to FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization",
            "Content-Type",
            "X-Requested-With",
            "Accept",
            "Origin",
            "User-Agent"
        ],
        max_age=600,  # 10 minutes
    )


def add_security_middleware(app: FastAPI) -> None:
    """
    Add trusted host middleware to FastAPI app.

    Args:
        app: FastAPI application instance
    """
    # In debug mode, allow all hosts
    allowed_hosts = ["*"] if settings.debug else settings.allowed_hosts

    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=allowed_hosts
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        logger.info(f"Request: {request.method} {request.url}")

        response: Response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"Response: {response.status_code} | "
            f"Time: {process_time:.4f}s | "
            f"Size: {response.headers.get('content-length', 'unknown')} bytes"
        )

        response.headers["X-Process-Time"] = str(process_time)

        return response


def add_request_logging_middleware(app: FastAPI) -> None:
    """
    Add request logging middleware.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(RequestLoggingMiddleware)


def upload_size_limit(path: str) -> int:
    """Largest request body accepted for an upload path."""
    if path.endswith("/multipart/part"):
        return settings.max_chunk_size_bytes + FORM_OVERHEAD_BYTES
    return settings.s3_multipart_threshold + FORM_OVERHEAD_BYTES


class UploadSizeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Reject oversized bodies before they are read
        if request.method == "POST" and "/upload" in request.url.path:
            content_length = request.headers.get("content-length")
            if content_length and content_length.isdigit():
                max_size = upload_size_limit(request.url.path)
                if int(content_length) > max_size:
                    return JSONResponse(
                        status_code=413,
                        content={
                            "detail": f"Request too large. Maximum size: {max_size} bytes"
                        }
                    )

        return await call_next(request)


def add_file_size_middleware(app: FastAPI) -> None:
    """
    Add middleware to reject oversized upload requests.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(UploadSizeMiddleware)

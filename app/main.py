"""
Main FastAPI application for the S3 Resumable Upload API
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.config import get_settings, validate_required_for_production
from app.database import init_database, close_database
from app.core.exceptions import ErrorKind, UploadError
from app.core.middleware import (
    add_cors_middleware,
    add_security_middleware,
    add_request_logging_middleware,
    add_file_size_middleware
)
from app.schemas.upload import ApiInfo, HealthCheck, ResultCode

# Import API routers
from app.api import upload

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# boto3 is chatty at DEBUG
logging.getLogger("botocore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info("Starting S3 Resumable Upload API...")

    for problem in validate_required_for_production():
        logger.warning(problem)

    # Initialize database
    try:
        await init_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info("Shutting down S3 Resumable Upload API...")

    try:
        await close_database()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during database shutdown: {e}")

    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Resumable chunked uploads to S3-compatible storage",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)


# Add custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Custom handler for request validation errors (422).
    Logs the validation errors for debugging.
    """
    logger.warning(f"Request validation failed for {request.method} {request.url}")
    logger.warning(f"Validation errors: {exc.errors()}")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": jsonable_errors(exc)
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without the non-serializable context objects."""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in exc.errors()
    ]


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Custom handler for HTTP exceptions.
    """
    if exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code} error for {request.method} {request.url}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(UploadError)
async def upload_exception_handler(request: Request, exc: UploadError):
    """
    Render upload failures with their kind and payload.
    """
    if exc.status_code >= 500:
        logger.error(f"{exc.kind.value} for {request.method} {request.url}: {exc.message}")
    else:
        logger.warning(f"{exc.kind.value} for {request.method} {request.url}: {exc.message}")

    content = {
        "error": exc.kind.value,
        "detail": exc.message,
        **exc.details
    }
    if exc.kind == ErrorKind.UPLOAD_FAILED:
        content["code"] = ResultCode.UPLOAD_FILE_FAILED.value

    return JSONResponse(status_code=exc.status_code, content=content)


# Add middleware
add_cors_middleware(app)
add_security_middleware(app)
add_request_logging_middleware(app)
add_file_size_middleware(app)

# Include API routes
app.include_router(
    upload.router,
    prefix="/api/v1/upload",
    tags=["upload"]
)


@app.get("/")
async def root() -> dict:
    """
    Root endpoint with API information.

    Returns:
        dict: Basic API information
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.version,
        "docs": "/docs",
        "status": "operational"
    }


@app.get("/api/v1/health", response_model=HealthCheck)
async def health_check() -> HealthCheck:
    """
    Health check endpoint.

    Returns:
        HealthCheck: Application health status
    """
    # Check database connection
    database_connected = True
    try:
        from app.database import engine
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_connected = False

    return HealthCheck(
        status="healthy" if database_connected else "unhealthy",
        timestamp=datetime.now(),
        version=settings.version,
        database_connected=database_connected,
        s3_configured=settings.s3_configured
    )


@app.get("/api/v1/info", response_model=ApiInfo)
async def api_info() -> ApiInfo:
    """
    API information endpoint.

    Returns:
        ApiInfo: Detailed API information
    """
    return ApiInfo(
        name=settings.app_name,
        version=settings.version
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )

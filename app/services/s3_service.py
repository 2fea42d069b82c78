"""
S3 gateway for multipart and single-shot uploads with AWS S3
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings, get_settings
from app.core.exceptions import ErrorKind, UploadError
from app.services.storage_gateway import ChunkPart

logger = logging.getLogger(__name__)

# Error codes meaning the multipart upload can never complete
UNRECOVERABLE_ERROR_CODES = {
    "NoSuchUpload",
    "NoSuchBucket",
    "InvalidPart",
    "InvalidPartOrder",
    "EntityTooSmall",
}

# Error codes worth retrying regardless of the HTTP status
TRANSIENT_ERROR_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequests",
    "RequestTimeout",
    "InternalError",
    "ServiceUnavailable",
}


def _translate_error(error: Exception, action: str) -> UploadError:
    """
    Classify an SDK failure.

    Throttling, 5xx responses and connection-level errors are transient.
    Codes that mean the upload session is unusable map to
    BACKEND_SESSION_GONE, and any other 4xx is a permanent rejection.

    Args:
        error: botocore exception
        action: What the gateway was doing, for the message

    Returns:
        UploadError with the matching kind
    """
    if not isinstance(error, ClientError):
        return UploadError(ErrorKind.BACKEND_UNAVAILABLE, f"S3 {action} failed: {str(error)}")

    code = error.response.get("Error", {}).get("Code", "")
    http_status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    details = {"s3_error_code": code}

    if code in UNRECOVERABLE_ERROR_CODES:
        return UploadError(ErrorKind.BACKEND_SESSION_GONE, f"S3 {action} failed: {code}", details)
    if code in TRANSIENT_ERROR_CODES or http_status >= 500 or http_status == 429:
        return UploadError(ErrorKind.BACKEND_UNAVAILABLE, f"S3 {action} failed: {str(error)}", details)
    return UploadError(ErrorKind.BACKEND_REJECTED, f"S3 {action} rejected: {str(error)}", details)


class S3Gateway:
    """Process-wide S3 client exposing multipart-upload primitives."""

    def __init__(self, settings: Optional[Settings] = None, client: Any = None):
        """
        Initialize S3 client with configuration.

        Args:
            settings: Application settings (defaults to the global settings)
            client: Pre-built boto3 S3 client, mainly for tests
        """
        self.settings = settings or get_settings()

        if not self.settings.s3_bucket_name:
            raise ValueError("S3 bucket name must be configured")

        if client is None:
            if not self.settings.s3_configured:
                raise ValueError("AWS credentials and S3 bucket name must be configured")

            # Configure boto3 with retry and timeout settings
            config = Config(
                region_name=self.settings.aws_region,
                retries={'max_attempts': 3, 'mode': 'adaptive'},
                max_pool_connections=self.settings.s3_max_pool_connections
            )

            client = boto3.client(
                's3',
                aws_access_key_id=self.settings.aws_access_key_id,
                aws_secret_access_key=self.settings.aws_secret_access_key,
                endpoint_url=self.settings.s3_endpoint_url,
                config=config
            )

        self.s3_client = client
        self.bucket_name = self.settings.s3_bucket_name

    async def begin_session(self, bucket: str, key: str, content_type: str) -> str:
        """
        Initiate a multipart upload.

        Args:
            bucket: Target bucket
            key: Object key the parts will be assembled into
            content_type: MIME type stored on the final object

        Returns:
            S3 UploadId
        """
        try:
            response = await asyncio.to_thread(
                self.s3_client.create_multipart_upload,
                Bucket=bucket,
                Key=key,
                ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "create multipart upload")

        upload_id = response['UploadId']
        logger.info(f"Opened multipart upload {upload_id} for s3://{bucket}/{key}")
        return upload_id

    async def put_chunk(
        self,
        token: str,
        bucket: str,
        key: str,
        chunk_index: int,
        data: bytes
    ) -> str:
        """
        Upload one part of a multipart upload.

        Args:
            token: S3 UploadId
            bucket: Target bucket
            key: Object key
            chunk_index: 1-based part number
            data: Part content

        Returns:
            ETag of the stored part
        """
        try:
            response = await asyncio.to_thread(
                self.s3_client.upload_part,
                Bucket=bucket,
                Key=key,
                UploadId=token,
                PartNumber=chunk_index,
                Body=data
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, f"upload part {chunk_index}")

        return response['ETag']

    async def list_completed_chunks(self, bucket: str, key: str, token: str) -> List[ChunkPart]:
        """
        List every part S3 holds for a multipart upload.

        Args:
            bucket: Target bucket
            key: Object key
            token: S3 UploadId

        Returns:
            Parts ascending by part number
        """
        parts: Dict[int, ChunkPart] = {}
        request: Dict[str, Any] = {'Bucket': bucket, 'Key': key, 'UploadId': token}

        try:
            while True:
                response = await asyncio.to_thread(self.s3_client.list_parts, **request)

                for part in response.get('Parts', []):
                    parts[part['PartNumber']] = ChunkPart(
                        index=part['PartNumber'],
                        receipt=part['ETag']
                    )

                if not response.get('IsTruncated'):
                    break
                request['PartNumberMarker'] = response['NextPartNumberMarker']
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "list parts")

        return [parts[index] for index in sorted(parts)]

    async def finalize(
        self,
        bucket: str,
        key: str,
        token: str,
        parts: Sequence[ChunkPart]
    ) -> str:
        """
        Complete a multipart upload.

        Args:
            bucket: Target bucket
            key: Object key
            token: S3 UploadId
            parts: Parts in ascending order

        Returns:
            Key of the assembled object
        """
        try:
            response = await asyncio.to_thread(
                self.s3_client.complete_multipart_upload,
                Bucket=bucket,
                Key=key,
                UploadId=token,
                MultipartUpload={
                    'Parts': [{'PartNumber': p.index, 'ETag': p.receipt} for p in parts]
                }
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "complete multipart upload")

        logger.info(f"Completed multipart upload {token} into s3://{bucket}/{key}")
        return response.get('Key', key)

    async def abort_session(self, bucket: str, key: str, token: str) -> None:
        """
        Abort a multipart upload so S3 drops its stored parts.

        Args:
            bucket: Target bucket
            key: Object key
            token: S3 UploadId
        """
        try:
            await asyncio.to_thread(
                self.s3_client.abort_multipart_upload,
                Bucket=bucket,
                Key=key,
                UploadId=token
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "abort multipart upload")

    def public_url(self, bucket: str, key: str) -> str:
        """
        Build the public URL of an object.

        Args:
            bucket: Bucket name
            key: Object key

        Returns:
            URL string
        """
        quoted_key = quote(key, safe="/")
        base_url = self.settings.s3_public_base_url or self.settings.s3_endpoint_url
        if base_url:
            return f"{base_url.rstrip('/')}/{bucket}/{quoted_key}"
        return f"https://{bucket}.s3.{self.settings.aws_region}.amazonaws.com/{quoted_key}"

    async def put_whole(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream"
    ) -> None:
        """
        Upload a complete object in one request.

        Args:
            bucket: Target bucket
            key: Object key
            data: Object content
            content_type: MIME type
        """
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type
            )
        except (ClientError, BotoCoreError) as e:
            raise _translate_error(e, "upload")


# Global gateway instance
_gateway: Optional[S3Gateway] = None


def get_storage_gateway() -> S3Gateway:
    """
    Get the shared S3 gateway (singleton pattern).

    Returns:
        S3Gateway instance
    """
    global _gateway
    if _gateway is None:
        _gateway = S3Gateway()
    return _gateway

"""
Tests for the S3 gateway using botocore's Stubber.
"""

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

from app.config import Settings
from app.core.exceptions import ErrorKind, UploadError
from app.services.s3_service import S3Gateway, _translate_error
from app.services.storage_gateway import ChunkPart

BUCKET = "test-bucket"
KEY = "2024/05/01/clip_abc.mov"


@pytest.fixture
def s3_client():
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing"
    )


@pytest.fixture
def stubber(s3_client):
    with Stubber(s3_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def s3_gateway(s3_client):
    settings = Settings(s3_bucket_name=BUCKET, aws_region="us-east-1")
    return S3Gateway(settings=settings, client=s3_client)


class TestS3Gateway:
    """Multipart primitives against a stubbed client."""

    def test_requires_bucket(self, s3_client):
        with pytest.raises(ValueError):
            S3Gateway(settings=Settings(s3_bucket_name=""), client=s3_client)

    @pytest.mark.asyncio
    async def test_begin_session(self, s3_gateway, stubber):
        stubber.add_response(
            "create_multipart_upload",
            {"Bucket": BUCKET, "Key": KEY, "UploadId": "upload-123"},
            {"Bucket": BUCKET, "Key": KEY, "ContentType": "video/quicktime"}
        )

        token = await s3_gateway.begin_session(BUCKET, KEY, "video/quicktime")

        assert token == "upload-123"

    @pytest.mark.asyncio
    async def test_put_chunk_returns_etag(self, s3_gateway, stubber):
        stubber.add_response(
            "upload_part",
            {"ETag": '"abc123"'},
            {"Bucket": BUCKET, "Key": KEY, "UploadId": "upload-123", "PartNumber": 2, "Body": ANY}
        )

        etag = await s3_gateway.put_chunk("upload-123", BUCKET, KEY, 2, b"chunk")

        assert etag == '"abc123"'

    @pytest.mark.asyncio
    async def test_list_completed_chunks_follows_pagination(self, s3_gateway, stubber):
        stubber.add_response(
            "list_parts",
            {
                "Parts": [
                    {"PartNumber": 3, "ETag": '"e3"'},
                    {"PartNumber": 1, "ETag": '"e1"'},
                ],
                "IsTruncated": True,
                "NextPartNumberMarker": 3,
            },
            {"Bucket": BUCKET, "Key": KEY, "UploadId": "upload-123"}
        )
        stubber.add_response(
            "list_parts",
            {
                "Parts": [{"PartNumber": 2, "ETag": '"e2"'}],
                "IsTruncated": False,
            },
            {"Bucket": BUCKET, "Key": KEY, "UploadId": "upload-123", "PartNumberMarker": 3}
        )

        parts = await s3_gateway.list_completed_chunks(BUCKET, KEY, "upload-123")

        assert parts == [
            ChunkPart(index=1, receipt='"e1"'),
            ChunkPart(index=2, receipt='"e2"'),
            ChunkPart(index=3, receipt='"e3"'),
        ]

    @pytest.mark.asyncio
    async def test_list_on_empty_session(self, s3_gateway, stubber):
        stubber.add_response(
            "list_parts",
            {"IsTruncated": False},
            {"Bucket": BUCKET, "Key": KEY, "UploadId": "upload-123"}
        )

        assert await s3_gateway.list_completed_chunks(BUCKET, KEY, "upload-123") == []

    @pytest.mark.asyncio
    async def test_finalize_sends_parts_in_order(self, s3_gateway, stubber):
        stubber.add_response(
            "complete_multipart_upload",
            {"Bucket": BUCKET, "Key": KEY, "ETag": '"final"'},
            {
                "Bucket": BUCKET,
                "Key": KEY,
                "UploadId": "upload-123",
                "MultipartUpload": {
                    "Parts": [
                        {"PartNumber": 1, "ETag": '"e1"'},
                        {"PartNumber": 2, "ETag": '"e2"'},
                    ]
                },
            }
        )

        final_key = await s3_gateway.finalize(
            BUCKET, KEY, "upload-123",
            [ChunkPart(index=1, receipt='"e1"'), ChunkPart(index=2, receipt='"e2"')]
        )

        assert final_key == KEY

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["NoSuchUpload", "InvalidPart", "EntityTooSmall"])
    async def test_unrecoverable_errors(self, s3_gateway, stubber, code):
        stubber.add_client_error("list_parts", service_error_code=code, http_status_code=400)

        with pytest.raises(UploadError) as exc_info:
            await s3_gateway.list_completed_chunks(BUCKET, KEY, "upload-123")

        assert exc_info.value.kind == ErrorKind.BACKEND_SESSION_GONE
        assert exc_info.value.details["s3_error_code"] == code

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,status", [
        ("SlowDown", 503),
        ("InternalError", 500),
        ("ServiceUnavailable", 503),
        ("RequestTimeout", 400),
    ])
    async def test_transient_errors(self, s3_gateway, stubber, code, status):
        stubber.add_client_error(
            "complete_multipart_upload", service_error_code=code, http_status_code=status
        )

        with pytest.raises(UploadError) as exc_info:
            await s3_gateway.finalize(BUCKET, KEY, "upload-123", [ChunkPart(index=1, receipt='"e1"')])

        assert exc_info.value.kind == ErrorKind.BACKEND_UNAVAILABLE
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,status", [
        ("AccessDenied", 403),
        ("InvalidAccessKeyId", 403),
        ("InvalidArgument", 400),
    ])
    async def test_permanent_rejections_are_not_retryable(self, s3_gateway, stubber, code, status):
        stubber.add_client_error("upload_part", service_error_code=code, http_status_code=status)

        with pytest.raises(UploadError) as exc_info:
            await s3_gateway.put_chunk("upload-123", BUCKET, KEY, 2, b"chunk")

        assert exc_info.value.kind == ErrorKind.BACKEND_REJECTED
        assert exc_info.value.status_code == 502
        assert exc_info.value.details["s3_error_code"] == code

    def test_connection_errors_are_transient(self):
        error = _translate_error(EndpointConnectionError(endpoint_url="http://minio:9000"), "upload")

        assert error.kind == ErrorKind.BACKEND_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_abort_session(self, s3_gateway, stubber):
        stubber.add_response(
            "abort_multipart_upload",
            {},
            {"Bucket": BUCKET, "Key": KEY, "UploadId": "upload-123"}
        )

        await s3_gateway.abort_session(BUCKET, KEY, "upload-123")

    @pytest.mark.asyncio
    async def test_put_whole(self, s3_gateway, stubber):
        stubber.add_response(
            "put_object",
            {"ETag": '"whole"'},
            {"Bucket": BUCKET, "Key": "single/a.txt", "Body": ANY, "ContentType": "text/plain"}
        )

        await s3_gateway.put_whole(BUCKET, "single/a.txt", b"hello", "text/plain")


class TestPublicUrl:
    """Object URL construction."""

    def test_aws_virtual_host_url(self, s3_client):
        gateway = S3Gateway(Settings(s3_bucket_name=BUCKET, aws_region="eu-west-1"), client=s3_client)

        assert gateway.public_url(BUCKET, "a/b c.txt") == (
            "https://test-bucket.s3.eu-west-1.amazonaws.com/a/b%20c.txt"
        )

    def test_custom_endpoint_url(self, s3_client):
        settings = Settings(s3_bucket_name=BUCKET, s3_endpoint_url="http://minio:9000/")
        gateway = S3Gateway(settings, client=s3_client)

        assert gateway.public_url(BUCKET, "k.bin") == "http://minio:9000/test-bucket/k.bin"

    def test_public_base_url_wins(self, s3_client):
        settings = Settings(
            s3_bucket_name=BUCKET,
            s3_endpoint_url="http://minio:9000",
            s3_public_base_url="https://files.example.com"
        )
        gateway = S3Gateway(settings, client=s3_client)

        assert gateway.public_url(BUCKET, "k.bin") == "https://files.example.com/test-bucket/k.bin"

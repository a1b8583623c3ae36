"""Tests for the S3 backend adapter."""

import base64
import hashlib
import io
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from botocore import UNSIGNED
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    IncompleteReadError,
    ReadTimeoutError,
    ResponseStreamingError,
)

from storage_cli.backends.s3 import S3Backend, build_s3_client, translate_error
from storage_cli.download import DownloadOrchestrator, FileSink
from storage_cli.errors import (
    CapabilityNotSupportedError,
    NotFoundError,
    ReadOnlyError,
    StorageError,
    TransientBackendError,
)
from storage_cli.models import CompletedPart, MultipartSession, S3Config, TransferSettings


def client_error(code: str, status: int, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


@pytest.fixture
def s3_config() -> S3Config:
    """Create a sample static-credentials config for testing."""
    return S3Config(
        bucket_name="test-bucket",
        access_key_id="test-access-key",
        secret_access_key="test-secret-key",
        region="eu-central-1",
        host="s3.example.com",
        addressing_style="virtual",
    )


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def backend(s3_config, client) -> S3Backend:
    return S3Backend(s3_config, client=client)


class TestBuildS3Client:
    """Tests for build_s3_client function."""

    @patch("storage_cli.backends.s3.boto3.client")
    def test_correct_endpoint_and_credentials(self, mock_boto_client: MagicMock, s3_config: S3Config):
        """Verify endpoint, credentials, and region are passed to boto3."""
        build_s3_client(s3_config)

        mock_boto_client.assert_called_once()
        assert mock_boto_client.call_args.args == ("s3",)
        call_kwargs = mock_boto_client.call_args.kwargs

        assert call_kwargs["endpoint_url"] == "https://s3.example.com"
        assert call_kwargs["aws_access_key_id"] == "test-access-key"
        assert call_kwargs["aws_secret_access_key"] == "test-secret-key"
        assert call_kwargs["region_name"] == "eu-central-1"
        assert call_kwargs["verify"] is True

    @patch("storage_cli.backends.s3.boto3.client")
    def test_addressing_style_and_signature(self, mock_boto_client: MagicMock, s3_config: S3Config):
        """Verify addressing style and SigV4 are configured."""
        build_s3_client(s3_config)

        config = mock_boto_client.call_args.kwargs["config"]
        assert config.s3["addressing_style"] == "virtual"
        assert config.signature_version == "s3v4"

    @patch("storage_cli.backends.s3.boto3.client")
    def test_env_or_profile_uses_default_chain(self, mock_boto_client: MagicMock):
        build_s3_client(S3Config(bucket_name="b", credentials_source="env_or_profile"))

        call_kwargs = mock_boto_client.call_args.kwargs
        assert "aws_access_key_id" not in call_kwargs
        assert call_kwargs["endpoint_url"] is None

    @patch("storage_cli.backends.s3.boto3.client")
    def test_anonymous_client_is_unsigned(self, mock_boto_client: MagicMock):
        build_s3_client(S3Config(bucket_name="b", credentials_source="none"))

        config = mock_boto_client.call_args.kwargs["config"]
        assert config.signature_version is UNSIGNED

    @patch("storage_cli.backends.s3.boto3.client")
    def test_checksums_only_when_required(self, mock_boto_client: MagicMock, s3_config: S3Config):
        """Providers that reject trailing checksums get them only when required."""
        s3_config.request_checksum_when_required = True

        build_s3_client(s3_config)

        config = mock_boto_client.call_args.kwargs["config"]
        assert config.request_checksum_calculation == "when_required"
        assert config.response_checksum_validation == "when_required"


class TestTranslateError:
    """Tests for translate_error function."""

    @pytest.mark.parametrize("code, status", [("NoSuchKey", 404), ("404", 404), ("AccessDenied", 404)])
    def test_not_found(self, code, status):
        error = translate_error(client_error(code, status), "key")
        assert isinstance(error, NotFoundError)
        assert error.key == "key"

    def test_not_implemented(self):
        error = translate_error(client_error("NotImplemented", 501, "UploadPartCopy"))
        assert isinstance(error, CapabilityNotSupportedError)

    @pytest.mark.parametrize(
        "code, status",
        [("SlowDown", 503), ("Throttling", 400), ("TooManyRequests", 429), ("InternalError", 500), ("Weird", 502)],
    )
    def test_transient(self, code, status):
        assert isinstance(translate_error(client_error(code, status)), TransientBackendError)

    def test_connection_error_is_transient(self):
        error = EndpointConnectionError(endpoint_url="https://s3.example.com")
        assert isinstance(translate_error(error), TransientBackendError)

    def test_other_client_errors_are_permanent(self):
        error = translate_error(client_error("AccessDenied", 403))
        assert type(error) is StorageError

    def test_unknown_exception_returned_unchanged(self):
        original = ValueError("nope")
        assert translate_error(original) is original


class TestObjectOperations:
    """Tests for single-object operations."""

    def test_stat_object(self, backend, client):
        modified = datetime(2024, 1, 1, tzinfo=timezone.utc)
        client.head_object.return_value = {
            "ContentLength": 42,
            "ETag": '"5d41402abc4b2a76b9719d911017c592"',
            "LastModified": modified,
        }

        info = backend.stat_object("key")

        client.head_object.assert_called_once_with(Bucket="test-bucket", Key="key")
        assert info.size == 42
        assert info.last_modified == modified
        assert info.content_md5 == bytes.fromhex("5d41402abc4b2a76b9719d911017c592")

    def test_stat_missing_object(self, backend, client):
        client.head_object.side_effect = client_error("404", 404)

        with pytest.raises(NotFoundError):
            backend.stat_object("missing")

    def test_put_object_sends_md5_and_returns_etag_digest(self, backend, client):
        digest = hashlib.md5(b"data").digest()
        client.put_object.return_value = {"ETag": f'"{digest.hex()}"'}
        body = MagicMock()

        remote = backend.put_object("key", body, digest)

        assert remote == digest
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Body"] is body
        assert kwargs["ContentMD5"] == base64.b64encode(digest).decode("ascii")

    def test_put_object_with_kms_reports_no_checksum(self, s3_config, client):
        s3_config.server_side_encryption = "aws:kms"
        s3_config.sse_kms_key_id = "key-id"
        client.put_object.return_value = {"ETag": '"0123456789abcdef0123456789abcdef"'}

        remote = S3Backend(s3_config, client=client).put_object("key", MagicMock(), b"\x00" * 16)

        assert remote is None
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["ServerSideEncryption"] == "aws:kms"
        assert kwargs["SSEKMSKeyId"] == "key-id"

    def test_read_only_rejects_writes(self, client):
        backend = S3Backend(S3Config(bucket_name="b", credentials_source="none"), client=client)

        with pytest.raises(ReadOnlyError, match="read only"):
            backend.put_object("key", MagicMock(), b"\x00" * 16)

        client.put_object.assert_not_called()

    def test_get_object_range(self, backend, client):
        body = MagicMock()
        body.read.return_value = b"0123456789"
        client.get_object.return_value = {"Body": body}

        stream = backend.get_object_range("key", 10, 19)

        assert stream.read(10) == b"0123456789"
        body.read.assert_called_once_with(10)
        client.get_object.assert_called_once_with(Bucket="test-bucket", Key="key", Range="bytes=10-19")

    def test_delete_missing_object_is_success(self, backend, client):
        client.delete_object.side_effect = client_error("NoSuchKey", 404, "DeleteObject")
        backend.delete_object("missing")

    def test_delete_throttled_is_transient(self, backend, client):
        client.delete_object.side_effect = client_error("SlowDown", 503, "DeleteObject")
        with pytest.raises(TransientBackendError):
            backend.delete_object("key")

    def test_copy_object(self, backend, client):
        backend.copy_object("src", "dst")

        client.copy_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="dst",
            CopySource={"Bucket": "test-bucket", "Key": "src"},
        )

    def test_exists(self, backend, client):
        client.head_object.side_effect = [{"ContentLength": 1}, client_error("404", 404)]

        assert backend.exists("present") is True
        assert backend.exists("absent") is False


class TestBodyReadErrors:
    """Tests for failures raised while a ranged body is being read."""

    @pytest.mark.parametrize(
        "error",
        [
            ReadTimeoutError(endpoint_url="https://s3"),
            ConnectionClosedError(endpoint_url="https://s3"),
            ResponseStreamingError(error=ConnectionResetError("reset by peer")),
            IncompleteReadError(actual_bytes=3, expected_bytes=10),
        ],
    )
    def test_mid_body_errors_are_transient(self, backend, client, error):
        body = MagicMock()
        body.read.side_effect = error
        client.get_object.return_value = {"Body": body}

        stream = backend.get_object_range("key", 0, 9)

        with pytest.raises(TransientBackendError):
            stream.read(10)

    def test_close_closes_body(self, backend, client):
        body = MagicMock()
        client.get_object.return_value = {"Body": body}

        backend.get_object_range("key", 0, 9).close()

        body.close.assert_called_once_with()

    def test_download_retries_part_after_read_timeout(self, backend, client, tmp_path, sleeps):
        """A part whose body times out is fetched again within its own budget."""
        data = bytes(range(40))
        client.head_object.return_value = {"ContentLength": len(data), "ETag": '"multipart-1"'}
        attempts = {}

        def get_object(Bucket, Key, Range):
            start, end = (int(v) for v in Range[len("bytes="):].split("-"))
            attempts[start] = attempts.get(start, 0) + 1
            body = MagicMock()
            if attempts[start] == 1:
                body.read.side_effect = ReadTimeoutError(endpoint_url="https://s3")
            else:
                body.read.side_effect = io.BytesIO(data[start:end + 1]).read
            return {"Body": body}

        client.get_object.side_effect = get_object
        settings = TransferSettings(download_part_size=16, download_concurrency=2)
        target = tmp_path / "out.bin"

        with FileSink(str(target)) as sink:
            DownloadOrchestrator(backend, settings).download("key", sink)

        assert target.read_bytes() == data
        assert attempts == {0: 2, 16: 2, 32: 2}
        assert sleeps == [1.0, 1.0, 1.0]


class TestFolderName:
    """Tests for folder_name key prefixing."""

    @pytest.fixture
    def folder_backend(self, s3_config, client):
        s3_config.folder_name = "backups"
        return S3Backend(s3_config, client=client)

    def test_keys_prefixed(self, folder_backend, client):
        client.head_object.return_value = {"ContentLength": 1}

        folder_backend.stat_object("file")

        assert client.head_object.call_args.kwargs["Key"] == "backups/file"

    def test_listing_strips_prefix(self, folder_backend, client):
        client.list_objects_v2.return_value = {
            "Contents": [{"Key": "backups/a"}, {"Key": "backups/b"}],
            "IsTruncated": False,
        }

        page = folder_backend.list_page("", None)

        assert page.keys == ["a", "b"]
        assert client.list_objects_v2.call_args.kwargs["Prefix"] == "backups/"


class TestListPage:
    """Tests for list_page pagination."""

    def test_truncated_page_returns_cursor(self, backend, client):
        client.list_objects_v2.return_value = {
            "Contents": [{"Key": "a"}],
            "IsTruncated": True,
            "NextContinuationToken": "token-2",
        }

        page = backend.list_page("dir/", None)

        assert page.keys == ["a"]
        assert page.next_cursor == "token-2"
        client.list_objects_v2.assert_called_once_with(Bucket="test-bucket", Prefix="dir/")

    def test_cursor_passed_back(self, backend, client):
        client.list_objects_v2.return_value = {"IsTruncated": False}

        page = backend.list_page("", "token-2")

        assert page.keys == []
        assert page.next_cursor is None
        client.list_objects_v2.assert_called_once_with(Bucket="test-bucket", ContinuationToken="token-2")


class TestMultipart:
    """Tests for multipart session calls."""

    def test_upload_session_lifecycle(self, backend, client):
        client.create_multipart_upload.return_value = {"UploadId": "upload-1"}
        client.upload_part.return_value = {"ETag": '"0123456789abcdef0123456789abcdef"'}

        session = backend.start_multipart_upload("dst")
        etag, remote = backend.upload_part(session, 1, b"data", b"\x01" * 16)
        backend.complete_multipart_upload(session, [CompletedPart(part_number=1, etag=etag)])

        assert session.upload_id == "upload-1"
        assert remote == bytes.fromhex("0123456789abcdef0123456789abcdef")
        client.complete_multipart_upload.assert_called_once_with(
            Bucket="test-bucket",
            Key="dst",
            UploadId="upload-1",
            MultipartUpload={"Parts": [{"ETag": etag, "PartNumber": 1}]},
        )

    def test_copy_part_range(self, backend, client):
        client.upload_part_copy.return_value = {"CopyPartResult": {"ETag": '"etag-1"'}}
        session = MultipartSession(upload_id="upload-1", destination_key="dst")

        etag = backend.copy_part_range(session, 1, "src", 0, 99)

        assert etag == '"etag-1"'
        kwargs = client.upload_part_copy.call_args.kwargs
        assert kwargs["CopySourceRange"] == "bytes=0-99"
        assert kwargs["CopySource"] == {"Bucket": "test-bucket", "Key": "src"}

    def test_unsupported_part_copy(self, backend, client):
        client.upload_part_copy.side_effect = client_error("NotImplemented", 501, "UploadPartCopy")
        session = MultipartSession(upload_id="upload-1", destination_key="dst")

        with pytest.raises(CapabilityNotSupportedError):
            backend.copy_part_range(session, 1, "src", 0, 99)

    def test_abort(self, backend, client):
        session = MultipartSession(upload_id="upload-1", destination_key="dst")

        backend.abort_multipart_copy(session)

        client.abort_multipart_upload.assert_called_once_with(
            Bucket="test-bucket", Key="dst", UploadId="upload-1"
        )


class TestSign:
    """Tests for presigned URLs."""

    def test_get(self, backend, client):
        client.generate_presigned_url.return_value = "https://signed"

        assert backend.sign("key", "get", timedelta(hours=1)) == "https://signed"
        client.generate_presigned_url.assert_called_once_with(
            ClientMethod="get_object",
            Params={"Bucket": "test-bucket", "Key": "key"},
            ExpiresIn=3600,
        )

    def test_put(self, backend, client):
        backend.sign("key", "PUT", timedelta(minutes=5))
        assert client.generate_presigned_url.call_args.kwargs["ClientMethod"] == "put_object"

    def test_unknown_action(self, backend):
        with pytest.raises(StorageError, match="action not implemented"):
            backend.sign("key", "delete", timedelta(hours=1))


class TestEnsureStorageExists:
    """Tests for ensure_storage_exists."""

    def test_existing_bucket_not_created(self, backend, client):
        backend.ensure_storage_exists()
        client.create_bucket.assert_not_called()

    def test_missing_bucket_created_in_region(self, backend, client):
        client.head_bucket.side_effect = client_error("404", 404, "HeadBucket")

        backend.ensure_storage_exists()

        client.create_bucket.assert_called_once_with(
            Bucket="test-bucket",
            CreateBucketConfiguration={"LocationConstraint": "eu-central-1"},
        )

    def test_us_east_1_has_no_location_constraint(self, client):
        client.head_bucket.side_effect = client_error("404", 404, "HeadBucket")
        backend = S3Backend(S3Config(bucket_name="b", access_key_id="k", secret_access_key="s"), client=client)

        backend.ensure_storage_exists()

        client.create_bucket.assert_called_once_with(Bucket="b")

    def test_race_with_other_creator_is_success(self, backend, client):
        client.head_bucket.side_effect = client_error("404", 404, "HeadBucket")
        client.create_bucket.side_effect = client_error("BucketAlreadyOwnedByYou", 409, "CreateBucket")

        backend.ensure_storage_exists()

    def test_head_failure_raises(self, backend, client):
        client.head_bucket.side_effect = client_error("AccessDenied", 403, "HeadBucket")

        with pytest.raises(StorageError, match="failed to check if bucket exists"):
            backend.ensure_storage_exists()


class TestClose:
    """Tests for close."""

    def test_close_closes_client(self, backend, client):
        backend.close()
        client.close.assert_called_once_with()

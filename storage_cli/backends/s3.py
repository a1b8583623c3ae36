"""S3 backend built on boto3.

Also serves S3-compatible providers (MinIO, Ceph, Alicloud OSS) through a
custom endpoint. The signature version is set to 's3v4', which every
supported provider accepts for both requests and presigned URLs.
"""

import base64
import logging
import re
from datetime import timedelta
from typing import BinaryIO, Optional, Sequence

import boto3
from botocore import UNSIGNED
from botocore.client import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    IncompleteReadError,
    ReadTimeoutError,
    ResponseStreamingError,
)

from storage_cli.backends.base import BlobBackend, TranslatedStream
from storage_cli.errors import (
    CapabilityNotSupportedError,
    NotFoundError,
    ReadOnlyError,
    StorageError,
    TransientBackendError,
)
from storage_cli.models import CompletedPart, ListPage, MultipartSession, ObjectInfo, S3Config

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
TRANSIENT_CODES = {
    "SlowDown", "Throttling", "ThrottlingException", "RequestTimeout",
    "InternalError", "ServiceUnavailable", "InternalServerError",
}
BUCKET_EXISTS_CODES = {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}

SDK_ERRORS = (
    ClientError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)

# Failures of a connection while a response body is being read
BODY_READ_ERRORS = (
    ReadTimeoutError,
    ConnectionClosedError,
    ResponseStreamingError,
    IncompleteReadError,
)

# A plain MD5 ETag; multipart and SSE-KMS ETags do not match
_MD5_ETAG = re.compile(r"^[0-9a-f]{32}$")


def build_s3_client(config: S3Config):
    """Build a boto3 S3 client for the given configuration.

    Args:
        config: S3 configuration containing endpoint, credentials,
               region, and addressing style.

    Returns:
        A boto3 S3 client configured for the provider.

    Note:
        Anonymous clients (``credentials_source: none``) sign nothing.
        With ``env_or_profile`` boto3's default credential chain is used.
    """
    config_kwargs = {
        "signature_version": UNSIGNED if config.read_only else "s3v4",
        "s3": {"addressing_style": config.addressing_style},
    }
    if config.request_checksum_when_required:
        config_kwargs["request_checksum_calculation"] = "when_required"
        config_kwargs["response_checksum_validation"] = "when_required"

    client_kwargs = {
        "endpoint_url": config.endpoint_url,
        "region_name": config.region,
        "use_ssl": config.use_ssl,
        "verify": config.ssl_verify_peer,
        "config": Config(**config_kwargs),
    }
    if config.credentials_source == "static":
        client_kwargs["aws_access_key_id"] = config.access_key_id
        client_kwargs["aws_secret_access_key"] = config.secret_access_key

    return boto3.client("s3", **client_kwargs)


def _error_code(error: ClientError) -> str:
    return (error.response.get("Error", {}) or {}).get("Code", "")


def _status_code(error: ClientError) -> Optional[int]:
    return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def translate_error(error: Exception, key: str = "") -> Exception:
    """Map a botocore exception onto the storage error taxonomy.

    Unknown errors are returned unchanged.
    """
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError) + BODY_READ_ERRORS):
        return TransientBackendError(str(error))
    if isinstance(error, ClientError):
        code = _error_code(error)
        status = _status_code(error)
        if code in NOT_FOUND_CODES or status == 404:
            return NotFoundError(key)
        if code == "NotImplemented" or status == 501:
            return CapabilityNotSupportedError(str(error))
        if code in TRANSIENT_CODES or status == 429:
            return TransientBackendError(str(error))
        if isinstance(status, int) and 500 <= status < 600:
            return TransientBackendError(str(error))
        return StorageError(str(error))
    return error


def _md5_from_etag(etag: Optional[str]) -> Optional[bytes]:
    value = (etag or "").strip('"').lower()
    if _MD5_ETAG.match(value):
        return bytes.fromhex(value)
    return None


class S3Backend(BlobBackend):
    """BlobBackend for S3 and S3-compatible object stores."""

    name = "s3"
    supports_multipart_upload = True

    def __init__(self, config: S3Config, client=None):
        self.config = config
        self.bucket = config.bucket_name
        self.client = client or build_s3_client(config)

    def close(self) -> None:
        self.client.close()

    # === Keys ===

    def _key(self, key: str) -> str:
        if self.config.folder_name:
            return f"{self.config.folder_name}/{key}"
        return key

    def _strip_folder(self, key: str) -> str:
        prefix = f"{self.config.folder_name}/" if self.config.folder_name else ""
        if prefix and key.startswith(prefix):
            return key[len(prefix):]
        return key

    def _require_write(self, operation: str) -> None:
        if self.config.read_only:
            raise ReadOnlyError(operation)

    def _encryption_params(self) -> dict:
        params = {}
        if self.config.server_side_encryption:
            params["ServerSideEncryption"] = self.config.server_side_encryption
        if self.config.sse_kms_key_id:
            params["SSEKMSKeyId"] = self.config.sse_kms_key_id
        return params

    def _reports_md5(self) -> bool:
        # ETags of SSE-KMS objects are not the MD5 of the content
        return self.config.server_side_encryption != "aws:kms" and not self.config.sse_kms_key_id

    # === Required operations ===

    def stat_object(self, key: str) -> ObjectInfo:
        try:
            response = self.client.head_object(Bucket=self.bucket, Key=self._key(key))
        except SDK_ERRORS as e:
            raise translate_error(e, key) from e
        etag = response.get("ETag", "")
        return ObjectInfo(
            key=key,
            size=response.get("ContentLength", 0),
            etag=etag,
            last_modified=response.get("LastModified"),
            content_md5=_md5_from_etag(etag) if self._reports_md5() else None,
        )

    def put_object(self, key: str, stream: BinaryIO, content_md5: bytes) -> Optional[bytes]:
        self._require_write("upload")
        try:
            response = self.client.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=stream,
                ContentMD5=base64.b64encode(content_md5).decode("ascii"),
                **self._encryption_params(),
            )
        except SDK_ERRORS as e:
            raise translate_error(e, key) from e
        if not self._reports_md5():
            return None
        return _md5_from_etag(response.get("ETag"))

    def get_object_range(self, key: str, start_byte: int, end_byte: int) -> BinaryIO:
        try:
            response = self.client.get_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Range=f"bytes={start_byte}-{end_byte}",
            )
        except SDK_ERRORS as e:
            raise translate_error(e, key) from e
        return TranslatedStream(response["Body"], key, BODY_READ_ERRORS, translate_error)

    def delete_object(self, key: str) -> None:
        self._require_write("delete")
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(key))
        except SDK_ERRORS as e:
            error = translate_error(e, key)
            if isinstance(error, NotFoundError):
                return
            raise error from e

    def list_page(self, prefix: str, cursor: Optional[str]) -> ListPage:
        params = {"Bucket": self.bucket}
        if prefix:
            params["Prefix"] = self._key(prefix)
        elif self.config.folder_name:
            params["Prefix"] = f"{self.config.folder_name}/"
        if cursor is not None:
            params["ContinuationToken"] = cursor

        try:
            response = self.client.list_objects_v2(**params)
        except SDK_ERRORS as e:
            raise translate_error(e) from e

        keys = [self._strip_folder(obj["Key"]) for obj in response.get("Contents", [])]
        next_cursor = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListPage(keys=keys, next_cursor=next_cursor)

    def copy_object(self, source_key: str, destination_key: str) -> None:
        self._require_write("copy")
        try:
            self.client.copy_object(
                Bucket=self.bucket,
                Key=self._key(destination_key),
                CopySource={"Bucket": self.bucket, "Key": self._key(source_key)},
                **self._encryption_params(),
            )
        except SDK_ERRORS as e:
            raise translate_error(e, source_key) from e

    # === Multipart sessions ===

    def _start_session(self, destination_key: str) -> MultipartSession:
        try:
            response = self.client.create_multipart_upload(
                Bucket=self.bucket,
                Key=self._key(destination_key),
                **self._encryption_params(),
            )
        except SDK_ERRORS as e:
            raise translate_error(e, destination_key) from e
        return MultipartSession(upload_id=response["UploadId"], destination_key=destination_key)

    def _complete_session(self, session: MultipartSession, ordered_parts: Sequence[CompletedPart]) -> None:
        try:
            self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=self._key(session.destination_key),
                UploadId=session.upload_id,
                MultipartUpload={
                    "Parts": [{"ETag": p.etag, "PartNumber": p.part_number} for p in ordered_parts]
                },
            )
        except SDK_ERRORS as e:
            raise translate_error(e, session.destination_key) from e

    def _abort_session(self, session: MultipartSession) -> None:
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket,
                Key=self._key(session.destination_key),
                UploadId=session.upload_id,
            )
        except SDK_ERRORS as e:
            raise translate_error(e, session.destination_key) from e

    def start_multipart_copy(self, destination_key: str) -> MultipartSession:
        self._require_write("copy")
        return self._start_session(destination_key)

    def copy_part_range(
        self,
        session: MultipartSession,
        part_number: int,
        source_key: str,
        start_byte: int,
        end_byte: int,
    ) -> str:
        try:
            response = self.client.upload_part_copy(
                Bucket=self.bucket,
                Key=self._key(session.destination_key),
                CopySource={"Bucket": self.bucket, "Key": self._key(source_key)},
                CopySourceRange=f"bytes={start_byte}-{end_byte}",
                PartNumber=part_number,
                UploadId=session.upload_id,
            )
        except SDK_ERRORS as e:
            raise translate_error(e, source_key) from e
        return response["CopyPartResult"]["ETag"]

    def complete_multipart_copy(self, session: MultipartSession, ordered_parts: Sequence[CompletedPart]) -> None:
        self._complete_session(session, ordered_parts)

    def abort_multipart_copy(self, session: MultipartSession) -> None:
        self._abort_session(session)

    def start_multipart_upload(self, destination_key: str) -> MultipartSession:
        self._require_write("upload")
        return self._start_session(destination_key)

    def upload_part(
        self,
        session: MultipartSession,
        part_number: int,
        data: bytes,
        content_md5: bytes,
    ) -> tuple[str, Optional[bytes]]:
        try:
            response = self.client.upload_part(
                Bucket=self.bucket,
                Key=self._key(session.destination_key),
                UploadId=session.upload_id,
                PartNumber=part_number,
                Body=data,
                ContentMD5=base64.b64encode(content_md5).decode("ascii"),
            )
        except SDK_ERRORS as e:
            raise translate_error(e, session.destination_key) from e
        etag = response["ETag"]
        return etag, _md5_from_etag(etag) if self._reports_md5() else None

    def complete_multipart_upload(self, session: MultipartSession, ordered_parts: Sequence[CompletedPart]) -> None:
        self._complete_session(session, ordered_parts)

    def abort_multipart_upload(self, session: MultipartSession) -> None:
        self._abort_session(session)

    # === CLI operations ===

    def exists(self, key: str) -> bool:
        exists = super().exists(key)
        if exists:
            logger.info("Blob %s exists in bucket %s", key, self.bucket)
        else:
            logger.info("Blob %s does not exist in bucket %s", key, self.bucket)
        return exists

    def sign(self, key: str, action: str, expiration: timedelta) -> str:
        action = action.upper()
        if action == "GET":
            method = "get_object"
        elif action == "PUT":
            method = "put_object"
        else:
            raise StorageError(f"action not implemented: {action}")
        return self.client.generate_presigned_url(
            ClientMethod=method,
            Params={"Bucket": self.bucket, "Key": self._key(key)},
            ExpiresIn=int(expiration.total_seconds()),
        )

    def ensure_storage_exists(self) -> None:
        logger.info("Ensuring bucket %s exists", self.bucket)
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info("Bucket %s exists", self.bucket)
            return
        except ClientError as e:
            if not isinstance(translate_error(e, self.bucket), NotFoundError):
                raise StorageError(f"failed to check if bucket exists: {e}") from e

        logger.info("Bucket %s does not exist, creating it", self.bucket)
        params = {"Bucket": self.bucket}
        # us-east-1 rejects an explicit LocationConstraint
        if self.config.region and self.config.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.config.region}
        try:
            self.client.create_bucket(**params)
        except ClientError as e:
            if _error_code(e) in BUCKET_EXISTS_CODES:
                logger.warning("Bucket %s got created by another process", self.bucket)
                return
            raise StorageError(f"failed to create bucket: {e}") from e
        logger.info("Bucket %s created successfully", self.bucket)

"""Google Cloud Storage backend built on google-cloud-storage.

Existence checks try an anonymous request first so public buckets work
without credentials, then fall back to the authenticated client.
"""

import base64
import hashlib
import io
import json
import logging
from datetime import timedelta
from typing import BinaryIO, Optional
from urllib.parse import quote

import httpx
import requests
from google.api_core import exceptions as gapi_exceptions
from google.cloud import storage

from storage_cli.backends.base import BlobBackend, TranslatedStream
from storage_cli.errors import (
    NotFoundError,
    ReadOnlyError,
    StorageError,
    TransientBackendError,
)
from storage_cli.models import GCSConfig, ListPage, ObjectInfo

logger = logging.getLogger(__name__)

PUBLIC_ENDPOINT = "https://storage.googleapis.com"
LIST_PAGE_SIZE = 1000
READ_CHUNK_SIZE = 8 * 1024 * 1024

TRANSIENT_ERRORS = (
    gapi_exceptions.TooManyRequests,
    gapi_exceptions.InternalServerError,
    gapi_exceptions.BadGateway,
    gapi_exceptions.ServiceUnavailable,
    gapi_exceptions.GatewayTimeout,
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)

# Raised by the client library while a blob body is being fetched
READ_ERRORS = (gapi_exceptions.GoogleAPICallError, requests.RequestException)


def build_gcs_client(config: GCSConfig) -> storage.Client:
    """Build an authenticated client, or an anonymous one in read only mode."""
    if config.read_only:
        return storage.Client.create_anonymous_client()
    if config.credentials_source == "static":
        return storage.Client.from_service_account_info(json.loads(config.json_key))
    return storage.Client()


def translate_error(error: Exception, key: str = "") -> Exception:
    """Map a google-api-core or transport exception onto the storage error taxonomy."""
    if isinstance(error, gapi_exceptions.NotFound):
        return NotFoundError(key)
    if isinstance(error, TRANSIENT_ERRORS):
        return TransientBackendError(str(error))
    if isinstance(error, READ_ERRORS):
        return StorageError(str(error))
    return error


class GCSBackend(BlobBackend):
    """BlobBackend for Google Cloud Storage.

    GCS has no part-copy API, so copies always run as a single rewrite
    loop and uploads always go through one (internally resumable) request.
    """

    name = "gcs"

    def __init__(self, config: GCSConfig, client: Optional[storage.Client] = None, http: Optional[httpx.Client] = None):
        self.config = config
        self.client = client or build_gcs_client(config)
        self.bucket = self.client.bucket(config.bucket_name)
        self.http = http or httpx.Client(timeout=30.0)

    def close(self) -> None:
        self.http.close()

    def _blob(self, key: str) -> storage.Blob:
        return self.bucket.blob(key, encryption_key=self.config.encryption_key)

    def _require_write(self, operation: str) -> None:
        if self.config.read_only:
            raise ReadOnlyError(operation)

    def stat_object(self, key: str) -> ObjectInfo:
        blob = self._blob(key)
        try:
            blob.reload()
        except gapi_exceptions.GoogleAPICallError as e:
            raise translate_error(e, key) from e
        return ObjectInfo(
            key=key,
            size=blob.size or 0,
            etag=blob.etag or "",
            last_modified=blob.updated,
            content_md5=base64.b64decode(blob.md5_hash) if blob.md5_hash else None,
            # Customer-supplied keys travel with every request; stream these in one read
            sequential_only=self.config.encryption_key is not None,
        )

    def put_object(self, key: str, stream: BinaryIO, content_md5: bytes) -> Optional[bytes]:
        self._require_write("upload")
        blob = self._blob(key)
        if self.config.storage_class:
            blob.storage_class = self.config.storage_class
        # GCS rejects the upload server-side if the content does not match
        blob.md5_hash = base64.b64encode(content_md5).decode("ascii")
        try:
            blob.upload_from_file(stream, rewind=False)
        except gapi_exceptions.GoogleAPICallError as e:
            raise translate_error(e, key) from e
        if not blob.md5_hash:
            return None
        return base64.b64decode(blob.md5_hash)

    def get_object_range(self, key: str, start_byte: int, end_byte: int) -> BinaryIO:
        blob = self._blob(key)
        try:
            if self.config.encryption_key is not None:
                reader = blob.open("rb", chunk_size=READ_CHUNK_SIZE)
                reader.seek(start_byte)
                return TranslatedStream(reader, key, READ_ERRORS, translate_error)
            data = blob.download_as_bytes(start=start_byte, end=end_byte)
        except READ_ERRORS as e:
            raise translate_error(e, key) from e
        return io.BytesIO(data)

    def delete_object(self, key: str) -> None:
        self._require_write("delete")
        try:
            self._blob(key).delete()
        except gapi_exceptions.NotFound:
            return
        except gapi_exceptions.GoogleAPICallError as e:
            raise translate_error(e, key) from e

    def list_page(self, prefix: str, cursor: Optional[str]) -> ListPage:
        if self.config.read_only:
            raise ReadOnlyError("list")
        iterator = self.client.list_blobs(
            self.config.bucket_name,
            prefix=prefix or None,
            page_token=cursor,
            max_results=LIST_PAGE_SIZE,
        )
        try:
            page = next(iterator.pages, None)
        except gapi_exceptions.GoogleAPICallError as e:
            raise translate_error(e) from e
        keys = [blob.name for blob in page] if page is not None else []
        return ListPage(keys=keys, next_cursor=iterator.next_page_token)

    def copy_object(self, source_key: str, destination_key: str) -> None:
        self._require_write("copy")
        source = self._blob(source_key)
        destination = self._blob(destination_key)
        try:
            token, rewritten, total = destination.rewrite(source)
            while token is not None:
                logger.debug("Rewrote %d of %d bytes of %s", rewritten, total, destination_key)
                token, rewritten, total = destination.rewrite(source, token=token)
        except gapi_exceptions.GoogleAPICallError as e:
            raise translate_error(e, source_key) from e

    def exists(self, key: str) -> bool:
        public = self._public_exists(key)
        if public is not None:
            exists = public
        elif self.config.read_only:
            raise StorageError(f"cannot determine whether '{key}' exists without credentials")
        else:
            exists = super().exists(key)

        if exists:
            logger.info("File '%s' exists in bucket '%s'", key, self.config.bucket_name)
        else:
            logger.info("File '%s' does not exist in bucket '%s'", key, self.config.bucket_name)
        return exists

    def _public_exists(self, key: str) -> Optional[bool]:
        """Anonymous HEAD request; None when the answer needs credentials."""
        url = f"{PUBLIC_ENDPOINT}/{self.config.bucket_name}/{quote(key)}"
        try:
            response = self.http.head(url)
        except httpx.HTTPError as e:
            logger.debug("Public existence check for %s failed: %s", key, e)
            return None
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        logger.debug("Public existence check for %s returned %d", key, response.status_code)
        return None

    def sign(self, key: str, action: str, expiration: timedelta) -> str:
        action = action.upper()
        if action not in ("GET", "PUT"):
            raise StorageError(f"action not implemented: {action}")
        headers = None
        if self.config.encryption_key is not None:
            # Requests against the URL must send the same headers
            headers = {
                "x-goog-encryption-algorithm": "AES256",
                "x-goog-encryption-key": base64.b64encode(self.config.encryption_key).decode("ascii"),
                "x-goog-encryption-key-sha256": base64.b64encode(
                    hashlib.sha256(self.config.encryption_key).digest()
                ).decode("ascii"),
            }
        return self.bucket.blob(key).generate_signed_url(
            version="v4",
            expiration=expiration,
            method=action,
            headers=headers,
        )

    def ensure_storage_exists(self) -> None:
        logger.info("Ensuring bucket '%s' exists", self.config.bucket_name)
        self._require_write("create bucket")
        try:
            existing = self.client.lookup_bucket(self.config.bucket_name)
        except gapi_exceptions.GoogleAPICallError as e:
            raise StorageError(f"checking bucket: {e}") from e
        if existing is not None:
            return

        bucket = self.client.bucket(self.config.bucket_name)
        if self.config.storage_class:
            bucket.storage_class = self.config.storage_class
        try:
            self.client.create_bucket(bucket, project=self._project_id())
        except gapi_exceptions.Conflict:
            logger.warning("Bucket '%s' got created by another process", self.config.bucket_name)
        except gapi_exceptions.GoogleAPICallError as e:
            raise StorageError(f"creating bucket: {e}") from e

    def _project_id(self) -> Optional[str]:
        if self.config.json_key:
            project_id = json.loads(self.config.json_key).get("project_id")
            if not project_id:
                raise StorageError("project_id is missing in the service account key")
            return project_id
        return self.client.project

"""Azure Blob Storage backend built on azure-storage-blob.

Chunked uploads map onto staged blocks: each part becomes one block, and
completing the session commits the block list. Azure has no explicit
abort for staged blocks; uncommitted blocks are discarded by the service.
"""

import base64
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Optional, Sequence

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    IncompleteReadError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import (
    BlobBlock,
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from storage_cli.backends.base import BlobBackend, TranslatedStream
from storage_cli.errors import NotFoundError, StorageError, TransientBackendError
from storage_cli.models import AzureConfig, CompletedPart, ListPage, MultipartSession, ObjectInfo

logger = logging.getLogger(__name__)

COPY_POLL_INTERVAL = 0.2
LIST_PAGE_SIZE = 5000

# Server-side timeouts appended to SAS URLs, in seconds
SAS_GET_TIMEOUT = 1800
SAS_PUT_TIMEOUT = 2700


def build_service_client(config: AzureConfig) -> BlobServiceClient:
    return BlobServiceClient(
        account_url=config.account_url,
        credential={"account_name": config.account_name, "account_key": config.account_key},
    )


def translate_error(error: Exception, key: str = "") -> Exception:
    """Map an azure-core exception onto the storage error taxonomy."""
    if isinstance(error, ResourceNotFoundError):
        return NotFoundError(key)
    if isinstance(error, (ServiceRequestError, ServiceResponseError, IncompleteReadError)):
        return TransientBackendError(str(error))
    if isinstance(error, HttpResponseError):
        status = error.status_code
        if status == 429 or (status is not None and 500 <= status < 600):
            return TransientBackendError(str(error))
        return StorageError(str(error))
    if isinstance(error, AzureError):
        return StorageError(str(error))
    return error


def _block_id(upload_id: str, part_number: int) -> str:
    # Block IDs of one blob must all have the same length
    return base64.b64encode(f"{upload_id}-{part_number:08d}".encode("ascii")).decode("ascii")


class AzureBlobBackend(BlobBackend):
    """BlobBackend for one Azure Blob Storage container."""

    name = "azurebs"
    supports_multipart_upload = True

    def __init__(self, config: AzureConfig, service_client: Optional[BlobServiceClient] = None):
        self.config = config
        self.service_client = service_client or build_service_client(config)
        self.container = self.service_client.get_container_client(config.container_name)

    def close(self) -> None:
        self.service_client.close()

    def _blob(self, key: str):
        return self.container.get_blob_client(key)

    def stat_object(self, key: str) -> ObjectInfo:
        try:
            props = self._blob(key).get_blob_properties()
        except AzureError as e:
            raise translate_error(e, key) from e
        md5 = props.content_settings.content_md5 if props.content_settings else None
        return ObjectInfo(
            key=key,
            size=props.size,
            etag=props.etag or "",
            last_modified=props.last_modified,
            content_md5=bytes(md5) if md5 else None,
        )

    def put_object(self, key: str, stream: BinaryIO, content_md5: bytes) -> Optional[bytes]:
        logger.info("Uploading blob %s to container %s", key, self.config.container_name)
        try:
            result = self._blob(key).upload_blob(
                stream,
                overwrite=True,
                content_settings=ContentSettings(content_md5=bytearray(content_md5)),
            )
        except AzureError as e:
            raise translate_error(e, key) from e
        remote = result.get("content_md5") if result else None
        return bytes(remote) if remote else None

    def get_object_range(self, key: str, start_byte: int, end_byte: int) -> BinaryIO:
        try:
            downloader = self._blob(key).download_blob(
                offset=start_byte, length=end_byte - start_byte + 1
            )
            return TranslatedStream(_DownloaderStream(downloader), key, (AzureError,), translate_error)
        except AzureError as e:
            raise translate_error(e, key) from e

    def delete_object(self, key: str) -> None:
        logger.info("Deleting blob %s from container %s", key, self.config.container_name)
        try:
            self._blob(key).delete_blob(delete_snapshots="include")
        except ResourceNotFoundError:
            logger.info("Blob %s does not exist", key)
        except AzureError as e:
            raise translate_error(e, key) from e

    def list_page(self, prefix: str, cursor: Optional[str]) -> ListPage:
        try:
            pages = self.container.list_blobs(
                name_starts_with=prefix or None,
                results_per_page=LIST_PAGE_SIZE,
            ).by_page(continuation_token=cursor)
            page = next(pages, None)
            keys = [blob.name for blob in page] if page is not None else []
        except AzureError as e:
            raise translate_error(e) from e
        return ListPage(keys=keys, next_cursor=pages.continuation_token or None)

    def copy_object(self, source_key: str, destination_key: str) -> None:
        source = self._blob(source_key)
        destination = self._blob(destination_key)
        try:
            response = destination.start_copy_from_url(source.url)
            logger.debug("Copy started with id %s", response.get("copy_id"))
            while True:
                status = destination.get_blob_properties().copy.status
                logger.debug("Copy status %s", status)
                if status == "success":
                    return
                if status != "pending":
                    raise StorageError(f"copy failed or aborted with status: {status}")
                time.sleep(COPY_POLL_INTERVAL)
        except AzureError as e:
            raise translate_error(e, source_key) from e

    # === Staged blocks ===

    def start_multipart_upload(self, destination_key: str) -> MultipartSession:
        return MultipartSession(upload_id=uuid.uuid4().hex, destination_key=destination_key)

    def upload_part(
        self,
        session: MultipartSession,
        part_number: int,
        data: bytes,
        content_md5: bytes,
    ) -> tuple[str, Optional[bytes]]:
        block_id = _block_id(session.upload_id, part_number)
        try:
            # validate_content sends Content-MD5; the service rejects a corrupted block
            response = self._blob(session.destination_key).stage_block(
                block_id=block_id, data=data, length=len(data), validate_content=True
            )
        except AzureError as e:
            raise translate_error(e, session.destination_key) from e
        remote = response.get("content_md5") if response else None
        return block_id, bytes(remote) if remote else None

    def complete_multipart_upload(self, session: MultipartSession, ordered_parts: Sequence[CompletedPart]) -> None:
        try:
            self._blob(session.destination_key).commit_block_list(
                [BlobBlock(block_id=part.etag) for part in ordered_parts]
            )
        except AzureError as e:
            raise translate_error(e, session.destination_key) from e

    def abort_multipart_upload(self, session: MultipartSession) -> None:
        logger.debug(
            "Leaving %d uncommitted block(s) of %s for the service to discard",
            len(session.parts), session.destination_key,
        )

    # === CLI operations ===

    def sign(self, key: str, action: str, expiration: timedelta) -> str:
        action = action.upper()
        if action == "GET":
            permission = BlobSasPermissions(read=True)
            timeout = SAS_GET_TIMEOUT
        elif action == "PUT":
            permission = BlobSasPermissions(create=True, write=True)
            timeout = SAS_PUT_TIMEOUT
        else:
            raise StorageError(f"action not implemented: {action}")

        sas_token = generate_blob_sas(
            account_name=self.config.account_name,
            container_name=self.config.container_name,
            blob_name=key,
            account_key=self.config.account_key,
            permission=permission,
            expiry=datetime.now(timezone.utc) + expiration,
        )
        # Large transfers through the URL outlive the default server-side timeout
        return f"{self._blob(key).url}?{sas_token}&timeout={timeout}"

    def ensure_storage_exists(self) -> None:
        logger.info("Ensuring container %s exists", self.config.container_name)
        try:
            self.container.create_container()
        except ResourceExistsError:
            logger.info("Container %s already exists", self.config.container_name)
            return
        except AzureError as e:
            raise StorageError(f"failed to create container: {e}") from e
        logger.info("Container %s created successfully", self.config.container_name)


class _DownloaderStream:
    """File-like view over a StorageStreamDownloader."""

    def __init__(self, downloader):
        self._chunks = downloader.chunks()
        self._buffer = b""

    def read(self, size: int = -1) -> bytes:
        while size < 0 or len(self._buffer) < size:
            chunk = next(self._chunks, None)
            if chunk is None:
                break
            self._buffer += chunk
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def close(self) -> None:
        self._chunks = iter(())
        self._buffer = b""

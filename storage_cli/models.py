"""Data models for the storage CLI."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB


class CopyStrategy(Enum):
    """How an object copy is carried out."""

    SIMPLE = "simple"
    MULTIPART = "multipart"


@dataclass(frozen=True)
class TransferSpec:
    """Per-operation transfer parameters."""

    source_size: int
    part_size: int
    concurrency: int = 5
    multipart_enabled: bool = True


@dataclass(frozen=True)
class Part:
    """One contiguous byte range of an object. ``end_byte`` is inclusive."""

    index: int
    start_byte: int
    end_byte: int

    @property
    def length(self) -> int:
        return self.end_byte - self.start_byte + 1


@dataclass
class UploadOutcome:
    """Result of a verified upload."""

    success: bool
    remote_checksum: Optional[bytes]
    attempts: int


@dataclass
class CompletedPart:
    """A part that the backend accepted, identified by its ETag."""

    part_number: int
    etag: str


@dataclass
class MultipartSession:
    """Backend-tracked reservation for assembling an object from parts."""

    upload_id: str
    destination_key: str
    parts: list[CompletedPart] = field(default_factory=list)

    def ordered_parts(self) -> list[CompletedPart]:
        return sorted(self.parts, key=lambda p: p.part_number)


@dataclass(frozen=True)
class DeletionTask:
    """A single key scheduled for deletion."""

    key: str


@dataclass
class ObjectInfo:
    """Metadata returned by ``stat_object``."""

    key: str
    size: int
    etag: str = ""
    last_modified: Optional[datetime] = None
    content_md5: Optional[bytes] = None
    # Set when the read path cannot be split into concurrent ranged reads
    sequential_only: bool = False


@dataclass
class ListPage:
    """One page of a paginated listing."""

    keys: list[str]
    next_cursor: Optional[str] = None


@dataclass
class BlobProperties:
    """Object properties as printed by the ``properties`` command."""

    etag: str = ""
    last_modified: Optional[datetime] = None
    content_length: int = 0

    @classmethod
    def from_object_info(cls, info: ObjectInfo) -> "BlobProperties":
        return cls(
            etag=info.etag.strip('"'),
            last_modified=info.last_modified,
            content_length=info.size,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary, omitting empty values."""
        data: dict[str, Any] = {}
        if self.etag:
            data["etag"] = self.etag
        if self.last_modified is not None:
            data["last_modified"] = self.last_modified.isoformat()
        if self.content_length:
            data["content_length"] = self.content_length
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


# === Configuration ===


@dataclass
class TransferSettings:
    """Transfer tuning shared by all orchestrators.

    Built once from the configuration file and passed to every
    orchestrator at construction.
    """

    upload_part_size: int = 5 * MIB
    upload_concurrency: int = 5
    multipart_upload: bool = True
    multipart_threshold: Optional[int] = None
    download_part_size: int = 5 * MIB
    download_concurrency: int = 5
    multipart_copy_threshold: int = 5 * GIB
    multipart_copy_part_size: int = 100 * MIB
    delete_concurrency: int = 10
    timeout_seconds: Optional[float] = None

    def upload_spec(self, source_size: int) -> TransferSpec:
        return TransferSpec(
            source_size=source_size,
            part_size=self.upload_part_size,
            concurrency=self.upload_concurrency,
            multipart_enabled=self.multipart_upload,
        )

    def download_spec(self, source_size: int) -> TransferSpec:
        return TransferSpec(
            source_size=source_size,
            part_size=self.download_part_size,
            concurrency=self.download_concurrency,
        )


@dataclass
class S3Config:
    """Configuration for S3 and S3-compatible providers."""

    bucket_name: str
    credentials_source: str = "static"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    region: str = "us-east-1"
    host: Optional[str] = None
    port: Optional[int] = None
    use_ssl: bool = True
    ssl_verify_peer: bool = True
    addressing_style: str = "path"
    folder_name: str = ""
    server_side_encryption: str = ""
    sse_kms_key_id: str = ""
    # Alicloud OSS rejects aws-chunked uploads with trailing checksums
    request_checksum_when_required: bool = False

    @property
    def read_only(self) -> bool:
        return self.credentials_source == "none"

    @property
    def endpoint_url(self) -> Optional[str]:
        if not self.host:
            return None
        if self.host.startswith(("http://", "https://")):
            return self.host
        scheme = "https" if self.use_ssl else "http"
        if self.port:
            return f"{scheme}://{self.host}:{self.port}"
        return f"{scheme}://{self.host}"


@dataclass
class GCSConfig:
    """Configuration for Google Cloud Storage."""

    bucket_name: str
    credentials_source: str = ""
    json_key: str = ""
    storage_class: str = ""
    encryption_key: Optional[bytes] = None

    @property
    def read_only(self) -> bool:
        return self.credentials_source == "none"


@dataclass
class AzureConfig:
    """Configuration for Azure Blob Storage."""

    account_name: str
    account_key: str
    container_name: str
    environment: str = "AzureCloud"

    @property
    def account_url(self) -> str:
        return f"https://{self.account_name}.{AZURE_STORAGE_ENDPOINTS[self.environment]}"


AZURE_STORAGE_ENDPOINTS = {
    "AzureCloud": "blob.core.windows.net",
    "AzureChinaCloud": "blob.core.chinacloudapi.cn",
    "AzureUSGovernment": "blob.core.usgovcloudapi.net",
}

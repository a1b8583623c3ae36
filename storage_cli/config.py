"""Configuration loading for the storage CLI.

The configuration file is a JSON object whose keys depend on the storage
type selected with ``-s``. Transfer tuning keys (part sizes, concurrency,
thresholds, timeouts) are shared by all types and are collected into a
TransferSettings record.

Example (s3):
    {
        "bucket_name": "my-bucket",
        "access_key_id": "...",
        "secret_access_key": "...",
        "region": "eu-central-1",
        "upload_part_size": 16777216
    }

Environment Variables:
    STORAGE_CLI_CONFIG        default for ``-c``
    STORAGE_CLI_STORAGE_TYPE  default for ``-s``
"""

import base64
import binascii
import json
import os
from pathlib import Path
from typing import Any, Optional, Union

from storage_cli.models import (
    AZURE_STORAGE_ENDPOINTS,
    MIB,
    AzureConfig,
    GCSConfig,
    S3Config,
    TransferSettings,
)

CONFIG_ENV_VAR = "STORAGE_CLI_CONFIG"
STORAGE_TYPE_ENV_VAR = "STORAGE_CLI_STORAGE_TYPE"

STORAGE_TYPES = ("s3", "gcs", "azurebs", "alioss", "dav")

BackendConfig = Union[S3Config, GCSConfig, AzureConfig]


class ConfigError(Exception):
    """Raised when configuration loading fails."""

    pass


# Required fields per storage type
REQUIRED_FIELDS = {
    "s3": ["bucket_name"],
    "gcs": ["bucket_name"],
    "azurebs": ["account_name", "account_key", "container_name"],
    "alioss": ["access_key_id", "access_key_secret", "endpoint", "bucket_name"],
    "dav": [],
}

# Transfer defaults that differ from TransferSettings' per storage type
TRANSFER_DEFAULTS: dict[str, dict[str, Any]] = {
    "s3": {},
    "alioss": {},
    "gcs": {"upload_part_size": 8 * MIB, "download_part_size": 8 * MIB},
    "azurebs": {"upload_part_size": 4 * MIB, "download_part_size": 4 * MIB},
}

S3_CREDENTIALS_SOURCES = ("static", "env_or_profile", "none")
GCS_CREDENTIALS_SOURCES = ("", "static", "none")

_SIZE_FIELDS = (
    "upload_part_size",
    "download_part_size",
    "multipart_threshold",
    "multipart_copy_threshold",
    "multipart_copy_part_size",
)
_COUNT_FIELDS = ("upload_concurrency", "download_concurrency", "delete_concurrency")


def resolve_config_path(config_path: Optional[str]) -> str:
    """Return ``config_path``, or the path from STORAGE_CLI_CONFIG."""
    path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        raise ConfigError(f"No config file given. Pass -c or set {CONFIG_ENV_VAR}")
    return path


def resolve_storage_type(storage_type: Optional[str]) -> str:
    """Return ``storage_type``, or the type from STORAGE_CLI_STORAGE_TYPE (default s3)."""
    value = storage_type or os.environ.get(STORAGE_TYPE_ENV_VAR) or "s3"
    if value not in STORAGE_TYPES:
        raise ConfigError(
            f"Unknown storage type '{value}'. Expected one of: {', '.join(STORAGE_TYPES)}"
        )
    return value


def read_json(config_path: str) -> dict[str, Any]:
    """Read a JSON object from ``config_path``.

    Raises:
        ConfigError: If the file doesn't exist or contains invalid JSON.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")
    return data


def load_config(config_path: str, storage_type: str) -> tuple[BackendConfig, TransferSettings]:
    """Load backend configuration and transfer settings.

    Args:
        config_path: Path to the JSON config file.
        storage_type: One of s3, gcs, azurebs, alioss.

    Returns:
        The backend configuration and the transfer settings.

    Raises:
        ConfigError: If the file is missing, malformed, or incomplete.
    """
    data = read_json(config_path)
    return parse_config(data, storage_type)


def parse_config(data: dict[str, Any], storage_type: str) -> tuple[BackendConfig, TransferSettings]:
    if storage_type == "dav":
        raise ConfigError("dav storage type is not implemented")
    if storage_type not in REQUIRED_FIELDS:
        raise ConfigError(f"Unknown storage type '{storage_type}'")

    for field in REQUIRED_FIELDS[storage_type]:
        if not data.get(field):
            raise ConfigError(f"Missing required field '{field}' for storage type '{storage_type}'")

    if storage_type == "s3":
        backend_config: BackendConfig = _parse_s3(data)
    elif storage_type == "alioss":
        backend_config = _parse_alioss(data)
    elif storage_type == "gcs":
        backend_config = _parse_gcs(data)
    else:
        backend_config = _parse_azure(data)

    return backend_config, parse_transfer_settings(data, storage_type)


def parse_transfer_settings(data: dict[str, Any], storage_type: str) -> TransferSettings:
    """Collect the transfer tuning keys, applying per-type defaults."""
    values: dict[str, Any] = dict(TRANSFER_DEFAULTS.get(storage_type, {}))

    for field in _SIZE_FIELDS + _COUNT_FIELDS:
        if field in data and data[field] is not None:
            values[field] = _positive_int(data, field)

    if "multipart_upload" in data:
        values["multipart_upload"] = _bool(data, "multipart_upload")

    timeout = data.get("timeout_seconds")
    if timeout is None and storage_type == "azurebs":
        timeout = data.get("put_timeout_in_seconds") or None
    if timeout is not None:
        values["timeout_seconds"] = _timeout_seconds(timeout)

    return TransferSettings(**values)


# === Per-type parsers ===


def _parse_s3(data: dict[str, Any]) -> S3Config:
    credentials_source = data.get("credentials_source", "static")
    if credentials_source not in S3_CREDENTIALS_SOURCES:
        raise ConfigError(f"Incorrect credentials_source: {credentials_source}")
    if credentials_source == "static":
        for field in ("access_key_id", "secret_access_key"):
            if not data.get(field):
                raise ConfigError(f"Missing required field '{field}' for static credentials")
    elif data.get("access_key_id") or data.get("secret_access_key"):
        raise ConfigError(
            f"Can't use access_key_id and secret_access_key with {credentials_source} credentials_source"
        )

    addressing_style = data.get("addressing_style")
    if addressing_style is None:
        addressing_style = "virtual" if data.get("host_style") else "path"
    if addressing_style not in ("path", "virtual", "auto"):
        raise ConfigError(f"Invalid addressing_style: {addressing_style}")

    port = data.get("port")
    return S3Config(
        bucket_name=data["bucket_name"],
        credentials_source=credentials_source,
        access_key_id=data.get("access_key_id"),
        secret_access_key=data.get("secret_access_key"),
        region=data.get("region") or "us-east-1",
        host=data.get("host") or None,
        port=_positive_int(data, "port") if port else None,
        use_ssl=_bool(data, "use_ssl", True),
        ssl_verify_peer=_bool(data, "ssl_verify_peer", True),
        addressing_style=addressing_style,
        folder_name=(data.get("folder_name") or "").strip("/"),
        server_side_encryption=data.get("server_side_encryption", ""),
        sse_kms_key_id=data.get("sse_kms_key_id", ""),
    )


def _parse_alioss(data: dict[str, Any]) -> S3Config:
    """Alicloud OSS through its S3-compatible API."""
    endpoint = data["endpoint"]
    host = endpoint.split("://", 1)[-1]
    # oss-cn-hangzhou.aliyuncs.com signs as region oss-cn-hangzhou
    region = data.get("region") or host.split(".", 1)[0]
    return S3Config(
        bucket_name=data["bucket_name"],
        credentials_source="static",
        access_key_id=data["access_key_id"],
        secret_access_key=data["access_key_secret"],
        region=region,
        host=endpoint,
        addressing_style="virtual",
        request_checksum_when_required=True,
    )


def _parse_gcs(data: dict[str, Any]) -> GCSConfig:
    credentials_source = data.get("credentials_source", "")
    if credentials_source not in GCS_CREDENTIALS_SOURCES:
        raise ConfigError(f"Incorrect credentials_source: {credentials_source}")
    json_key = data.get("json_key", "")
    if credentials_source == "static" and not json_key:
        raise ConfigError("json_key is required when credentials_source is static")
    if json_key:
        try:
            json.loads(json_key)
        except json.JSONDecodeError as e:
            raise ConfigError(f"json_key is not valid JSON: {e}") from e

    encryption_key = None
    if data.get("encryption_key"):
        try:
            encryption_key = base64.b64decode(data["encryption_key"], validate=True)
        except binascii.Error as e:
            raise ConfigError(f"encryption_key is not valid base64: {e}") from e
        if len(encryption_key) != 32:
            raise ConfigError("encryption_key must decode to 32 bytes (AES-256)")

    return GCSConfig(
        bucket_name=data["bucket_name"],
        credentials_source=credentials_source,
        json_key=json_key,
        storage_class=data.get("storage_class", ""),
        encryption_key=encryption_key,
    )


def _parse_azure(data: dict[str, Any]) -> AzureConfig:
    environment = data.get("environment") or "AzureCloud"
    if environment not in AZURE_STORAGE_ENDPOINTS:
        raise ConfigError(f"unknown cloud environment: {environment}")
    return AzureConfig(
        account_name=data["account_name"],
        account_key=data["account_key"],
        container_name=data["container_name"],
        environment=environment,
    )


# === Value helpers ===


def _positive_int(data: dict[str, Any], field: str) -> int:
    value = data[field]
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{field}' must be a positive integer, got {value!r}")
    return value


def _bool(data: dict[str, Any], field: str, default: bool = False) -> bool:
    value = data.get(field, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{field}' must be true or false, got {value!r}")
    return value


def _timeout_seconds(value: Any) -> float:
    # put_timeout_in_seconds is written as a string in existing Azure configs
    if isinstance(value, str):
        try:
            value = int(value)
        except ValueError as e:
            raise ConfigError(
                f"invalid timeout format '{value}', need seconds as number e.g. 30"
            ) from e
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 1:
        raise ConfigError(f"invalid timeout {value!r}, need at least 1 second")
    return float(value)

"""Backend adapters and the factory that selects one per storage type."""

from storage_cli.backends.base import BlobBackend
from storage_cli.config import BackendConfig, ConfigError


def build_backend(storage_type: str, config: BackendConfig) -> BlobBackend:
    """Create the adapter for ``storage_type``.

    SDK modules are imported here so that running one backend does not
    require the others' SDKs to import cleanly.
    """
    if storage_type in ("s3", "alioss"):
        from storage_cli.backends.s3 import S3Backend

        backend = S3Backend(config)
        if storage_type == "alioss":
            backend.name = "alioss"
        return backend
    if storage_type == "gcs":
        from storage_cli.backends.gcs import GCSBackend

        return GCSBackend(config)
    if storage_type == "azurebs":
        from storage_cli.backends.azure import AzureBlobBackend

        return AzureBlobBackend(config)
    if storage_type == "dav":
        raise ConfigError("dav storage type is not implemented")
    raise ConfigError(f"Unknown storage type '{storage_type}'")


__all__ = ["BlobBackend", "build_backend"]

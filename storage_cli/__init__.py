"""
Storage CLI.

A command-line client for object storage (S3 and S3-compatible stores,
Google Cloud Storage, Azure Blob Storage) with verified chunked uploads,
concurrent downloads, server-side copy and bounded recursive deletion.
"""

__version__ = "1.0.0"

from storage_cli.cli import main

__all__ = ["main", "__version__"]

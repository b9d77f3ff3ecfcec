"""Audit record sources."""

from kubereplay.audit.providers.base import Provider, decode_records
from kubereplay.audit.providers.cloudwatch import CloudWatchProvider
from kubereplay.audit.providers.file import FileProvider

__all__ = [
    "Provider",
    "decode_records",
    "CloudWatchProvider",
    "FileProvider",
]

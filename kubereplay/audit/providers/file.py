from __future__ import annotations

import gzip
import logging
from pathlib import Path
from typing import IO, List, Union

from kubereplay.audit.models import AuditRecord
from kubereplay.errors import ProviderError
from kubereplay.objects.base import Identity
from kubereplay.timeutil import TimeWindow

from .base import decode_records

logger = logging.getLogger(__name__)


class FileProvider:
    """
    Newline-delimited JSON audit log on local disk (optionally gzip-compressed).
    The whole file is returned; the replay step applies identity and window.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()
        if not self.path.is_file():
            raise ProviderError(f"audit log file does not exist: {self.path}", "AUDIT_LOG_NOT_FOUND")
        self.skipped_lines = 0

    def _open(self) -> IO[str]:
        if self.path.suffix == ".gz":
            return gzip.open(self.path, "rt", encoding="utf-8", errors="replace")
        return open(self.path, "r", encoding="utf-8", errors="replace")

    def get_events(self, window: TimeWindow, identity: Identity, query: str = "") -> List[AuditRecord]:
        try:
            with self._open() as f:
                records, skipped = decode_records(f, str(self.path))
        except OSError as e:
            raise ProviderError(f"failed to read audit log {self.path}: {e}") from e
        self.skipped_lines = skipped
        logger.info("read %d audit record(s) from %s", len(records), self.path)
        return records

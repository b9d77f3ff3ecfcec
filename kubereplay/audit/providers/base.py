from __future__ import annotations

import logging
from typing import Iterable, List, Protocol, Tuple, Union

from kubereplay.audit.models import AuditRecord
from kubereplay.errors import MalformedRecordError
from kubereplay.objects.base import Identity
from kubereplay.timeutil import TimeWindow

logger = logging.getLogger(__name__)


class Provider(Protocol):
    """Source of raw audit records for one identity and time window."""

    def get_events(self, window: TimeWindow, identity: Identity, query: str) -> List[AuditRecord]:
        ...


def decode_records(payloads: Iterable[Union[str, bytes]], source: str) -> Tuple[List[AuditRecord], int]:
    """
    Decode JSON audit entries, skipping blanks and malformed ones.
    Returns (records, skipped).
    """
    records: List[AuditRecord] = []
    skipped = 0
    for n, payload in enumerate(payloads, start=1):
        if not payload or not payload.strip():
            continue
        try:
            records.append(AuditRecord.from_json(payload))
        except MalformedRecordError as e:
            skipped += 1
            logger.debug("%s:%d skipped: %s", source, n, e.reason)
    if skipped:
        logger.warning("%s: skipped %d malformed audit entr%s", source, skipped, "y" if skipped == 1 else "ies")
    return records, skipped

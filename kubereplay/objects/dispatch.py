from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from kubereplay.audit.models import AuditRecord
from kubereplay.errors import MalformedRecordError

from .base import LifecycleEvent
from .registry import KindRegistry

logger = logging.getLogger(__name__)

# Per-record outcomes.
_CLASSIFIED = "classified"
_UNRECOGNIZED = "unrecognized"
_IGNORED = "ignored"
_MALFORMED = "malformed"


@dataclass(frozen=True)
class ExtractionStats:
    total: int = 0
    classified: int = 0
    unrecognized: int = 0
    ignored: int = 0
    malformed: int = 0


@dataclass(frozen=True)
class ExtractionResult:
    events: Tuple[LifecycleEvent, ...]
    stats: ExtractionStats


class Dispatcher:
    """
    Routes each record to the handler registered for objectRef.resource.

    Holds no mutable state, so dispatch() can run on many threads at once.
    extract() collects every per-record result into a tuple before anything
    downstream folds them.
    """

    def __init__(self, registry: KindRegistry) -> None:
        self.registry = registry

    def dispatch(self, record: AuditRecord) -> Optional[LifecycleEvent]:
        """Raises MalformedRecordError when the matched classifier cannot decode the record."""
        if record.object_ref is None:
            return None
        handler = self.registry.for_resource(record.object_ref.resource)
        if handler is None:
            return None
        return handler.classify(record)

    def _outcome(self, record: AuditRecord) -> Tuple[str, Optional[LifecycleEvent], str]:
        if record.object_ref is None or self.registry.for_resource(record.object_ref.resource) is None:
            return _UNRECOGNIZED, None, ""
        try:
            event = self.dispatch(record)
        except MalformedRecordError as e:
            return _MALFORMED, None, e.reason
        if event is None:
            return _IGNORED, None, ""
        return _CLASSIFIED, event, ""

    def extract(self, records: Iterable[AuditRecord], max_workers: int = 1) -> ExtractionResult:
        records = list(records)
        if max_workers > 1 and len(records) > 1:
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="classify_") as pool:
                outcomes = tuple(pool.map(self._outcome, records))
        else:
            outcomes = tuple(self._outcome(r) for r in records)

        events: List[LifecycleEvent] = []
        counts = {_CLASSIFIED: 0, _UNRECOGNIZED: 0, _IGNORED: 0, _MALFORMED: 0}
        for record, (outcome, event, reason) in zip(records, outcomes):
            counts[outcome] += 1
            if event is not None:
                events.append(event)
            elif outcome == _MALFORMED:
                logger.debug(
                    "skipping malformed %s record %s: %s",
                    record.verb, record.audit_id or "<no auditID>", reason,
                )

        stats = ExtractionStats(
            total=len(records),
            classified=counts[_CLASSIFIED],
            unrecognized=counts[_UNRECOGNIZED],
            ignored=counts[_IGNORED],
            malformed=counts[_MALFORMED],
        )
        if stats.malformed:
            logger.warning("skipped %d malformed audit record(s) out of %d", stats.malformed, stats.total)
        return ExtractionResult(events=tuple(events), stats=stats)

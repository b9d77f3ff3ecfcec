"""
Replay pipeline: provider -> dispatcher -> identity/window filter -> coalesce.

Records are fetched once, classified in parallel into an immutable tuple, and
only then folded into a snapshot by a single sequential reduction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from kubereplay.audit.providers.base import Provider
from kubereplay.objects.base import Identity, KindHandler, QueryIntent, Snapshot
from kubereplay.objects.dispatch import Dispatcher, ExtractionStats
from kubereplay.timeutil import TimeWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplayRequest:
    intent: QueryIntent
    handler: KindHandler
    identity: Identity
    window: TimeWindow


@dataclass(frozen=True)
class ReplayOutcome:
    snapshot: Optional[Snapshot]
    stats: ExtractionStats
    record_count: int = 0
    matched_events: int = 0


def replay(
    request: ReplayRequest,
    provider: Provider,
    dispatcher: Dispatcher,
    max_workers: int = 1,
) -> ReplayOutcome:
    """
    Provider errors propagate to the caller; no partial snapshot is built.
    snapshot is None when no lifecycle event matched the identity and window.
    """
    handler = request.handler
    query = handler.query_for(request.intent, request.identity)
    records = provider.get_events(request.window, request.identity, query)

    extracted = dispatcher.extract(records, max_workers=max_workers)
    matched = tuple(
        e
        for e in handler.relevant(request.identity, extracted.events)
        if request.window.contains(e.timestamp)
    )
    logger.info(
        "%d record(s), %d lifecycle event(s), %d for %s %s",
        len(records), len(extracted.events), len(matched), handler.object_kind.value, request.identity,
    )

    if not matched:
        return ReplayOutcome(snapshot=None, stats=extracted.stats, record_count=len(records))

    snapshot = handler.coalesce(request.identity, matched)
    return ReplayOutcome(
        snapshot=snapshot,
        stats=extracted.stats,
        record_count=len(records),
        matched_events=len(matched),
    )

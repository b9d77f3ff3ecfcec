from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from kubereplay.errors import UnsupportedKindError

from .base import KindHandler
from .node import NodeHandler
from .pod import DEFAULT_NOMINATION_MARKERS, PodHandler

logger = logging.getLogger(__name__)


class KindRegistry:
    """Maps audit resource names and CLI kind arguments to handlers."""

    def __init__(self, handlers: Optional[List[KindHandler]] = None) -> None:
        self._by_resource: Dict[str, KindHandler] = {}
        self._by_alias: Dict[str, KindHandler] = {}
        for h in handlers or []:
            self.register(h)

    def register(self, handler: KindHandler) -> None:
        if handler.resource in self._by_resource:
            raise ValueError(f"resource already registered: {handler.resource}")
        self._by_resource[handler.resource] = handler
        for alias in (handler.resource, *handler.aliases):
            self._by_alias[alias.lower()] = handler
        logger.debug("registered %s handler for resource %r", handler.object_kind.value, handler.resource)

    def for_resource(self, resource: str) -> Optional[KindHandler]:
        return self._by_resource.get(resource)

    def resolve(self, kind: str) -> KindHandler:
        handler = self._by_alias.get((kind or "").strip().lower())
        if handler is None:
            raise UnsupportedKindError(kind, self.supported())
        return handler

    def supported(self) -> Tuple[str, ...]:
        return tuple(sorted(h.object_kind.value.lower() for h in self._by_resource.values()))

    def handlers(self) -> List[KindHandler]:
        return list(self._by_resource.values())


def default_registry(settings=None) -> KindRegistry:
    markers = DEFAULT_NOMINATION_MARKERS
    track_node_updates = True
    if settings is not None:
        markers = tuple(settings.nomination_markers)
        track_node_updates = settings.track_node_updates
    return KindRegistry(
        [
            PodHandler(nomination_markers=markers),
            NodeHandler(track_updates=track_node_updates),
        ]
    )

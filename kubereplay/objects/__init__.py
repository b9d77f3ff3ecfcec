"""Lifecycle classification and coalescing for tracked Kubernetes object kinds."""

from kubereplay.objects.base import (
    Identity,
    KindHandler,
    LifecycleEvent,
    NodeEventKind,
    ObjectKind,
    PodEventKind,
    QueryIntent,
    Snapshot,
    latest_by_event_kind,
)
from kubereplay.objects.dispatch import Dispatcher, ExtractionResult, ExtractionStats
from kubereplay.objects.node import NodeHandler, NodeSnapshot
from kubereplay.objects.pod import Nomination, PodHandler, PodSnapshot
from kubereplay.objects.registry import KindRegistry, default_registry

__all__ = [
    "Identity",
    "KindHandler",
    "LifecycleEvent",
    "NodeEventKind",
    "ObjectKind",
    "PodEventKind",
    "QueryIntent",
    "Snapshot",
    "latest_by_event_kind",
    "Dispatcher",
    "ExtractionResult",
    "ExtractionStats",
    "NodeHandler",
    "NodeSnapshot",
    "Nomination",
    "PodHandler",
    "PodSnapshot",
    "KindRegistry",
    "default_registry",
]

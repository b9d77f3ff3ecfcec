"""
Shared lifecycle model for every tracked object kind.

A KindHandler turns raw audit records into LifecycleEvents (classify) and folds
the events of one identity into a Snapshot (coalesce). Folding is a pure
reduction: for each event kind the event with the greatest (timestamp, content)
key wins, so the result never depends on the order the records arrived in.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import reduce
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kubereplay.audit.models import AuditRecord
from kubereplay.errors import MalformedRecordError

logger = logging.getLogger(__name__)


class ObjectKind(str, Enum):
    POD = "Pod"
    NODE = "Node"


class QueryIntent(str, Enum):
    GET = "get"
    DESCRIBE = "describe"


class PodEventKind(str, Enum):
    CREATED = "PodCreated"
    UPDATED = "PodUpdated"
    BOUND = "PodBound"
    EVICTED = "PodEvicted"
    DELETED = "PodDeleted"
    STATUS_CHANGED = "PodStatusChanged"


class NodeEventKind(str, Enum):
    CREATED = "NodeCreated"
    UPDATED = "NodeUpdated"
    DELETED = "NodeDeleted"


EventKind = Union[PodEventKind, NodeEventKind]


@dataclass(frozen=True, order=True)
class Identity:
    """namespace+name for namespaced kinds, name alone for cluster-scoped ones."""

    namespace: str = ""
    name: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.name

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


class LifecycleEvent(BaseModel):
    """A typed lifecycle transition derived from one audit record."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    identity: Identity
    object_kind: ObjectKind
    event_kind: EventKind
    decoded_object: Optional[Dict[str, Any]] = None
    attributes: Dict[str, str] = Field(default_factory=dict)
    description: str = ""
    # Best-effort scheduler-extension tag on Updated events; see PodHandler.
    nomination: bool = False
    audit_id: str = ""

    @model_validator(mode="after")
    def _require_identity(self) -> "LifecycleEvent":
        if self.identity.is_empty:
            raise ValueError("lifecycle event requires a non-empty identity")
        return self

    @property
    def fingerprint(self) -> str:
        return json.dumps(
            {
                "object": self.decoded_object,
                "attributes": self.attributes,
                "description": self.description,
                "nomination": self.nomination,
                "auditID": self.audit_id,
            },
            sort_keys=True,
            default=str,
            separators=(",", ":"),
        )

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.timestamp, self.fingerprint)


def _keep_latest(acc: Mapping[Any, LifecycleEvent], event: LifecycleEvent) -> Dict[Any, LifecycleEvent]:
    out = dict(acc)
    current = out.get(event.event_kind)
    if current is None or event.sort_key > current.sort_key:
        out[event.event_kind] = event
    return out


def latest_by_event_kind(events: Iterable[LifecycleEvent]) -> Dict[Any, LifecycleEvent]:
    """Fold events into {event_kind: latest event}. Order-independent."""
    return reduce(_keep_latest, events, {})


def latest_with_body(*candidates: Optional[LifecycleEvent]) -> Optional[LifecycleEvent]:
    """
    Latest candidate carrying a non-empty body.
    On equal timestamps the later argument wins (callers pass Created before Updated).
    """
    ranked = [
        (c.timestamp, rank, c.fingerprint, c)
        for rank, c in enumerate(candidates)
        if c is not None and c.decoded_object
    ]
    if not ranked:
        return None
    return max(ranked, key=lambda r: r[:3])[3]


def canonical_order(events: Iterable[LifecycleEvent]) -> Tuple[LifecycleEvent, ...]:
    return tuple(sorted(events, key=lambda e: e.sort_key))


def timestamp_of(event: Optional[LifecycleEvent]) -> Optional[datetime]:
    return event.timestamp if event is not None else None


def quote_literal(value: str) -> str:
    """Escape a value for use inside a double-quoted Logs Insights string."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def dig(data: Any, *path: str) -> Any:
    """Walk nested mappings; None when any step is missing or not a mapping."""
    cur = data
    for key in path:
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(key)
    return cur


class Snapshot(BaseModel):
    """Coalesced point-in-time view of one object's lifecycle."""

    model_config = ConfigDict(frozen=True)

    identity: Identity
    events: Tuple[LifecycleEvent, ...] = ()

    @property
    def body(self) -> Optional[Dict[str, Any]]:
        return None

    def summary_fields(self) -> List[Tuple[str, str]]:
        return []

    def timestamp_fields(self) -> List[Tuple[str, Optional[datetime]]]:
        return []

    def sections(self) -> List[Tuple[str, List[str]]]:
        return []


class KindHandler(ABC):
    """Classifier, coalescer and query descriptor for one object kind."""

    object_kind: ObjectKind
    resource: str
    aliases: Tuple[str, ...] = ()
    namespaced: bool = True

    @abstractmethod
    def classify(self, record: AuditRecord) -> Optional[LifecycleEvent]:
        """Return the lifecycle event for a record, or None when it is not one."""

    @abstractmethod
    def coalesce(self, identity: Identity, events: Iterable[LifecycleEvent]) -> Snapshot:
        """Fold events into a snapshot; events for other identities/kinds are ignored."""

    @abstractmethod
    def get_query(self, identity: Identity) -> str:
        ...

    @abstractmethod
    def describe_query(self, identity: Identity) -> str:
        ...

    def query_for(self, intent: QueryIntent, identity: Identity) -> str:
        if QueryIntent(intent) == QueryIntent.GET:
            return self.get_query(identity)
        return self.describe_query(identity)

    def identity_for(self, name: str, namespace: str = "") -> Identity:
        return Identity(namespace=namespace if self.namespaced else "", name=name)

    def relevant(self, identity: Identity, events: Iterable[LifecycleEvent]) -> List[LifecycleEvent]:
        return [e for e in events if e.object_kind == self.object_kind and e.identity == identity]

    # --- helpers shared by classifiers ---

    def decode_body(self, record: AuditRecord) -> Dict[str, Any]:
        """
        Validate responseObject as an object of this kind and return a copy
        with server-managed bookkeeping (managedFields) removed.
        """
        body = record.response_object
        if not isinstance(body, dict) or not body:
            raise MalformedRecordError("missing responseObject", audit_id=record.audit_id)
        kind = body.get("kind")
        if kind is not None and kind != self.object_kind.value:
            raise MalformedRecordError(
                f"responseObject kind {kind!r}, expected {self.object_kind.value!r}",
                audit_id=record.audit_id,
            )
        meta = body.get("metadata")
        name = dig(meta, "name")
        if not isinstance(name, str) or not name:
            raise MalformedRecordError("responseObject.metadata.name missing", audit_id=record.audit_id)
        if not isinstance(meta.get("namespace", ""), str):
            raise MalformedRecordError("responseObject.metadata.namespace is not a string", audit_id=record.audit_id)

        decoded = copy.deepcopy(body)
        decoded["metadata"].pop("managedFields", None)
        return decoded

    def body_identity(self, body: Mapping[str, Any]) -> Identity:
        meta = body.get("metadata") or {}
        return self.identity_for(meta.get("name", ""), meta.get("namespace", "") or "")

    def ref_identity(self, record: AuditRecord) -> Identity:
        ref = record.object_ref
        if ref is None:
            return Identity()
        return self.identity_for(ref.name, ref.namespace)

    def build_event(
        self,
        record: AuditRecord,
        event_kind: EventKind,
        identity: Identity,
        **fields: Any,
    ) -> Optional[LifecycleEvent]:
        if identity.is_empty:
            logger.debug("record %s has no object identity; dropped", record.audit_id or "<no auditID>")
            return None
        return LifecycleEvent(
            timestamp=record.request_received_timestamp,
            identity=identity,
            object_kind=self.object_kind,
            event_kind=event_kind,
            audit_id=record.audit_id,
            **fields,
        )

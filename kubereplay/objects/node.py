from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kubereplay.audit.models import AuditRecord

from .base import (
    Identity,
    KindHandler,
    LifecycleEvent,
    NodeEventKind,
    ObjectKind,
    Snapshot,
    canonical_order,
    latest_by_event_kind,
    latest_with_body,
    quote_literal,
    timestamp_of,
)

# csi/cni subresource traffic on node objects comes from node-local sidecars,
# not node lifecycle; it is excluded by the query rather than the classifier.
_NODE_QUERY_TEMPLATE = """
fields @timestamp, @message
| filter @logStream like "apiserver"
| filter verb like /{verbs}/
| filter requestURI like "nodes"
| filter requestURI not like "csi" and requestURI not like "cni"
| filter @message like "{name}"
| sort @timestamp asc
| limit 10000
"""


class NodeSnapshot(Snapshot):
    node: Optional[Dict[str, Any]] = None
    creation_time: Optional[datetime] = None
    last_updated_time: Optional[datetime] = None
    deletion_time: Optional[datetime] = None

    @property
    def body(self) -> Optional[Dict[str, Any]]:
        return self.node

    def timestamp_fields(self) -> List[Tuple[str, Optional[datetime]]]:
        return [
            ("CreationTime", self.creation_time),
            ("LastUpdatedTime", self.last_updated_time),
            ("DeletionTime", self.deletion_time),
        ]


class NodeHandler(KindHandler):
    """Node lifecycle: create, update (when tracked) and delete. Nodes are cluster-scoped."""

    object_kind = ObjectKind.NODE
    resource = "nodes"
    aliases = ("node", "nodes", "no")
    namespaced = False

    def __init__(self, track_updates: bool = True) -> None:
        self.track_updates = track_updates

    def classify(self, record: AuditRecord) -> Optional[LifecycleEvent]:
        verb = record.verb
        if verb == "create":
            body = self.decode_body(record)
            return self.build_event(
                record, NodeEventKind.CREATED, self.body_identity(body),
                decoded_object=body, description="Node created",
            )
        if verb == "update" and self.track_updates:
            body = self.decode_body(record)
            return self.build_event(
                record, NodeEventKind.UPDATED, self.body_identity(body),
                decoded_object=body, description="Node updated",
            )
        if verb == "delete":
            return self.build_event(
                record, NodeEventKind.DELETED, self.ref_identity(record), description="Node deleted"
            )
        return None

    def coalesce(self, identity: Identity, events: Iterable[LifecycleEvent]) -> NodeSnapshot:
        relevant = self.relevant(identity, events)
        latest = latest_by_event_kind(relevant)
        body_event = latest_with_body(latest.get(NodeEventKind.CREATED), latest.get(NodeEventKind.UPDATED))
        return NodeSnapshot(
            identity=identity,
            events=canonical_order(relevant),
            node=body_event.decoded_object if body_event else None,
            creation_time=timestamp_of(latest.get(NodeEventKind.CREATED)),
            last_updated_time=timestamp_of(latest.get(NodeEventKind.UPDATED)),
            deletion_time=timestamp_of(latest.get(NodeEventKind.DELETED)),
        )

    def _query(self, identity: Identity) -> str:
        verbs = "create|update|delete" if self.track_updates else "create|delete"
        return _NODE_QUERY_TEMPLATE.format(verbs=verbs, name=quote_literal(identity.name))

    def get_query(self, identity: Identity) -> str:
        return self._query(identity)

    def describe_query(self, identity: Identity) -> str:
        return self._query(identity)

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from kubereplay.audit.models import AuditRecord
from kubereplay.timeutil import format_instant

from .base import (
    Identity,
    KindHandler,
    LifecycleEvent,
    ObjectKind,
    PodEventKind,
    Snapshot,
    canonical_order,
    dig,
    latest_by_event_kind,
    latest_with_body,
    quote_literal,
    timestamp_of,
)

logger = logging.getLogger(__name__)

# Substrings in user.username / requestURI that identify an external
# scheduler extension (e.g. Karpenter) nominating a pod onto a node.
DEFAULT_NOMINATION_MARKERS: Tuple[str, ...] = ("karpenter",)

_POD_QUERY_TEMPLATE = """
fields @timestamp, @message
| filter @logStream like "apiserver"
| filter verb like /{verbs}/
| filter requestURI like "pods"
| filter @message like "{name}"
| filter requestURI like "{namespace}"
| sort @timestamp asc
| limit 10000
"""


class Nomination(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    node_name: str = ""
    username: str = ""


class PodSnapshot(Snapshot):
    pod: Optional[Dict[str, Any]] = None
    node_name: str = ""
    phase: str = ""
    creation_time: Optional[datetime] = None
    last_updated_time: Optional[datetime] = None
    bind_time: Optional[datetime] = None
    eviction_time: Optional[datetime] = None
    deletion_time: Optional[datetime] = None
    status_change_time: Optional[datetime] = None
    nominations: Tuple[Nomination, ...] = ()

    @property
    def body(self) -> Optional[Dict[str, Any]]:
        return self.pod

    def summary_fields(self) -> List[Tuple[str, str]]:
        return [
            ("NodeName", self.node_name or "N/A"),
            ("Phase", self.phase or "N/A"),
        ]

    def timestamp_fields(self) -> List[Tuple[str, Optional[datetime]]]:
        return [
            ("CreationTime", self.creation_time),
            ("LastUpdatedTime", self.last_updated_time),
            ("BindTime", self.bind_time),
            ("EvictionTime", self.eviction_time),
            ("StatusChangeTime", self.status_change_time),
            ("DeletionTime", self.deletion_time),
        ]

    def sections(self) -> List[Tuple[str, List[str]]]:
        lines = [
            f"{format_instant(n.timestamp)}  {n.node_name or '<unknown node>'}"
            + (f"  ({n.username})" if n.username else "")
            for n in self.nominations
        ]
        return [("Nominations", lines or ["<none>"])]


class PodHandler(KindHandler):
    """
    Pod lifecycle classification.

    The subresource is objectRef.subresource, or the segment after the pod name
    in requestURI; a namespace or pod named "rolebinding-demo" never matches.

    Predicates are evaluated in order, first match wins:
      create + binding       -> Bound (node from requestObject.target.name)
      create + eviction      -> Evicted
      create                 -> Created (body from responseObject)
      update                 -> Updated (body from responseObject)
      patch  + status        -> StatusChanged
      delete                 -> Deleted

    Nomination detection is a heuristic: an Updated event whose username or
    requestURI contains one of the markers is tagged, nothing more. It is not
    schema-driven and can miss or over-match.
    """

    object_kind = ObjectKind.POD
    resource = "pods"
    aliases = ("pod", "pods", "po")
    namespaced = True

    def __init__(self, nomination_markers: Sequence[str] = DEFAULT_NOMINATION_MARKERS) -> None:
        self.nomination_markers: Tuple[str, ...] = tuple(m.lower() for m in nomination_markers if m)

    def classify(self, record: AuditRecord) -> Optional[LifecycleEvent]:
        verb = record.verb
        sub = _subresource(record)

        if verb == "create" and sub == "binding":
            node = _target_node(record.request_object)
            if not node:
                logger.debug("binding record %s without requestObject.target.name; dropped", record.audit_id)
                return None
            return self.build_event(
                record,
                PodEventKind.BOUND,
                self.ref_identity(record),
                attributes={"nodeName": node},
                description=f"Pod bound to node {node}",
            )

        if verb == "create" and sub == "eviction":
            return self.build_event(
                record, PodEventKind.EVICTED, self.ref_identity(record), description="Pod evicted"
            )

        if verb == "create":
            body = self.decode_body(record)
            return self.build_event(
                record,
                PodEventKind.CREATED,
                self.body_identity(body),
                decoded_object=body,
                description="Pod created",
            )

        if verb == "update":
            body = self.decode_body(record)
            attributes: Dict[str, str] = {}
            nomination = self._is_nomination(record)
            description = "Pod updated"
            if nomination:
                node = _target_node(record.request_object) or _spec_node(record.request_object)
                if node:
                    attributes["nominatedNode"] = node
                if record.user.username:
                    attributes["user"] = record.user.username
                description = f"Pod nominated to node {node}" if node else "Pod nominated"
            return self.build_event(
                record,
                PodEventKind.UPDATED,
                self.body_identity(body),
                decoded_object=body,
                attributes=attributes,
                description=description,
                nomination=nomination,
            )

        if verb == "patch" and sub == "status":
            phase = _phase(record.request_object) or _phase(record.response_object)
            return self.build_event(
                record,
                PodEventKind.STATUS_CHANGED,
                self.ref_identity(record),
                attributes={"phase": phase} if phase else {},
                description=f"Phase changed to {phase}" if phase else "",
            )

        if verb == "delete":
            return self.build_event(
                record, PodEventKind.DELETED, self.ref_identity(record), description="Pod deleted"
            )

        return None

    def _is_nomination(self, record: AuditRecord) -> bool:
        haystacks = (record.user.username.lower(), record.request_uri.lower())
        return any(marker in h for marker in self.nomination_markers for h in haystacks)

    def coalesce(self, identity: Identity, events: Iterable[LifecycleEvent]) -> PodSnapshot:
        relevant = self.relevant(identity, events)
        latest = latest_by_event_kind(relevant)

        body_event = latest_with_body(latest.get(PodEventKind.CREATED), latest.get(PodEventKind.UPDATED))
        pod = body_event.decoded_object if body_event else None

        bound = latest.get(PodEventKind.BOUND)
        node_name = bound.attributes.get("nodeName", "") if bound else ""
        if not node_name:
            node_name = _spec_node(pod) or ""

        status = latest.get(PodEventKind.STATUS_CHANGED)
        phase = status.attributes.get("phase", "") if status else ""
        if not phase:
            phase = _phase(pod) or ""

        nominations = sorted(
            (
                Nomination(
                    timestamp=e.timestamp,
                    node_name=e.attributes.get("nominatedNode", ""),
                    username=e.attributes.get("user", ""),
                )
                for e in relevant
                if e.nomination
            ),
            key=lambda n: (n.timestamp, n.node_name, n.username),
        )

        return PodSnapshot(
            identity=identity,
            events=canonical_order(relevant),
            pod=pod,
            node_name=node_name,
            phase=phase,
            creation_time=timestamp_of(latest.get(PodEventKind.CREATED)),
            last_updated_time=timestamp_of(latest.get(PodEventKind.UPDATED)),
            bind_time=timestamp_of(bound),
            eviction_time=timestamp_of(latest.get(PodEventKind.EVICTED)),
            deletion_time=timestamp_of(latest.get(PodEventKind.DELETED)),
            status_change_time=timestamp_of(status),
            nominations=tuple(nominations),
        )

    def get_query(self, identity: Identity) -> str:
        return _POD_QUERY_TEMPLATE.format(
            verbs="create|update|delete",
            name=quote_literal(identity.name),
            namespace=quote_literal(identity.namespace),
        )

    def describe_query(self, identity: Identity) -> str:
        return _POD_QUERY_TEMPLATE.format(
            verbs="create|update|patch|delete",
            name=quote_literal(identity.name),
            namespace=quote_literal(identity.namespace),
        )


def _target_node(request_object: Any) -> Optional[str]:
    node = dig(request_object, "target", "name")
    return node if isinstance(node, str) and node else None


def _spec_node(obj: Any) -> Optional[str]:
    node = dig(obj, "spec", "nodeName")
    return node if isinstance(node, str) and node else None


def _phase(obj: Any) -> Optional[str]:
    phase = dig(obj, "status", "phase")
    return phase if isinstance(phase, str) and phase else None


def _subresource(record: AuditRecord) -> str:
    ref = record.object_ref
    if ref is not None and ref.subresource:
        return ref.subresource
    # /api/v1/namespaces/<ns>/pods/<name>/<subresource>
    parts = record.request_uri.split("?", 1)[0].rstrip("/").split("/")
    if len(parts) >= 3 and parts[-3] == "pods":
        return parts[-1]
    return ""

"""
Pytest fixtures for kubereplay tests.

Provides:
- audit_entry: factory for raw audit entries as decoded JSON dicts
- make_record: same, validated into an AuditRecord
- pod_body / node_body: factories for API object bodies
- ts: factory for UTC timestamps relative to a fixed base instant
- pod_handler / node_handler / registry / dispatcher
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest

from kubereplay.audit.models import AuditRecord
from kubereplay.objects import Dispatcher, KindRegistry, NodeHandler, PodHandler

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Keep tests away from ~/.kubereplay and the caller's AWS/KUBEREPLAY env."""
    monkeypatch.setenv("KUBEREPLAY_CONFIG", str(tmp_path / "absent-config.yaml"))
    for name in ("AWS_REGION", "AWS_DEFAULT_REGION", "KUBEREPLAY_REGION", "KUBEREPLAY_LOG_LEVEL",
                 "KUBEREPLAY_MAX_WORKERS", "KUBEREPLAY_DEFAULT_START", "KUBEREPLAY_NOMINATION_MARKERS",
                 "KUBEREPLAY_TRACK_NODE_UPDATES", "KUBEREPLAY_QUERY_TIMEOUT_S", "KUBEREPLAY_POLL_INTERVAL_S"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def ts():
    def _ts(seconds: float = 0) -> datetime:
        return BASE_TIME + timedelta(seconds=seconds)

    return _ts


@pytest.fixture()
def pod_body():
    def _pod_body(name: str = "nginx", namespace: str = "default", **extra: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "kind": "Pod",
            "apiVersion": "v1",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"uid-{namespace}-{name}",
                "managedFields": [{"manager": "kubectl", "operation": "Update"}],
            },
            "spec": {"containers": [{"name": "app", "image": "nginx:1.25"}]},
        }
        body.update(extra)
        return body

    return _pod_body


@pytest.fixture()
def node_body():
    def _node_body(name: str = "ip-10-0-1-23.ec2.internal", **extra: Any) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "kind": "Node",
            "apiVersion": "v1",
            "metadata": {
                "name": name,
                "labels": {"kubernetes.io/hostname": name},
                "managedFields": [{"manager": "kubelet", "operation": "Update"}],
            },
        }
        body.update(extra)
        return body

    return _node_body


@pytest.fixture()
def audit_entry():
    counter = {"n": 0}

    def _audit_entry(
        verb: str,
        resource: str = "pods",
        name: str = "nginx",
        namespace: str = "default",
        uri: Optional[str] = None,
        at: datetime = BASE_TIME,
        request_object: Optional[Dict[str, Any]] = None,
        response_object: Optional[Dict[str, Any]] = None,
        username: str = "system:serviceaccount:kube-system:replicaset-controller",
        subresource: str = "",
    ) -> Dict[str, Any]:
        counter["n"] += 1
        if uri is None:
            prefix = f"/api/v1/namespaces/{namespace}/{resource}" if namespace else f"/api/v1/{resource}"
            uri = prefix if verb == "create" else f"{prefix}/{name}"
            if subresource:
                uri = f"{prefix}/{name}/{subresource}"
        entry: Dict[str, Any] = {
            "kind": "Event",
            "apiVersion": "audit.k8s.io/v1",
            "level": "RequestResponse",
            "auditID": f"audit-{counter['n']:04d}",
            "stage": "ResponseComplete",
            "requestURI": uri,
            "verb": verb,
            "user": {"username": username, "groups": ["system:authenticated"]},
            "objectRef": {
                "resource": resource,
                "namespace": namespace,
                "name": name,
                "apiVersion": "v1",
            },
            "responseStatus": {"metadata": {}, "code": 201 if verb == "create" else 200},
            "requestReceivedTimestamp": _iso(at),
            "stageTimestamp": _iso(at + timedelta(milliseconds=5)),
        }
        if subresource:
            entry["objectRef"]["subresource"] = subresource
        if request_object is not None:
            entry["requestObject"] = request_object
        if response_object is not None:
            entry["responseObject"] = response_object
        return entry

    return _audit_entry


@pytest.fixture()
def make_record(audit_entry):
    def _make_record(verb: str, **kwargs: Any) -> AuditRecord:
        return AuditRecord.from_mapping(audit_entry(verb, **kwargs))

    return _make_record


@pytest.fixture()
def write_log(tmp_path):
    def _write_log(entries, name: str = "audit.log", extra_lines=()) -> str:
        path = tmp_path / name
        lines = [json.dumps(e) for e in entries] + list(extra_lines)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    return _write_log


@pytest.fixture()
def pod_handler() -> PodHandler:
    return PodHandler()


@pytest.fixture()
def node_handler() -> NodeHandler:
    return NodeHandler()


@pytest.fixture()
def registry(pod_handler, node_handler) -> KindRegistry:
    return KindRegistry([pod_handler, node_handler])


@pytest.fixture()
def dispatcher(registry) -> Dispatcher:
    return Dispatcher(registry)

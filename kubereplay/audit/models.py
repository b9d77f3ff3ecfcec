from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kubereplay.errors import MalformedRecordError
from kubereplay.timeutil import ensure_utc

# Mirrors the audit.k8s.io/v1 Event JSON shape. Wire names are camelCase aliases.
_RECORD_CONFIG = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class User(BaseModel):
    model_config = _RECORD_CONFIG

    username: str = ""
    uid: str = ""
    groups: List[str] = Field(default_factory=list)


class ObjectReference(BaseModel):
    model_config = _RECORD_CONFIG

    resource: str = ""
    namespace: str = ""
    name: str = ""
    uid: str = ""
    api_group: str = Field(default="", alias="apiGroup")
    api_version: str = Field(default="", alias="apiVersion")
    resource_version: str = Field(default="", alias="resourceVersion")
    subresource: str = ""


class ResponseStatus(BaseModel):
    model_config = _RECORD_CONFIG

    code: Optional[int] = None
    status: str = ""
    reason: str = ""
    message: str = ""


class AuditRecord(BaseModel):
    """One decoded API-server audit entry (a raw audit record)."""

    model_config = _RECORD_CONFIG

    kind: str = "Event"
    api_version: str = Field(default="audit.k8s.io/v1", alias="apiVersion")
    level: str = ""
    audit_id: str = Field(default="", alias="auditID")
    stage: str = ""
    request_uri: str = Field(default="", alias="requestURI")
    verb: str
    user: User = Field(default_factory=User)
    object_ref: Optional[ObjectReference] = Field(default=None, alias="objectRef")
    response_status: Optional[ResponseStatus] = Field(default=None, alias="responseStatus")
    request_object: Optional[Dict[str, Any]] = Field(default=None, alias="requestObject")
    response_object: Optional[Dict[str, Any]] = Field(default=None, alias="responseObject")
    request_received_timestamp: datetime = Field(alias="requestReceivedTimestamp")
    stage_timestamp: Optional[datetime] = Field(default=None, alias="stageTimestamp")

    @field_validator("request_received_timestamp", "stage_timestamp")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def resource(self) -> str:
        return self.object_ref.resource if self.object_ref else ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AuditRecord":
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            audit_id = data.get("auditID", "") if isinstance(data.get("auditID"), str) else ""
            raise MalformedRecordError(_summarize(e), audit_id=audit_id) from e

    @classmethod
    def from_json(cls, text: str | bytes) -> "AuditRecord":
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedRecordError(f"invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedRecordError(f"expected a JSON object, got {type(data).__name__}")
        return cls.from_mapping(data)


def _summarize(err: ValidationError) -> str:
    parts = []
    for item in err.errors()[:3]:
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "; ".join(parts) or "validation failed"

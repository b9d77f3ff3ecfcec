"""Kubernetes API-server audit records."""

from kubereplay.audit.models import AuditRecord, ObjectReference, ResponseStatus, User

__all__ = [
    "AuditRecord",
    "ObjectReference",
    "ResponseStatus",
    "User",
]

"""Errors raised by kubereplay."""

from __future__ import annotations


class KubeReplayError(Exception):
    """Base error for replay operations."""

    def __init__(self, message: str, code: str = "KUBEREPLAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigurationError(KubeReplayError):
    """Invalid flags, settings or arguments supplied by the user."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")


class UnsupportedKindError(ConfigurationError):
    """Object kind has no registered handler."""

    def __init__(self, kind: str, supported: tuple[str, ...] = ()):
        message = f"unsupported object type: {kind}"
        if supported:
            message += f" (supported: {', '.join(supported)})"
        super().__init__(message)
        self.code = "UNSUPPORTED_KIND"
        self.kind = kind
        self.supported = supported


class MalformedRecordError(KubeReplayError):
    """An audit record (or its body) could not be decoded."""

    def __init__(self, reason: str, audit_id: str = ""):
        super().__init__(f"malformed audit record: {reason}", "MALFORMED_RECORD")
        self.reason = reason
        self.audit_id = audit_id


class ProviderError(KubeReplayError):
    """Audit records could not be fetched from the source."""

    def __init__(self, message: str, code: str = "PROVIDER_ERROR"):
        super().__init__(message, code)


class QueryTimeoutError(ProviderError):
    """Remote query did not complete in time."""

    def __init__(self, query_id: str, timeout_s: float):
        super().__init__(
            f"query {query_id} did not complete within {timeout_s:g}s",
            "QUERY_TIMEOUT",
        )
        self.query_id = query_id
        self.timeout_s = timeout_s


class ProviderCancelledError(ProviderError):
    """Fetch was cancelled by the caller."""

    def __init__(self, query_id: str = ""):
        super().__init__(f"query {query_id or '<pending>'} was cancelled", "QUERY_CANCELLED")
        self.query_id = query_id

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, stop_when_event_set, wait_fixed

from kubereplay.audit.models import AuditRecord
from kubereplay.errors import ConfigurationError, ProviderCancelledError, ProviderError, QueryTimeoutError
from kubereplay.objects.base import Identity
from kubereplay.timeutil import TimeWindow

from .base import decode_records

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 300.0
DEFAULT_POLL_INTERVAL_S = 0.5
# Logs Insights returns at most this many rows per query.
MAX_RESULT_ROWS = 10000

_PENDING = {"Scheduled", "Running"}


def _still_pending(result: Dict[str, Any]) -> bool:
    return result.get("status") in _PENDING


class CloudWatchProvider:
    """
    Runs a Logs Insights query against an EKS audit log group and polls it to
    completion at a fixed interval, bounded by an overall timeout.
    """

    def __init__(
        self,
        log_group: str,
        region: str = "",
        client: Any = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        if not log_group:
            raise ConfigurationError("a CloudWatch log group is required")
        self.log_group = log_group
        self.region = region
        self.timeout_s = timeout_s
        self.poll_interval_s = poll_interval_s
        self.cancel = cancel
        self.skipped_messages = 0
        if client is None:
            try:
                client = boto3.session.Session(region_name=region or None).client("logs")
            except BotoCoreError as e:
                raise ProviderError(f"failed to initialize CloudWatch Logs client: {e}") from e
        self.client = client

    def _cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def start_query(self, query: str, window: TimeWindow) -> str:
        if window.open_start:
            raise ConfigurationError("a CloudWatch query needs a bounded --start")
        try:
            resp = self.client.start_query(
                logGroupIdentifiers=[self.log_group],
                startTime=int(window.start.timestamp()),
                endTime=int(window.end.timestamp()),
                queryString=query,
            )
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"failed to start CloudWatch query on {self.log_group}: {e}") from e
        query_id = resp["queryId"]
        logger.info("started CloudWatch query %s on %s", query_id, self.log_group)
        return query_id

    def _poll(self, query_id: str) -> Dict[str, Any]:
        try:
            result = self.client.get_query_results(queryId=query_id)
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"failed to fetch results for query {query_id}: {e}") from e
        logger.debug("query %s status=%s", query_id, result.get("status"))
        return result

    def _stop_query(self, query_id: str) -> None:
        try:
            self.client.stop_query(queryId=query_id)
        except (BotoCoreError, ClientError) as e:
            logger.warning("failed to stop query %s: %s", query_id, e)

    def wait_for_results(self, query_id: str) -> Dict[str, Any]:
        stop = stop_after_delay(self.timeout_s)
        if self.cancel is not None:
            stop = stop | stop_when_event_set(self.cancel)
        retrying = Retrying(
            stop=stop,
            wait=wait_fixed(self.poll_interval_s),
            retry=retry_if_result(_still_pending),
        )
        try:
            result = retrying(self._poll, query_id)
        except RetryError as e:
            self._stop_query(query_id)
            if self._cancelled():
                raise ProviderCancelledError(query_id) from e
            raise QueryTimeoutError(query_id, self.timeout_s) from e
        except BaseException:
            # includes KeyboardInterrupt; the server-side query is stopped either way
            self._stop_query(query_id)
            raise

        status = result.get("status")
        if status != "Complete":
            raise ProviderError(f"query {query_id} ended with status {status}", "QUERY_FAILED")
        return result

    def get_events(self, window: TimeWindow, identity: Identity, query: str) -> List[AuditRecord]:
        if self._cancelled():
            raise ProviderCancelledError()
        query_id = self.start_query(query, window)
        result = self.wait_for_results(query_id)

        rows = result.get("results") or []
        if len(rows) >= MAX_RESULT_ROWS:
            logger.warning(
                "query %s for %s hit the %d row limit; narrow --start/--end to see all records",
                query_id, identity, MAX_RESULT_ROWS,
            )
        messages = [
            field.get("value", "")
            for row in rows
            for field in row
            if field.get("field") == "@message"
        ]
        records, skipped = decode_records(messages, f"cloudwatch:{self.log_group}")
        self.skipped_messages = skipped
        logger.info("query %s returned %d audit record(s)", query_id, len(records))
        return records

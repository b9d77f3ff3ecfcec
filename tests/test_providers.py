from __future__ import annotations

import gzip
import json
import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from kubereplay.audit.providers import CloudWatchProvider, FileProvider, decode_records
from kubereplay.errors import (
    ConfigurationError,
    ProviderCancelledError,
    ProviderError,
    QueryTimeoutError,
)
from kubereplay.objects import Identity
from kubereplay.timeutil import TimeWindow

IDENTITY = Identity("default", "nginx")


@pytest.fixture()
def window(ts):
    return TimeWindow(ts(0), ts(3600))


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, operation)


def _rows(*messages):
    return [
        [{"field": "@timestamp", "value": "2024-05-01 12:00:00.000"}, {"field": "@message", "value": m}]
        for m in messages
    ]


class TestFileProvider:
    def test_reads_every_valid_line(self, write_log, audit_entry, window):
        path = write_log([audit_entry("create"), audit_entry("delete")])
        records = FileProvider(path).get_events(window, IDENTITY)
        assert [r.verb for r in records] == ["create", "delete"]

    def test_truncated_line_is_skipped(self, write_log, audit_entry, window):
        entries = [audit_entry("create"), audit_entry("update"), audit_entry("delete")]
        truncated = json.dumps(audit_entry("patch"))[:40]
        path = write_log(entries, extra_lines=[truncated])

        provider = FileProvider(path)
        records = provider.get_events(window, IDENTITY)

        assert len(records) == 3
        assert provider.skipped_lines == 1

    def test_blank_lines_are_not_counted_as_malformed(self, write_log, audit_entry, window):
        path = write_log([audit_entry("delete")], extra_lines=["", "   "])
        provider = FileProvider(path)
        assert len(provider.get_events(window, IDENTITY)) == 1
        assert provider.skipped_lines == 0

    def test_gzip_log(self, tmp_path, audit_entry, window):
        path = tmp_path / "audit.log.gz"
        with gzip.open(path, "wt", encoding="utf-8") as f:
            f.write(json.dumps(audit_entry("delete")) + "\n")
        assert [r.verb for r in FileProvider(path).get_events(window, IDENTITY)] == ["delete"]

    def test_whole_file_is_returned_regardless_of_window(self, write_log, audit_entry, ts):
        path = write_log([audit_entry("delete", at=ts(-86400))])
        narrow = TimeWindow(ts(0), ts(1))
        assert len(FileProvider(path).get_events(narrow, IDENTITY)) == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(ProviderError) as exc:
            FileProvider(tmp_path / "nope.log")
        assert exc.value.code == "AUDIT_LOG_NOT_FOUND"

    def test_directory_is_not_a_log(self, tmp_path):
        with pytest.raises(ProviderError):
            FileProvider(tmp_path)


def test_decode_records_reports_skips(audit_entry, caplog):
    payloads = [json.dumps(audit_entry("delete")), "{oops", "", json.dumps({"verb": "get"})]
    with caplog.at_level("WARNING"):
        records, skipped = decode_records(payloads, "test")
    assert len(records) == 1
    assert skipped == 2
    assert "skipped 2" in caplog.text


class TestCloudWatchProvider:
    def _provider(self, client, **kwargs):
        kwargs.setdefault("timeout_s", 2.0)
        kwargs.setdefault("poll_interval_s", 0)
        return CloudWatchProvider("/aws/eks/prod/cluster", client=client, **kwargs)

    def test_log_group_required(self):
        with pytest.raises(ConfigurationError):
            CloudWatchProvider("", client=MagicMock())

    def test_polls_until_complete(self, window, audit_entry):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-1"}
        client.get_query_results.side_effect = [
            {"status": "Scheduled", "results": []},
            {"status": "Running", "results": []},
            {"status": "Complete", "results": _rows(json.dumps(audit_entry("create")), json.dumps(audit_entry("delete")))},
        ]

        records = self._provider(client).get_events(window, IDENTITY, "fields @message")

        assert [r.verb for r in records] == ["create", "delete"]
        assert client.get_query_results.call_count == 3
        kwargs = client.start_query.call_args.kwargs
        assert kwargs["logGroupIdentifiers"] == ["/aws/eks/prod/cluster"]
        assert kwargs["startTime"] == int(window.start.timestamp())
        assert kwargs["endTime"] == int(window.end.timestamp())
        assert kwargs["queryString"] == "fields @message"
        client.stop_query.assert_not_called()

    def test_malformed_messages_are_skipped(self, window, audit_entry):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-1"}
        client.get_query_results.return_value = {
            "status": "Complete",
            "results": _rows(json.dumps(audit_entry("delete")), '{"verb": "create", "requestRec'),
        }
        provider = self._provider(client)
        assert len(provider.get_events(window, IDENTITY, "q")) == 1
        assert provider.skipped_messages == 1

    def test_timeout_stops_query(self, window):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-slow"}
        client.get_query_results.return_value = {"status": "Running"}

        with pytest.raises(QueryTimeoutError) as exc:
            self._provider(client, timeout_s=0.05, poll_interval_s=0.01).get_events(window, IDENTITY, "q")

        assert exc.value.query_id == "q-slow"
        assert isinstance(exc.value, ProviderError)
        client.stop_query.assert_called_once_with(queryId="q-slow")

    @pytest.mark.parametrize("status", ["Failed", "Cancelled", "Timeout"])
    def test_terminal_failure_status(self, window, status):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-1"}
        client.get_query_results.return_value = {"status": status}
        with pytest.raises(ProviderError) as exc:
            self._provider(client).get_events(window, IDENTITY, "q")
        assert exc.value.code == "QUERY_FAILED"
        assert status in exc.value.message

    def test_start_query_client_error(self, window):
        client = MagicMock()
        client.start_query.side_effect = _client_error("StartQuery")
        with pytest.raises(ProviderError) as exc:
            self._provider(client).get_events(window, IDENTITY, "q")
        assert "/aws/eks/prod/cluster" in exc.value.message

    def test_poll_client_error(self, window):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-1"}
        client.get_query_results.side_effect = _client_error("GetQueryResults")
        with pytest.raises(ProviderError):
            self._provider(client).get_events(window, IDENTITY, "q")
        client.stop_query.assert_called_once_with(queryId="q-1")

    def test_interrupt_while_polling_stops_query(self, window):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-1"}
        client.get_query_results.side_effect = [{"status": "Running"}, KeyboardInterrupt()]
        with pytest.raises(KeyboardInterrupt):
            self._provider(client).get_events(window, IDENTITY, "q")
        client.stop_query.assert_called_once_with(queryId="q-1")

    def test_failed_stop_does_not_mask_the_original_error(self, window):
        client = MagicMock()
        client.start_query.return_value = {"queryId": "q-1"}
        client.get_query_results.side_effect = KeyboardInterrupt()
        client.stop_query.side_effect = _client_error("StopQuery")
        with pytest.raises(KeyboardInterrupt):
            self._provider(client).get_events(window, IDENTITY, "q")

    def test_open_window_is_rejected(self, ts):
        client = MagicMock()
        window = TimeWindow.from_flags(start=None, now=ts(0))
        with pytest.raises(ConfigurationError):
            self._provider(client).get_events(window, IDENTITY, "q")
        client.start_query.assert_not_called()

    def test_cancelled_before_start(self, window):
        client = MagicMock()
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ProviderCancelledError):
            self._provider(client, cancel=cancel).get_events(window, IDENTITY, "q")
        client.start_query.assert_not_called()

    def test_cancelled_while_polling(self, window):
        client = MagicMock()
        cancel = threading.Event()
        client.start_query.return_value = {"queryId": "q-1"}

        def poll(**_):
            cancel.set()
            return {"status": "Running"}

        client.get_query_results.side_effect = poll

        with pytest.raises(ProviderCancelledError):
            self._provider(client, cancel=cancel, timeout_s=30).get_events(window, IDENTITY, "q")
        client.stop_query.assert_called_once_with(queryId="q-1")

import json
import socket
import urllib.error
import urllib.request
from datetime import datetime, timedelta, timezone

import pytest

from nodeproblem.condition_manager import ConditionManager, RealClock
from nodeproblem.k8s_exporter import K8sExporter, new_exporter, wait_for_api_server_ready
from nodeproblem.options import NodeProblemDetectorOptions
from nodeproblem.problem_client import FakeProblemClient
from nodeproblem.rules import Condition, ConditionStatus, Event, Severity, Status


class RecordingClient(FakeProblemClient):
    def __init__(self, failures=0):
        super().__init__()
        self.failures = failures
        self.node_calls = 0
        self.events = []

    def event(self, event_type, source, reason, message):
        self.events.append((event_type, source, reason, message))

    def get_node(self):
        self.node_calls += 1
        if self.node_calls <= self.failures:
            raise ConnectionError("not ready")
        return {"metadata": {"name": "test-node"}}


def _free_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _exporter(client):
    return K8sExporter(client, ConditionManager(client, RealClock(), timedelta(minutes=1)))


def test_wait_returns_after_node_becomes_readable():
    client = RecordingClient(failures=2)
    wait_for_api_server_ready(client, timedelta(milliseconds=5), timedelta(seconds=5))
    assert client.node_calls == 3


def test_wait_checks_immediately():
    client = RecordingClient()
    wait_for_api_server_ready(client, timedelta(seconds=10), timedelta(seconds=1))
    assert client.node_calls == 1


def test_wait_times_out():
    client = FakeProblemClient()
    with pytest.raises(TimeoutError):
        wait_for_api_server_ready(client, timedelta(milliseconds=5), timedelta(milliseconds=30))


def test_new_exporter_disabled_returns_none():
    options = NodeProblemDetectorOptions(enable_k8s_exporter=False)
    assert new_exporter(options, RecordingClient()) is None


def test_new_exporter_with_client():
    client = RecordingClient()
    options = NodeProblemDetectorOptions(
        server_port=0,
        api_server_wait_interval=timedelta(milliseconds=5),
        api_server_wait_timeout=timedelta(seconds=1),
    )
    exporter = new_exporter(options, client)
    try:
        assert exporter.client is client
        assert client.node_calls == 1
    finally:
        exporter.stop()


def test_export_problems_sends_events_and_queues_conditions():
    client = RecordingClient()
    exporter = _exporter(client)
    now = datetime.now(timezone.utc)
    condition = Condition("TestCondition", ConditionStatus.TRUE, now, "Bad", "broken")
    status = Status(
        source="test",
        events=[
            Event(Severity.WARN, now, "TestReason", "test message"),
            Event(Severity.INFO, now, "Other", "info message"),
        ],
        conditions=[condition],
    )
    exporter.export_problems(status)
    assert client.events == [
        ("Warning", "test", "TestReason", "test message"),
        ("Normal", "test", "Other", "info message"),
    ]
    assert exporter.condition_manager.need_updates() is True
    assert exporter.condition_manager.get_conditions() == [condition]


def test_http_reporting_serves_health_and_conditions():
    client = RecordingClient()
    exporter = _exporter(client)
    condition = Condition("TestCondition", ConditionStatus.TRUE, None, "Bad", "broken")
    exporter.condition_manager.update_condition(condition)
    exporter.condition_manager.need_updates()
    port = _free_port()
    exporter.start_http_reporting("127.0.0.1", port)
    try:
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/healthz", timeout=5) as reply:
            assert reply.status == 200
            assert reply.read() == b"ok"
        with urllib.request.urlopen(f"http://127.0.0.1:{port}/conditions", timeout=5) as reply:
            data = json.loads(reply.read())
        assert [item["type"] for item in data] == ["TestCondition"]
        assert data[0]["status"] == "True"
        assert data[0]["reason"] == "Bad"
        with pytest.raises(urllib.error.HTTPError) as info:
            urllib.request.urlopen(f"http://127.0.0.1:{port}/missing", timeout=5)
        assert info.value.code == 404
    finally:
        exporter.stop()


def test_http_reporting_disabled_for_non_positive_port():
    exporter = _exporter(RecordingClient())
    exporter.start_http_reporting("127.0.0.1", 0)
    assert exporter._server is None
    exporter.stop()
    assert exporter.condition_manager.get_conditions() == []


def test_stop_closes_server():
    exporter = _exporter(RecordingClient())
    port = _free_port()
    exporter.start_http_reporting("127.0.0.1", port)
    exporter.stop()
    with pytest.raises(urllib.error.URLError):
        urllib.request.urlopen(f"http://127.0.0.1:{port}/healthz", timeout=2)
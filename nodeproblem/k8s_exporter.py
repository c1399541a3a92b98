"""Exporter that reports problems to the Kubernetes API server."""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
import time
from datetime import timedelta
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from .condition_manager import ConditionManager, RealClock
from .options import NodeProblemDetectorOptions
from .problem_client import NodeProblemClient, ProblemClient, get_kube_client_config
from .rules import Condition, ConditionStatus, Severity, Status

__all__ = ["K8sExporter", "wait_for_api_server_ready", "new_exporter"]

log = logging.getLogger(__name__)

_EVENT_TYPES = {Severity.INFO: "Normal", Severity.WARN: "Warning"}


def _api_event_type(severity: Severity) -> str:
    return _EVENT_TYPES.get(Severity(severity), "Normal")


def _condition_json(condition: Condition) -> dict[str, Any]:
    return {
        "type": condition.type,
        "status": ConditionStatus(condition.status).value,
        "transition": condition.transition.isoformat() if condition.transition else None,
        "reason": condition.reason,
        "message": condition.message,
    }


def wait_for_api_server_ready(
    client: ProblemClient, interval: timedelta, timeout: timedelta
) -> None:
    """Poll until the node object can be read; raise TimeoutError if it never can.

    The first check happens immediately. Being able to read the node means the
    server is ready and the access permissions are set correctly.
    """
    deadline = time.monotonic() + timeout.total_seconds()
    pause = max(interval.total_seconds(), 0.0)
    while True:
        try:
            client.get_node()
            return
        except Exception as exc:
            log.error("Can't get node object: %s", exc)
            last_error = exc
        if time.monotonic() + pause > deadline:
            raise TimeoutError(
                f"timed out waiting for the node object: {last_error}"
            ) from last_error
        time.sleep(pause)


class K8sExporter:
    """Sends events to the API server and keeps node conditions in sync."""

    def __init__(self, client: ProblemClient, condition_manager: ConditionManager) -> None:
        self.client = client
        self.condition_manager = condition_manager
        self._server: ThreadingHTTPServer | None = None
        self._server_thread: threading.Thread | None = None

    def export_problems(self, status: Status) -> None:
        for event in status.events:
            self.client.event(
                _api_event_type(event.severity), status.source, event.reason, event.message
            )
        for condition in status.conditions:
            self.condition_manager.update_condition(condition)

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        exporter = self

        class Handler(BaseHTTPRequestHandler):
            def _reply(self, code: int, body: bytes, content_type: str) -> None:
                self.send_response(code)
                self.send_header("Content-Type", content_type)
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def do_GET(self) -> None:  # noqa: N802
                path = self.path.split("?", 1)[0]
                if path == "/healthz":
                    self._reply(HTTPStatus.OK, b"ok", "text/plain; charset=utf-8")
                elif path == "/conditions":
                    conditions = [
                        _condition_json(c) for c in exporter.condition_manager.get_conditions()
                    ]
                    body = json.dumps(conditions).encode("utf-8")
                    self._reply(HTTPStatus.OK, body, "application/json")
                else:
                    self._reply(HTTPStatus.NOT_FOUND, b"404 page not found\n", "text/plain")

            def log_message(self, format: str, *args: Any) -> None:
                log.debug(format, *args)

        return Handler

    def start_http_reporting(self, address: str, port: int) -> None:
        """Serve /healthz and /conditions on the given address; port <= 0 disables it."""
        if port <= 0:
            return
        self._server = ThreadingHTTPServer((address, port), self._make_handler())
        self._server_thread = threading.Thread(
            target=self._server.serve_forever, name="npd-http", daemon=True
        )
        self._server_thread.start()

    def stop(self) -> None:
        """Shut down the HTTP server and the condition sync loop."""
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._server_thread is not None:
            self._server_thread.join()
            self._server_thread = None
        self.condition_manager.stop()


def new_exporter(
    options: NodeProblemDetectorOptions, client: ProblemClient | None = None
) -> K8sExporter | None:
    """Create and start the exporter, or return None if it is disabled.

    Blocks until the API server is ready or the configured wait times out.
    """
    if not options.enable_k8s_exporter:
        return None

    if client is None:
        config = get_kube_client_config(options.api_server_override)
        config.user_agent = os.path.basename(sys.argv[0]) if sys.argv else "node-problem-detector"
        config.qps = options.qps
        config.burst = options.burst
        client = NodeProblemClient(config, options.node_name, options.event_namespace)

    log.info(
        "Waiting for kube-apiserver to be ready (timeout %s)...", options.api_server_wait_timeout
    )
    try:
        wait_for_api_server_ready(
            client, options.api_server_wait_interval, options.api_server_wait_timeout
        )
    except TimeoutError as exc:
        log.warning(
            "kube-apiserver did not become ready: timed out on waiting for kube-apiserver "
            "to return the node object: %s",
            exc,
        )

    exporter = K8sExporter(
        client,
        ConditionManager(client, RealClock(), options.k8s_exporter_heartbeat_period),
    )
    exporter.start_http_reporting(options.server_address, options.server_port)
    exporter.condition_manager.start()
    return exporter
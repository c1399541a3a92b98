"""Client that reports node conditions and events to the Kubernetes API server."""

from __future__ import annotations

import abc
import json
import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol, Sequence
from urllib.parse import parse_qs, quote, urlsplit

import requests

from .rules import Condition, ConditionStatus

__all__ = [
    "NodeCondition",
    "ObjectReference",
    "ClientConfig",
    "ProblemClient",
    "NodeProblemClient",
    "FakeProblemClient",
    "convert_to_api_condition",
    "generate_patch",
    "get_node_ref",
    "get_config_overrides",
    "get_kube_client_config",
]

log = logging.getLogger(__name__)

API_VERSION = "v1"
DEFAULT_SERVICE_ACCOUNT_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/token"
_IN_CLUSTER_CA_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt"
_DEFAULT_IN_CLUSTER_CONFIG = True
_DEFAULT_USE_SERVICE_ACCOUNT = False

_RETRY_STEPS = 5
_RETRY_DELAY = 0.01
_RETRY_JITTER = 0.1
_REQUEST_TIMEOUT = 30.0
_STRATEGIC_MERGE_PATCH = "application/strategic-merge-patch+json"

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f'strconv.ParseBool: parsing "{text}": invalid syntax')


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(text: str | None) -> datetime | None:
    if not text:
        return None
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def _json_compact(value: Any) -> str:
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


@dataclass
class NodeCondition:
    """A node condition in the form the API server stores it."""

    type: str
    status: str
    last_heartbeat_time: datetime | None = None
    last_transition_time: datetime | None = None
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "lastHeartbeatTime": _format_time(self.last_heartbeat_time),
            "lastTransitionTime": _format_time(self.last_transition_time),
        }
        if self.reason:
            data["reason"] = self.reason
        if self.message:
            data["message"] = self.message
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NodeCondition":
        return cls(
            type=data.get("type", ""),
            status=data.get("status", ""),
            last_heartbeat_time=_parse_time(data.get("lastHeartbeatTime")),
            last_transition_time=_parse_time(data.get("lastTransitionTime")),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )


@dataclass(frozen=True)
class ObjectReference:
    """Reference to the object an event is about."""

    kind: str = ""
    name: str = ""
    uid: str = ""
    namespace: str = ""

    def to_dict(self) -> dict[str, str]:
        items = (
            ("kind", self.kind),
            ("namespace", self.namespace),
            ("name", self.name),
            ("uid", self.uid),
        )
        return {key: value for key, value in items if value}


@dataclass
class ClientConfig:
    """How to reach and authenticate against the API server."""

    host: str = ""
    insecure: bool = False
    ca_file: str = ""
    bearer_token: str = ""
    user_agent: str = ""
    api_version: str = API_VERSION
    qps: float = 5.0
    burst: int = 10


def convert_to_api_condition(condition: Condition) -> NodeCondition:
    """Convert a monitor condition into its API representation."""
    return NodeCondition(
        type=condition.type,
        status=ConditionStatus(condition.status).value,
        last_transition_time=condition.transition,
        reason=condition.reason,
        message=condition.message,
    )


def generate_patch(conditions: Sequence[NodeCondition]) -> bytes:
    """Build the status patch that replaces the given node conditions."""
    raw = _json_compact([condition.to_dict() for condition in conditions])
    return f'{{"status":{{"conditions":{raw}}}}}'.encode("utf-8")


def get_node_ref(namespace: str, node_name: str) -> ObjectReference:
    return ObjectReference(kind="Node", name=node_name, uid=node_name, namespace=namespace)


def _query(uri: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(uri).query, keep_blank_values=True)


def _first_bool(opts: Mapping[str, list[str]], name: str, default: bool) -> bool:
    values = opts.get(name)
    if values:
        return _parse_bool(values[0])
    return default


def get_config_overrides(uri: str) -> tuple[str, bool]:
    """Return the server and the insecure-TLS flag given by an override URI."""
    parts = urlsplit(uri)
    server = f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else ""
    insecure = _first_bool(_query(uri), "insecure", False)
    return server, insecure


def _in_cluster_config() -> ClientConfig:
    host = os.environ.get("KUBERNETES_SERVICE_HOST", "")
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "")
    if not host or not port:
        raise ValueError(
            "unable to load in-cluster configuration, KUBERNETES_SERVICE_HOST and "
            "KUBERNETES_SERVICE_PORT must be defined"
        )
    try:
        with open(DEFAULT_SERVICE_ACCOUNT_FILE, encoding="utf-8") as handle:
            token = handle.read().strip()
    except OSError as exc:
        raise ValueError(f"unable to read service account token: {exc}") from exc
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return ClientConfig(host=f"https://{host}:{port}", ca_file=_IN_CLUSTER_CA_FILE, bearer_token=token)


def _load_kubeconfig(path: str) -> ClientConfig:
    try:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f'error loading config file "{path}": {exc}') from exc

    def pick(section: str, name: str) -> dict[str, Any] | None:
        for entry in data.get(section) or []:
            if entry.get("name") == name:
                return entry.get(section[:-1]) or {}
        return None

    current = data.get("current-context", "")
    context = pick("contexts", current) if current else None
    if context is None:
        raise ValueError(f'invalid configuration: context "{current}" was not found')
    cluster = pick("clusters", context.get("cluster", "")) or {}
    user = pick("users", context.get("user", "")) or {}

    base = os.path.dirname(os.path.abspath(path))
    ca_file = cluster.get("certificate-authority", "")
    if ca_file and not os.path.isabs(ca_file):
        ca_file = os.path.join(base, ca_file)
    token = user.get("token", "")
    token_file = user.get("tokenFile", "")
    if not token and token_file:
        if not os.path.isabs(token_file):
            token_file = os.path.join(base, token_file)
        with open(token_file, encoding="utf-8") as handle:
            token = handle.read().strip()
    return ClientConfig(
        host=cluster.get("server", ""),
        insecure=bool(cluster.get("insecure-skip-tls-verify", False)),
        ca_file=ca_file,
        bearer_token=token,
    )


def get_kube_client_config(uri: str) -> ClientConfig:
    """Build the client configuration described by an API server override URI."""
    opts = _query(uri)
    server, insecure = get_config_overrides(uri)

    if _first_bool(opts, "inClusterConfig", _DEFAULT_IN_CLUSTER_CONFIG):
        config = _in_cluster_config()
        if server:
            config.host = server
        config.insecure = insecure
        if insecure:
            config.ca_file = ""
    else:
        auth_file = (opts.get("auth") or [""])[0]
        if auth_file:
            config = _load_kubeconfig(auth_file)
        else:
            config = ClientConfig(host=server, insecure=insecure)

    if not config.host:
        raise ValueError("invalid kubernetes master url specified")

    if _first_bool(opts, "useServiceAccount", _DEFAULT_USE_SERVICE_ACCOUNT):
        try:
            with open(DEFAULT_SERVICE_ACCOUNT_FILE, encoding="utf-8") as handle:
                config.bearer_token = handle.read().strip()
        except OSError:
            pass
    return config


class ProblemClient(abc.ABC):
    """Operations the exporters need from the API server."""

    @abc.abstractmethod
    def get_conditions(self, condition_types: Sequence[str]) -> list[NodeCondition]:
        """Return the current node's conditions of the given types."""

    @abc.abstractmethod
    def set_conditions(self, conditions: list[NodeCondition]) -> None:
        """Set or update conditions of the current node."""

    @abc.abstractmethod
    def event(self, event_type: str, source: str, reason: str, message: str) -> None:
        """Report an event about the current node."""

    @abc.abstractmethod
    def get_node(self) -> dict[str, Any]:
        """Return the node object this detector runs on."""


class _EventRecorder(Protocol):
    def record(
        self, ref: ObjectReference, event_type: str, reason: str, message: str
    ) -> None: ...


class _RateLimiter:
    """Token bucket limiting the request rate to the API server."""

    def __init__(self, qps: float, burst: int) -> None:
        self._qps = qps if qps > 0 else 5.0
        self._burst = burst if burst > 0 else 10
        self._tokens = float(self._burst)
        self._last = time.monotonic()
        self._lock = threading.Lock()

    def acquire(self) -> None:
        with self._lock:
            now = time.monotonic()
            self._tokens = min(self._burst, self._tokens + (now - self._last) * self._qps)
            self._last = now
            wait = 0.0
            if self._tokens < 1:
                wait = (1 - self._tokens) / self._qps
            self._tokens -= 1
        if wait:
            time.sleep(wait)


class _ApiEventRecorder:
    """Records events for one source by creating Event objects on the server."""

    def __init__(self, client: "NodeProblemClient", source: str) -> None:
        self._client = client
        self._source = source

    def record(self, ref: ObjectReference, event_type: str, reason: str, message: str) -> None:
        now = self._client.now()
        namespace = ref.namespace or "default"
        stamp = int(now.timestamp() * 1_000_000_000)
        timestamp = _format_time(now)
        body = {
            "apiVersion": API_VERSION,
            "kind": "Event",
            "metadata": {"name": f"{ref.name}.{stamp:x}", "namespace": namespace},
            "involvedObject": ref.to_dict(),
            "reason": reason,
            "message": message,
            "source": {"component": self._source, "host": self._client.node_name},
            "firstTimestamp": timestamp,
            "lastTimestamp": timestamp,
            "count": 1,
            "type": event_type,
        }
        log.debug(
            "Event(%s): type: '%s' reason: '%s' %s", ref, event_type, reason, message
        )
        try:
            self._client.request(
                "POST",
                f"/api/v1/namespaces/{quote(namespace, safe='')}/events",
                body=_json_compact(body).encode("utf-8"),
                content_type="application/json",
            )
        except requests.RequestException as exc:
            log.error("Unable to write event '%s': %s", reason, exc)


class NodeProblemClient(ProblemClient):
    """Problem client talking to a real API server over HTTP."""

    def __init__(
        self,
        config: ClientConfig,
        node_name: str,
        event_namespace: str = "",
        *,
        now: Callable[[], datetime] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.node_name = node_name
        self.event_namespace = event_namespace
        self.node_ref = get_node_ref(event_namespace, node_name)
        self.recorders: dict[str, _EventRecorder] = {}
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._session = session or requests.Session()
        self._limiter = _RateLimiter(config.qps, config.burst)

    def now(self) -> datetime:
        return self._now()

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        body: bytes | None = None,
        content_type: str | None = None,
    ) -> Any:
        """Send one request to the API server and return the decoded reply."""
        headers = {"Accept": "application/json"}
        if content_type:
            headers["Content-Type"] = content_type
        if self.config.user_agent:
            headers["User-Agent"] = self.config.user_agent
        if self.config.bearer_token:
            headers["Authorization"] = f"Bearer {self.config.bearer_token}"
        verify: bool | str = False if self.config.insecure else (self.config.ca_file or True)
        self._limiter.acquire()
        response = self._session.request(
            method,
            self.config.host.rstrip("/") + path,
            params=params,
            data=body,
            headers=headers,
            verify=verify,
            timeout=_REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        return response.json()

    def get_node(self) -> dict[str, Any]:
        # Served from the API server cache to keep load off etcd.
        return self.request(
            "GET",
            f"/api/v1/nodes/{quote(self.node_name, safe='')}",
            params={"resourceVersion": "0"},
        )

    def get_conditions(self, condition_types: Sequence[str]) -> list[NodeCondition]:
        node = self.get_node()
        existing = (node.get("status") or {}).get("conditions") or []
        return [
            NodeCondition.from_dict(condition)
            for wanted in condition_types
            for condition in existing
            if condition.get("type") == wanted
        ]

    def set_conditions(self, conditions: list[NodeCondition]) -> None:
        heartbeat = self._now()
        for condition in conditions:
            condition.last_heartbeat_time = heartbeat
        patch = generate_patch(conditions)
        path = f"/api/v1/nodes/{quote(self.node_name, safe='')}/status"

        for attempt in range(_RETRY_STEPS):
            try:
                self.request("PATCH", path, body=patch, content_type=_STRATEGIC_MERGE_PATCH)
                return
            except requests.RequestException:
                if attempt == _RETRY_STEPS - 1:
                    raise
                time.sleep(_RETRY_DELAY * (1 + random.random() * _RETRY_JITTER))

    def event(self, event_type: str, source: str, reason: str, message: str) -> None:
        recorder = self.recorders.get(source)
        if recorder is None:
            recorder = _ApiEventRecorder(self, source)
            self.recorders[source] = recorder
        recorder.record(self.node_ref, event_type, reason, message)


class FakeProblemClient(ProblemClient):
    """In-memory problem client for tests and debugging."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.conditions: dict[str, NodeCondition] = {}
        self._errors: dict[str, Exception] = {}

    def inject_error(self, name: str, error: Exception) -> None:
        """Make the method called ``name`` raise ``error``."""
        with self._lock:
            self._errors[name] = error

    def assert_conditions(self, expected: Sequence[NodeCondition]) -> None:
        """Raise AssertionError unless the stored conditions equal ``expected``."""
        wanted = {condition.type: condition for condition in expected}
        with self._lock:
            current = dict(self.conditions)
        if wanted != current:
            raise AssertionError(f"expected {wanted}, got {current}")

    def set_conditions(self, conditions: list[NodeCondition]) -> None:
        with self._lock:
            error = self._errors.get("set_conditions")
            if error is not None:
                raise error
            for condition in conditions:
                self.conditions[condition.type] = condition

    def get_conditions(self, condition_types: Sequence[str]) -> list[NodeCondition]:
        with self._lock:
            error = self._errors.get("get_conditions")
            if error is not None:
                raise error
            return [self.conditions[t] for t in condition_types if t in self.conditions]

    def event(self, event_type: str, source: str, reason: str, message: str) -> None:
        """Events are discarded."""

    def get_node(self) -> dict[str, Any]:
        raise LookupError("the fake problem client holds no node object")
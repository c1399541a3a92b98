"""Command line and application options of the node problem detector."""

from __future__ import annotations

import argparse
import os
import socket
import string
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Iterable, Sequence

from . import exporters
from .durations import parse_duration

__all__ = [
    "OptionsError",
    "NodeProblemDetectorOptions",
    "validate_url",
    "CUSTOM_PLUGIN_MONITOR_NAME",
    "SYSTEM_LOG_MONITOR_NAME",
]

# Names of the problem daemons that the deprecated flags map onto.
CUSTOM_PLUGIN_MONITOR_NAME = "custom-plugin-monitor"
SYSTEM_LOG_MONITOR_NAME = "system-log-monitor"

_HEX_DIGITS = set(string.hexdigits)
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


class OptionsError(ValueError):
    """Raised when the detector options are inconsistent or unusable."""


def _check_escapes(text: str) -> None:
    index = text.find("%")
    while index != -1:
        escape = text[index : index + 3]
        if len(escape) < 3 or escape[1] not in _HEX_DIGITS or escape[2] not in _HEX_DIGITS:
            raise OptionsError(f'invalid URL escape "{escape}"')
        index = text.find("%", index + 3)


def _split_scheme(uri: str) -> tuple[str, str]:
    for index, char in enumerate(uri):
        if char.isascii() and char.isalpha():
            continue
        if char in string.digits or char in "+-.":
            if index == 0:
                return "", uri
            continue
        if char == ":":
            if index == 0:
                raise OptionsError("missing protocol scheme")
            return uri[:index], uri[index + 1 :]
        return "", uri
    return "", uri


def _check_authority(authority: str) -> None:
    host = authority.rpartition("@")[2]
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            raise OptionsError("missing ']' in host")
        port = host[end + 1 :]
        if port and not (port.startswith(":") and all(c in string.digits for c in port[1:])):
            raise OptionsError(f'invalid port "{port}" after host')
    else:
        colon = host.rfind(":")
        if colon != -1:
            port = host[colon:]
            if not all(c in string.digits for c in port[1:]):
                raise OptionsError(f'invalid port "{port}" after host')
    _check_escapes(host)


def validate_url(uri: str) -> None:
    """Raise OptionsError if ``uri`` cannot be parsed as a URL."""
    if any(ord(char) < 0x20 or ord(char) == 0x7F for char in uri):
        raise OptionsError("invalid control character in URL")
    rest, _, fragment = uri.partition("#")
    _check_escapes(fragment)
    scheme, rest = _split_scheme(rest)
    rest = rest.partition("?")[0]

    if rest and not rest.startswith("/"):
        if scheme:
            return  # opaque URL such as "mailto:someone"
        if ":" in rest.partition("/")[0]:
            raise OptionsError("first path segment in URL cannot contain colon")

    if rest.startswith("//") and (scheme or not rest.startswith("///")):
        authority, slash, path = rest[2:].partition("/")
        _check_authority(authority)
        rest = slash + path
    _check_escapes(rest)


def _parse_bool(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {text!r}")


def _parse_duration_arg(text: str) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _split_list(text: str) -> list[str]:
    return text.split(",") if text else []


class _ExtendCommaSeparated(argparse.Action):
    """Extend a list attribute with the comma separated values of each use."""

    def __call__(self, parser, namespace, values, option_string=None):
        current = list(getattr(namespace, self.dest, None) or [])
        current.extend(_split_list(values))
        setattr(namespace, self.dest, current)


class _MonitorConfigAction(argparse.Action):
    """Add comma separated config paths for one problem daemon."""

    def __init__(self, option_strings, dest, daemon: str, **kwargs: Any) -> None:
        super().__init__(option_strings, dest, **kwargs)
        self.daemon = daemon

    def __call__(self, parser, namespace, values, option_string=None):
        paths = getattr(namespace, self.dest, None)
        if paths is None:
            paths = {}
            setattr(namespace, self.dest, paths)
        paths.setdefault(self.daemon, []).extend(_split_list(values))


@dataclass
class NodeProblemDetectorOptions:
    """Everything the node problem detector is configured with."""

    print_version: bool = False
    hostname_override: str = ""
    server_port: int = 20256
    server_address: str = "127.0.0.1"
    qps: float = 500.0
    burst: int = 500

    enable_k8s_exporter: bool = True
    event_namespace: str = ""
    api_server_override: str = ""
    api_server_wait_timeout: timedelta = timedelta(minutes=5)
    api_server_wait_interval: timedelta = timedelta(seconds=5)
    k8s_exporter_heartbeat_period: timedelta = timedelta(minutes=5)

    prometheus_server_port: int = 20257
    prometheus_server_address: str = "127.0.0.1"

    # Filled by the deprecated --system-log-monitors and --custom-plugin-monitors.
    system_log_monitor_config_paths: list[str] = field(default_factory=list)
    custom_plugin_monitor_config_paths: list[str] = field(default_factory=list)
    monitor_config_paths: dict[str, list[str]] | None = field(default_factory=dict)

    node_name: str = ""

    @classmethod
    def create(cls, problem_daemon_names: Iterable[str]) -> "NodeProblemDetectorOptions":
        """Return options with an empty config path list for every problem daemon."""
        return cls(monitor_config_paths={name: [] for name in problem_daemon_names})

    def add_arguments(
        self,
        parser: argparse.ArgumentParser,
        problem_daemon_names: Iterable[str] | None = None,
    ) -> None:
        """Add the detector's command line options to ``parser``.

        Parse with ``parser.parse_args(argv, namespace=options)`` to store the
        values on these options.
        """
        if problem_daemon_names is None:
            problem_daemon_names = list(self.monitor_config_paths or {})

        parser.add_argument(
            "--system-log-monitors",
            dest="system_log_monitor_config_paths",
            action=_ExtendCommaSeparated,
            default=self.system_log_monitor_config_paths,
            help="(deprecated, replaced by --config.system-log-monitor) List of paths to "
            "system log monitor config files, comma separated.",
        )
        parser.add_argument(
            "--custom-plugin-monitors",
            dest="custom_plugin_monitor_config_paths",
            action=_ExtendCommaSeparated,
            default=self.custom_plugin_monitor_config_paths,
            help="(deprecated, replaced by --config.custom-plugin-monitor) List of paths to "
            "custom plugin monitor config files, comma separated.",
        )
        parser.add_argument(
            "--enable-k8s-exporter",
            dest="enable_k8s_exporter",
            type=_parse_bool,
            nargs="?",
            const=True,
            default=self.enable_k8s_exporter,
            help="Enables reporting to Kubernetes API server.",
        )
        parser.add_argument(
            "--event-namespace",
            dest="event_namespace",
            default=self.event_namespace,
            help="Namespace for recorded Kubernetes events.",
        )
        parser.add_argument(
            "--apiserver-override",
            dest="api_server_override",
            default=self.api_server_override,
            help="Custom URI used to connect to Kubernetes ApiServer. "
            "This is ignored if --enable-k8s-exporter is false.",
        )
        parser.add_argument(
            "--apiserver-wait-timeout",
            dest="api_server_wait_timeout",
            type=_parse_duration_arg,
            default=self.api_server_wait_timeout,
            help="The timeout on waiting for kube-apiserver to be ready. "
            "This is ignored if --enable-k8s-exporter is false.",
        )
        parser.add_argument(
            "--apiserver-wait-interval",
            dest="api_server_wait_interval",
            type=_parse_duration_arg,
            default=self.api_server_wait_interval,
            help="The interval between the checks on the readiness of kube-apiserver. "
            "This is ignored if --enable-k8s-exporter is false.",
        )
        parser.add_argument(
            "--k8s-exporter-heartbeat-period",
            dest="k8s_exporter_heartbeat_period",
            type=_parse_duration_arg,
            default=self.k8s_exporter_heartbeat_period,
            help="The period at which k8s-exporter does forcibly sync with apiserver.",
        )
        parser.add_argument(
            "--version",
            dest="print_version",
            type=_parse_bool,
            nargs="?",
            const=True,
            default=self.print_version,
            help="Print version information and quit",
        )
        parser.add_argument(
            "--hostname-override",
            dest="hostname_override",
            default=self.hostname_override,
            help="Custom node name used to override hostname",
        )
        parser.add_argument(
            "--port",
            dest="server_port",
            type=int,
            default=self.server_port,
            help="The port to bind the node problem detector server. Use 0 to disable.",
        )
        parser.add_argument(
            "--address",
            dest="server_address",
            default=self.server_address,
            help="The address to bind the node problem detector server.",
        )
        parser.add_argument(
            "--prometheus-port",
            dest="prometheus_server_port",
            type=int,
            default=self.prometheus_server_port,
            help="The port to bind the Prometheus scrape endpoint. Prometheus exporter is "
            "enabled by default at port 20257. Use 0 to disable.",
        )
        parser.add_argument(
            "--prometheus-address",
            dest="prometheus_server_address",
            default=self.prometheus_server_address,
            help="The address to bind the Prometheus scrape endpoint.",
        )
        parser.add_argument(
            "--kube-api-qps",
            dest="qps",
            type=float,
            default=self.qps,
            help="Maximum QPS to use while talking with Kubernetes API",
        )
        parser.add_argument(
            "--kube-api-burst",
            dest="burst",
            type=int,
            default=self.burst,
            help="Maximum burst for throttle while talking with Kubernetes API",
        )

        for exporter_name in exporters.get_exporter_names():
            handler = exporters.get_exporter_handler(exporter_name)
            if handler.options is not None:
                handler.options.add_arguments(parser)

        for name in problem_daemon_names:
            parser.add_argument(
                f"--config.{name}",
                dest="monitor_config_paths",
                action=_MonitorConfigAction,
                daemon=name,
                default=argparse.SUPPRESS,
                metavar="PATHS",
                help=f"Comma separated configurations for {name} monitor.",
            )

    def validate(self) -> None:
        """Raise OptionsError if the options cannot be used."""
        if self.enable_k8s_exporter:
            try:
                validate_url(self.api_server_override)
            except OptionsError as exc:
                raise OptionsError(
                    f'apiserver-override "{self.api_server_override}" is not a valid '
                    f"HTTP URI: {exc}"
                ) from exc

        if self.system_log_monitor_config_paths:
            raise OptionsError(
                "SystemLogMonitorConfigPaths is deprecated. It should have been reassigned "
                "to MonitorConfigPaths. This should not happen."
            )
        if self.custom_plugin_monitor_config_paths:
            raise OptionsError(
                "CustomPluginMonitorConfigPaths is deprecated. It should have been "
                "reassigned to MonitorConfigPaths. This should not happen."
            )

        config_count = sum(len(paths or []) for paths in (self.monitor_config_paths or {}).values())
        if config_count == 0:
            raise OptionsError("No configuration option for any problem daemon is specified.")

    def _move_deprecated(self, daemon: str, attribute: str, flag: str, label: str) -> None:
        deprecated: list[str] = getattr(self, attribute)
        if not deprecated:
            return
        paths = (self.monitor_config_paths or {}).get(daemon)
        if paths is None:
            raise OptionsError(f"{label} is not supported")
        if paths:
            raise OptionsError(
                f"Option --{flag} is deprecated in favor of --config.{daemon}. "
                "They cannot be set at the same time."
            )
        paths.extend(deprecated)
        setattr(self, attribute, [])

    def set_config_from_deprecated_options(self) -> None:
        """Move paths given by the deprecated flags into ``monitor_config_paths``."""
        self._move_deprecated(
            SYSTEM_LOG_MONITOR_NAME,
            "system_log_monitor_config_paths",
            "system-log-monitors",
            "System log monitor",
        )
        self._move_deprecated(
            CUSTOM_PLUGIN_MONITOR_NAME,
            "custom_plugin_monitor_config_paths",
            "custom-plugin-monitors",
            "Custom plugin monitor",
        )

    def set_node_name(self) -> None:
        """Set ``node_name`` from the override, the NODE_NAME variable or the host name."""
        if self.hostname_override:
            self.node_name = self.hostname_override
            return

        self.node_name = os.environ.get("NODE_NAME", "")
        if self.node_name:
            return

        try:
            self.node_name = socket.gethostname()
        except OSError as exc:
            raise OptionsError(f"Failed to get host name: {exc}") from exc


def _parse(argv: Sequence[str], names: Iterable[str]) -> NodeProblemDetectorOptions:
    options = NodeProblemDetectorOptions.create(names)
    parser = argparse.ArgumentParser(prog="node-problem-detector")
    options.add_arguments(parser)
    parser.parse_args(argv, namespace=options)
    return options
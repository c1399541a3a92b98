"""Command line options of the component health checker."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Sequence

from .durations import parse_duration

__all__ = ["HealthCheckerOptions", "build_parser"]

KUBELET_COMPONENT = "kubelet"
DOCKER_COMPONENT = "docker"
CRI_COMPONENT = "cri"
KUBE_PROXY_COMPONENT = "kube-proxy"
CONTAINERD_SERVICE = "containerd"

DEFAULT_CRICTL = "/usr/bin/crictl"
DEFAULT_CRI_SOCKET_PATH = "unix:///var/run/containerd/containerd.sock"
DEFAULT_CRI_TIMEOUT = timedelta(seconds=2)
DEFAULT_COOL_DOWN_TIME = timedelta(minutes=2)
DEFAULT_LOOP_BACK_TIME = timedelta(0)
DEFAULT_HEALTH_CHECK_TIMEOUT = timedelta(seconds=10)

_SUPPORTED_COMPONENTS = (
    KUBELET_COMPONENT,
    DOCKER_COMPONENT,
    CRI_COMPONENT,
    KUBE_PROXY_COMPONENT,
)
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


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


def _parse_log_pattern(text: str) -> tuple[str, int]:
    count_text, sep, pattern = text.partition(":")
    if not sep or not pattern:
        raise argparse.ArgumentTypeError(
            f"log pattern {text!r} must have the form <failureThresholdCount>:<logPattern>"
        )
    try:
        count = int(count_text)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"invalid failure threshold count {count_text!r} in log pattern {text!r}"
        ) from None
    return pattern, count


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser of the health checker."""
    parser = argparse.ArgumentParser(prog="health-checker")
    parser.add_argument(
        "--component",
        default=KUBELET_COMPONENT,
        help="The component to check health for. Supports kubelet, docker, kube-proxy, and cri",
    )
    service_help = (
        "The underlying service responsible for the component. Set to the corresponding "
        "component for docker and kubelet, containerd for cri."
    )
    if sys.platform.startswith("linux"):
        parser.add_argument("--systemd-service", dest="service", help=argparse.SUPPRESS)
    parser.add_argument("--service", dest="service", default="", help=service_help)
    parser.add_argument(
        "--enable-repair",
        type=_parse_bool,
        nargs="?",
        const=True,
        default=True,
        help="Flag to enable/disable repair attempt for the component.",
    )
    parser.add_argument(
        "--crictl-path",
        default=DEFAULT_CRICTL,
        help="The path to the crictl binary. This is used to check health of cri component.",
    )
    parser.add_argument(
        "--cri-socket-path",
        default=DEFAULT_CRI_SOCKET_PATH,
        help="The path to the cri socket. Used with crictl to specify the socket path.",
    )
    parser.add_argument(
        "--cri-timeout",
        type=_parse_duration_arg,
        default=DEFAULT_CRI_TIMEOUT,
        help="The duration to wait for crictl to run.",
    )
    parser.add_argument(
        "--cooldown-time",
        type=_parse_duration_arg,
        default=DEFAULT_COOL_DOWN_TIME,
        help="The duration to wait for the service to be up before attempting repair.",
    )
    parser.add_argument(
        "--loopback-time",
        type=_parse_duration_arg,
        default=DEFAULT_LOOP_BACK_TIME,
        help="The duration to loop back, if it is 0, health-check will check from start time.",
    )
    parser.add_argument(
        "--health-check-timeout",
        type=_parse_duration_arg,
        default=DEFAULT_HEALTH_CHECK_TIMEOUT,
        help="The time to wait before marking the component as unhealthy.",
    )
    parser.add_argument(
        "--log-pattern",
        type=_parse_log_pattern,
        action="append",
        default=[],
        help="The log pattern to look for in service journald logs. "
        "The format for flag value <failureThresholdCount>:<logPattern>",
    )
    return parser


@dataclass
class HealthCheckerOptions:
    component: str = ""
    service: str = ""
    enable_repair: bool = False
    cri_ctl_path: str = ""
    cri_socket_path: str = ""
    cri_timeout: timedelta = timedelta(0)
    cool_down_time: timedelta = timedelta(0)
    loop_back_time: timedelta = timedelta(0)
    health_check_timeout: timedelta = timedelta(0)
    log_patterns: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_args(cls, argv: Sequence[str] | None = None) -> "HealthCheckerOptions":
        ns = build_parser().parse_args(argv)
        return cls(
            component=ns.component,
            service=ns.service or "",
            enable_repair=ns.enable_repair,
            cri_ctl_path=ns.crictl_path,
            cri_socket_path=ns.cri_socket_path,
            cri_timeout=ns.cri_timeout,
            cool_down_time=ns.cooldown_time,
            loop_back_time=ns.loopback_time,
            health_check_timeout=ns.health_check_timeout,
            log_patterns=dict(ns.log_pattern),
        )

    def validate(self) -> None:
        """Raise ValueError if the options cannot be used."""
        if self.component not in _SUPPORTED_COMPONENTS:
            raise ValueError(
                "the component specified is not supported. "
                "Supported components are : <kubelet/docker/cri/kube-proxy>"
            )
        if self.enable_repair and not self.service:
            raise ValueError("service cannot be empty when repair is enabled")
        if self.component != CRI_COMPONENT:
            return
        if not self.cri_ctl_path:
            raise ValueError("the crictl-path cannot be empty for cri component")
        if not self.cri_socket_path:
            raise ValueError("the cri-socket-path cannot be empty for cri component")

    def set_defaults(self) -> None:
        """Derive the service from the component when it was not given."""
        if self.service:
            return
        if self.component != CRI_COMPONENT:
            self.service = self.component
            return
        self.service = CONTAINERD_SERVICE
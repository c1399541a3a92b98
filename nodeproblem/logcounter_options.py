"""Command line options of the log counter."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Sequence

__all__ = ["LogCounterOptions", "build_parser"]


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser of the log counter."""
    parser = argparse.ArgumentParser(prog="log-counter")
    parser.add_argument(
        "--journald-source",
        default="",
        help="The source configuration of journald, e.g., kernel, kubelet, dockerd, etc",
    )
    parser.add_argument("--log-path", default="", help="The log path that log watcher looks up")
    parser.add_argument("--lookback", default="", help="The time log watcher looks up")
    parser.add_argument(
        "--delay",
        default="",
        help="The time duration log watcher delays after node boot time. This is useful when "
        "log watcher needs to wait for some time until the node is stable.",
    )
    parser.add_argument(
        "--pattern",
        default="",
        help="The regular expression to match the problem in log. "
        "The pattern must match to the end of the line.",
    )
    parser.add_argument(
        "--revert-pattern",
        default="",
        help="Similar to --pattern but conversely it decreases count value for every match. "
        "This is useful to discount a log when another log occurs.",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=1,
        help="The number of times the pattern must be found to trigger the condition",
    )
    return parser


@dataclass
class LogCounterOptions:
    journald_source: str = ""
    log_path: str = ""
    lookback: str = ""
    delay: str = ""
    pattern: str = ""
    revert_pattern: str = ""
    count: int = 1

    @classmethod
    def from_args(cls, argv: Sequence[str] | None = None) -> "LogCounterOptions":
        ns = build_parser().parse_args(argv)
        return cls(
            journald_source=ns.journald_source,
            log_path=ns.log_path,
            lookback=ns.lookback,
            delay=ns.delay,
            pattern=ns.pattern,
            revert_pattern=ns.revert_pattern,
            count=ns.count,
        )
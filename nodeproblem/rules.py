"""Core data types shared by monitors and exporters."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Mapping

__all__ = [
    "ProblemType",
    "ConditionStatus",
    "Severity",
    "PluginStatus",
    "Condition",
    "Event",
    "Status",
    "CustomRule",
    "Result",
]


class ProblemType(str, enum.Enum):
    """Whether a problem is transient or changes a node condition."""

    TEMP = "temporary"
    PERM = "permanent"


class ConditionStatus(str, enum.Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Severity(str, enum.Enum):
    INFO = "info"
    WARN = "warn"


class PluginStatus(enum.IntEnum):
    """Outcome of a plugin run, taken from its exit code."""

    OK = 0
    NON_OK = 1
    UNKNOWN = 2


@dataclass
class Condition:
    """A node condition tracked by a monitor."""

    type: str
    status: ConditionStatus = ConditionStatus.FALSE
    transition: datetime | None = None
    reason: str = ""
    message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        status = data.get("status")
        transition = data.get("transition")
        return cls(
            type=data.get("type", ""),
            status=ConditionStatus(status) if status else ConditionStatus.FALSE,
            transition=datetime.fromisoformat(transition) if transition else None,
            reason=data.get("reason", ""),
            message=data.get("message", ""),
        )


@dataclass
class Event:
    severity: Severity
    timestamp: datetime
    reason: str
    message: str


@dataclass
class Status:
    """A report from a monitor: events that happened and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class CustomRule:
    """How a plugin is invoked and how its result is interpreted."""

    type: ProblemType = ProblemType.TEMP
    condition: str = ""
    reason: str = ""
    path: str = ""
    args: list[str] = field(default_factory=list)
    timeout_string: str | None = None
    timeout: timedelta | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CustomRule":
        problem_type = data.get("type")
        return cls(
            type=ProblemType(problem_type) if problem_type else ProblemType.TEMP,
            condition=data.get("condition", ""),
            reason=data.get("reason", ""),
            path=data.get("path", ""),
            args=list(data.get("args") or []),
            timeout_string=data.get("timeout"),
        )


@dataclass
class Result:
    rule: CustomRule
    exit_status: PluginStatus
    message: str
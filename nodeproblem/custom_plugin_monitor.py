"""Turns custom plugin check results into node problem statuses."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Protocol, Sequence

from .plugin_config import ConfigError, CustomPluginConfig
from .rules import (
    Condition,
    ConditionStatus,
    CustomRule,
    Event,
    PluginStatus,
    ProblemType,
    Result,
    Severity,
    Status,
)

__all__ = [
    "CustomPluginMonitor",
    "ProblemMetrics",
    "to_condition_status",
    "initial_conditions",
    "CUSTOM_PLUGIN_MONITOR_NAME",
]

log = logging.getLogger(__name__)

CUSTOM_PLUGIN_MONITOR_NAME = "custom-plugin-monitor"


class ProblemMetrics(Protocol):
    """Sink for problem counters and gauges."""

    def set_problem_gauge(self, problem_type: str, reason: str, value: bool) -> None: ...

    def increment_problem_counter(self, reason: str, count: int) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_condition_status(status: PluginStatus) -> ConditionStatus:
    """Map a plugin outcome onto the status of the condition it controls."""
    if status == PluginStatus.OK:
        return ConditionStatus.FALSE
    if status == PluginStatus.NON_OK:
        return ConditionStatus.TRUE
    return ConditionStatus.UNKNOWN


def _initial_conditions(
    defaults: Sequence[Condition], now: Callable[[], datetime]
) -> list[Condition]:
    return [
        replace(condition, status=ConditionStatus.FALSE, transition=now())
        for condition in defaults
    ]


def initial_conditions(defaults: Sequence[Condition]) -> list[Condition]:
    """Copy the default conditions, each set to False as of now."""
    return _initial_conditions(defaults, _utcnow)


def _initialize_problem_metrics(metrics: ProblemMetrics, rules: Iterable[CustomRule]) -> None:
    for rule in rules:
        if rule.type is ProblemType.PERM:
            metrics.set_problem_gauge(rule.condition, rule.reason, False)
        metrics.increment_problem_counter(rule.reason, 0)


class CustomPluginMonitor:
    """Keeps the conditions of one custom plugin configuration up to date."""

    def __init__(
        self,
        config: CustomPluginConfig,
        config_path: str = "",
        *,
        metrics: ProblemMetrics | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.config_path = config_path
        self.conditions: list[Condition] = []
        self._now = now or _utcnow
        self._metrics = metrics if config.enable_metrics_reporting else None
        if self._metrics is not None:
            _initialize_problem_metrics(self._metrics, config.rules)

    @classmethod
    def from_config_file(cls, path: str | os.PathLike[str]) -> "CustomPluginMonitor":
        """Create a monitor from a JSON configuration file; ConfigError if it is unusable."""
        with open(path, encoding="utf-8") as handle:
            try:
                data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigError(
                    f'Failed to unmarshal configuration file "{path}": {exc}'
                ) from exc
        config = CustomPluginConfig.from_dict(data)
        config.apply_configuration()
        config.validate()
        log.info("Finish parsing custom plugin monitor config file %s: %s", path, config)
        return cls(config, os.fspath(path))

    def initialize_conditions(self) -> None:
        """Reset the tracked conditions to the configured defaults."""
        self.conditions = _initial_conditions(self.config.default_conditions, self._now)
        log.info("Initialized conditions for %s: %s", self.config_path, self.conditions)

    def _snapshot(self) -> list[Condition]:
        return [replace(condition) for condition in self.conditions]

    def initial_status(self) -> Status:
        """The status reporting the current conditions without any event."""
        return Status(source=self.config.source, conditions=self._snapshot())

    def _default_for(self, condition_type: str) -> tuple[str, str]:
        for default in self.config.default_conditions:
            if default.type == condition_type:
                return default.reason, default.message
        return "", ""

    def _condition_change(
        self, condition: Condition, status: ConditionStatus, result: Result
    ) -> tuple[str, str] | None:
        """Return the new reason and message, or None if the condition stays."""
        rule = result.rule
        current = condition.status
        if current != status and status != ConditionStatus.TRUE:
            # Leaving True, or moving between False and Unknown.
            default_reason, default_message = self._default_for(rule.condition)
            if status == ConditionStatus.FALSE:
                return default_reason, default_message
            return default_reason, result.message
        if current != ConditionStatus.TRUE and status == ConditionStatus.TRUE:
            return rule.reason, result.message
        if current == ConditionStatus.TRUE and status == ConditionStatus.TRUE:
            message_based = bool(
                self.config.plugin_global_config.enable_message_change_based_condition_update
            )
            if condition.reason != rule.reason or (
                message_based and condition.message != result.message
            ):
                return rule.reason, result.message
        return None

    def generate_status(self, result: Result) -> Status:
        """Update the conditions from one plugin result and report what changed."""
        timestamp = self._now()
        active: list[Event] = []
        inactive: list[Event] = []
        rule = result.rule

        if rule.type is ProblemType.TEMP:
            if result.exit_status >= PluginStatus.NON_OK:
                active.append(Event(Severity.WARN, timestamp, rule.reason, result.message))
        else:
            condition = next((c for c in self.conditions if c.type == rule.condition), None)
            if condition is not None:
                status = to_condition_status(result.exit_status)
                change = self._condition_change(condition, status, result)
                if change is not None:
                    reason, message = change
                    condition.transition = timestamp
                    condition.status = status
                    condition.reason = reason
                    condition.message = message
                    event = Event(Severity.INFO, timestamp, reason, message)
                    (active if status == ConditionStatus.TRUE else inactive).append(event)

        if self._metrics is not None:
            self._report_metrics(active)

        report = Status(
            source=self.config.source,
            events=active + inactive,
            conditions=self._snapshot(),
        )
        if active or inactive:
            log.info("New status generated: %s", report)
        return report

    def _report_metrics(self, active: Iterable[Event]) -> None:
        metrics = self._metrics
        if metrics is None:
            return
        for event in active:
            try:
                metrics.increment_problem_counter(event.reason, 1)
            except Exception as exc:
                log.error("Failed to update problem counter metrics for %r: %s", event.reason, exc)
        for condition in self.conditions:
            try:
                metrics.set_problem_gauge(
                    condition.type, condition.reason, condition.status == ConditionStatus.TRUE
                )
            except Exception as exc:
                log.error(
                    "Failed to update problem gauge metrics for problem %r, reason %r: %s",
                    condition.type,
                    condition.reason,
                    exc,
                )

    def process(self, results: Iterable[Result]) -> Iterator[Status]:
        """Yield the initial status (unless skipped) and then one status per result."""
        self.initialize_conditions()
        if self.config.plugin_global_config.skip_initial_status:
            log.info("Skipping sending initial status. Using default conditions: %s", self.conditions)
        else:
            yield self.initial_status()
        for result in results:
            yield self.generate_status(result)
"""Configuration of the custom plugin monitor."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping

from .durations import format_duration, parse_duration
from .rules import Condition, CustomRule, ProblemType

__all__ = [
    "ConfigError",
    "PluginGlobalConfig",
    "CustomPluginConfig",
    "load_config",
    "CUSTOM_PLUGIN_NAME",
]

DEFAULT_GLOBAL_TIMEOUT = timedelta(seconds=5)
DEFAULT_GLOBAL_TIMEOUT_STRING = format_duration(DEFAULT_GLOBAL_TIMEOUT)
DEFAULT_INVOKE_INTERVAL = timedelta(seconds=30)
DEFAULT_INVOKE_INTERVAL_STRING = format_duration(DEFAULT_INVOKE_INTERVAL)
DEFAULT_MAX_OUTPUT_LENGTH = 80
DEFAULT_CONCURRENCY = 3
DEFAULT_MESSAGE_CHANGE_BASED_CONDITION_UPDATE = False
DEFAULT_ENABLE_METRICS_REPORTING = True
DEFAULT_SKIP_INITIAL_STATUS = False

CUSTOM_PLUGIN_NAME = "custom"


class ConfigError(ValueError):
    """Raised when a plugin configuration cannot be applied or is invalid."""


@dataclass
class PluginGlobalConfig:
    invoke_interval_string: str | None = None
    timeout_string: str | None = None
    invoke_interval: timedelta | None = None
    timeout: timedelta | None = None
    max_output_length: int | None = None
    concurrency: int | None = None
    enable_message_change_based_condition_update: bool | None = None
    skip_initial_status: bool | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PluginGlobalConfig":
        return cls(
            invoke_interval_string=data.get("invoke_interval"),
            timeout_string=data.get("timeout"),
            max_output_length=data.get("max_output_length"),
            concurrency=data.get("concurrency"),
            enable_message_change_based_condition_update=data.get(
                "enable_message_change_based_condition_update"
            ),
            skip_initial_status=data.get("skip_initial_status"),
        )


@dataclass
class CustomPluginConfig:
    """Settings of one custom plugin monitor, as read from its JSON file."""

    plugin: str = ""
    plugin_global_config: PluginGlobalConfig = field(default_factory=PluginGlobalConfig)
    source: str = ""
    default_conditions: list[Condition] = field(default_factory=list)
    rules: list[CustomRule] = field(default_factory=list)
    enable_metrics_reporting: bool | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CustomPluginConfig":
        return cls(
            plugin=data.get("plugin", ""),
            plugin_global_config=PluginGlobalConfig.from_dict(data.get("pluginConfig") or {}),
            source=data.get("source", ""),
            default_conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            rules=[CustomRule.from_dict(r) for r in data.get("rules") or []],
            enable_metrics_reporting=data.get("metricsReporting"),
        )

    def apply_configuration(self) -> None:
        """Fill unset settings with defaults and parse duration strings."""
        glob = self.plugin_global_config
        if glob.timeout_string is None:
            glob.timeout_string = DEFAULT_GLOBAL_TIMEOUT_STRING
        try:
            glob.timeout = parse_duration(glob.timeout_string)
        except ValueError as exc:
            raise ConfigError(
                f'error in parsing global timeout "{glob.timeout_string}": {exc}'
            ) from exc

        if glob.invoke_interval_string is None:
            glob.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        try:
            glob.invoke_interval = parse_duration(glob.invoke_interval_string)
        except ValueError as exc:
            raise ConfigError(
                f'error in parsing invoke interval "{glob.invoke_interval_string}": {exc}'
            ) from exc

        if glob.max_output_length is None:
            glob.max_output_length = DEFAULT_MAX_OUTPUT_LENGTH
        if glob.concurrency is None:
            glob.concurrency = DEFAULT_CONCURRENCY
        if glob.enable_message_change_based_condition_update is None:
            glob.enable_message_change_based_condition_update = (
                DEFAULT_MESSAGE_CHANGE_BASED_CONDITION_UPDATE
            )
        if glob.skip_initial_status is None:
            glob.skip_initial_status = DEFAULT_SKIP_INITIAL_STATUS

        for rule in self.rules:
            if rule.timeout_string is not None:
                try:
                    rule.timeout = parse_duration(rule.timeout_string)
                except ValueError as exc:
                    raise ConfigError(f"error in parsing rule timeout {rule}: {exc}") from exc

        if self.enable_metrics_reporting is None:
            self.enable_metrics_reporting = DEFAULT_ENABLE_METRICS_REPORTING

    def validate(self) -> None:
        """Raise ConfigError if the configuration cannot be used."""
        if self.plugin != CUSTOM_PLUGIN_NAME:
            raise ConfigError(
                f'NPD does not support "{self.plugin}" plugin for now. Only support "custom"'
            )

        global_timeout = self.plugin_global_config.timeout
        for rule in self.rules:
            if (
                rule.timeout is not None
                and global_timeout is not None
                and rule.timeout > global_timeout
            ):
                raise ConfigError(
                    "plugin timeout is greater than global timeout. "
                    f"Rule: {rule}. Global timeout: {global_timeout}"
                )

        for rule in self.rules:
            if not os.path.exists(rule.path):
                raise ConfigError(f'rule path "{rule.path}" does not exist. Rule: {rule}')

        known = {cond.type for cond in self.default_conditions}
        for rule in self.rules:
            if rule.type is ProblemType.PERM and rule.condition not in known:
                raise ConfigError(
                    f"Permanent problem {rule.condition} does not have preset default condition."
                )


def load_config(path: str | os.PathLike[str]) -> CustomPluginConfig:
    """Read, complete and validate a custom plugin monitor configuration file."""
    with open(path, encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(f'failed to unmarshal configuration file "{path}": {exc}') from exc
    config = CustomPluginConfig.from_dict(data)
    config.apply_configuration()
    config.validate()
    return config
import json
from datetime import datetime, timezone

import pytest

from nodeproblem.custom_plugin_monitor import (
    CustomPluginMonitor,
    initial_conditions,
    to_condition_status,
)
from nodeproblem.plugin_config import ConfigError, CustomPluginConfig, PluginGlobalConfig
from nodeproblem.rules import (
    Condition,
    ConditionStatus,
    CustomRule,
    PluginStatus,
    ProblemType,
    Result,
    Severity,
)

FIXED = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

DEFAULT = Condition(type="TestCondition", reason="TestConditionOK", message="Test condition is OK.")
PERM_RULE = CustomRule(
    type=ProblemType.PERM, condition="TestCondition", reason="TestConditionFail", path="ok.sh"
)
TEMP_RULE = CustomRule(type=ProblemType.TEMP, reason="TempProblem", path="ok.sh")


def make_monitor(message_based=False, skip_initial=False, metrics=None, enable_metrics=False):
    config = CustomPluginConfig(
        plugin="custom",
        source="test-source",
        default_conditions=[DEFAULT],
        rules=[PERM_RULE, TEMP_RULE],
        enable_metrics_reporting=enable_metrics,
        plugin_global_config=PluginGlobalConfig(
            enable_message_change_based_condition_update=message_based,
            skip_initial_status=skip_initial,
        ),
    )
    config.apply_configuration()
    monitor = CustomPluginMonitor(config, metrics=metrics, now=lambda: FIXED)
    monitor.initialize_conditions()
    return monitor


@pytest.mark.parametrize(
    "status, wanted",
    [
        (PluginStatus.OK, ConditionStatus.FALSE),
        (PluginStatus.NON_OK, ConditionStatus.TRUE),
        (PluginStatus.UNKNOWN, ConditionStatus.UNKNOWN),
    ],
)
def test_to_condition_status(status, wanted):
    assert to_condition_status(status) is wanted


def test_initial_conditions_copies_and_resets():
    defaults = [replace_status(DEFAULT, ConditionStatus.TRUE)]
    got = initial_conditions(defaults)
    assert got[0].status is ConditionStatus.FALSE
    assert isinstance(got[0].transition, datetime)
    assert got[0].reason == DEFAULT.reason
    assert got[0].message == DEFAULT.message
    assert defaults[0].status is ConditionStatus.TRUE


def replace_status(condition, status):
    return Condition(
        type=condition.type, status=status, reason=condition.reason, message=condition.message
    )


def test_temporary_problem_emits_warning_only_when_not_ok():
    monitor = make_monitor()
    status = monitor.generate_status(Result(TEMP_RULE, PluginStatus.NON_OK, "boom"))
    assert len(status.events) == 1
    assert status.events[0].severity is Severity.WARN
    assert status.events[0].reason == "TempProblem"
    assert status.events[0].message == "boom"
    assert status.source == "test-source"

    quiet = monitor.generate_status(Result(TEMP_RULE, PluginStatus.OK, "fine"))
    assert quiet.events == []


def test_permanent_problem_transitions():
    monitor = make_monitor()

    status = monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "broken"))
    condition = status.conditions[0]
    assert condition.status is ConditionStatus.TRUE
    assert (condition.reason, condition.message) == ("TestConditionFail", "broken")
    assert condition.transition == FIXED
    assert [e.reason for e in status.events] == ["TestConditionFail"]

    again = monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "broken"))
    assert again.events == []

    recovered = monitor.generate_status(Result(PERM_RULE, PluginStatus.OK, "fine"))
    condition = recovered.conditions[0]
    assert condition.status is ConditionStatus.FALSE
    assert (condition.reason, condition.message) == (DEFAULT.reason, DEFAULT.message)
    assert len(recovered.events) == 1

    unknown = monitor.generate_status(Result(PERM_RULE, PluginStatus.UNKNOWN, "no idea"))
    condition = unknown.conditions[0]
    assert condition.status is ConditionStatus.UNKNOWN
    assert (condition.reason, condition.message) == (DEFAULT.reason, "no idea")

    same = monitor.generate_status(Result(PERM_RULE, PluginStatus.UNKNOWN, "still no idea"))
    assert same.events == []
    assert same.conditions[0].message == "no idea"


@pytest.mark.parametrize("message_based, expect_event", [(False, False), (True, True)])
def test_message_change_based_update(message_based, expect_event):
    monitor = make_monitor(message_based=message_based)
    monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "first"))
    status = monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "second"))
    assert bool(status.events) is expect_event
    assert status.conditions[0].message == ("second" if expect_event else "first")


def test_reason_change_while_true_updates():
    monitor = make_monitor()
    monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "first"))
    other = CustomRule(
        type=ProblemType.PERM, condition="TestCondition", reason="OtherFail", path="ok.sh"
    )
    status = monitor.generate_status(Result(other, PluginStatus.NON_OK, "first"))
    assert status.conditions[0].reason == "OtherFail"
    assert len(status.events) == 1


def test_reported_conditions_are_snapshots():
    monitor = make_monitor()
    status = monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "broken"))
    status.conditions[0].reason = "mutated"
    assert monitor.conditions[0].reason == "TestConditionFail"


@pytest.mark.parametrize("skip_initial, count", [(False, 2), (True, 1)])
def test_process_initial_status(skip_initial, count):
    monitor = make_monitor(skip_initial=skip_initial)
    statuses = list(monitor.process([Result(PERM_RULE, PluginStatus.NON_OK, "broken")]))
    assert len(statuses) == count
    if not skip_initial:
        assert statuses[0].events == []
        assert statuses[0].conditions[0].status is ConditionStatus.FALSE
    assert statuses[-1].conditions[0].status is ConditionStatus.TRUE


class RecordingMetrics:
    def __init__(self):
        self.gauges = []
        self.counters = []

    def set_problem_gauge(self, problem_type, reason, value):
        self.gauges.append((problem_type, reason, value))

    def increment_problem_counter(self, reason, count):
        self.counters.append((reason, count))


def test_metrics_initialized_and_updated():
    metrics = RecordingMetrics()
    monitor = make_monitor(metrics=metrics, enable_metrics=True)
    assert metrics.gauges == [("TestCondition", "TestConditionFail", False)]
    assert metrics.counters == [("TestConditionFail", 0), ("TempProblem", 0)]

    monitor.generate_status(Result(PERM_RULE, PluginStatus.NON_OK, "broken"))
    assert metrics.counters[-1] == ("TestConditionFail", 1)
    assert metrics.gauges[-1] == ("TestCondition", "TestConditionFail", True)


def test_metrics_disabled_records_nothing():
    metrics = RecordingMetrics()
    monitor = make_monitor(metrics=metrics, enable_metrics=False)
    monitor.generate_status(Result(TEMP_RULE, PluginStatus.NON_OK, "boom"))
    assert metrics.gauges == [] and metrics.counters == []


def write_config(tmp_path, plugin):
    script = tmp_path / "check.sh"
    script.write_text("exit 0\n")
    config = {
        "plugin": plugin,
        "source": "health",
        "conditions": [{"type": "TestCondition", "reason": "TestConditionOK", "message": "ok"}],
        "rules": [
            {
                "type": "permanent",
                "condition": "TestCondition",
                "reason": "TestConditionFail",
                "path": str(script),
            }
        ],
    }
    path = tmp_path / "config.json"
    path.write_text(json.dumps(config))
    return path


def test_from_config_file(tmp_path):
    monitor = CustomPluginMonitor.from_config_file(write_config(tmp_path, "custom"))
    assert monitor.config.source == "health"
    assert monitor.config.plugin_global_config.concurrency == 3
    assert monitor.config.plugin_global_config.max_output_length == 80
    assert monitor.config.rules[0].reason == "TestConditionFail"


def test_from_config_file_rejects_other_plugin(tmp_path):
    with pytest.raises(ConfigError):
        CustomPluginMonitor.from_config_file(write_config(tmp_path, "filelog"))


def test_from_config_file_rejects_bad_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        CustomPluginMonitor.from_config_file(path)
import pytest

from nodeproblem.rules import (
    Condition,
    ConditionStatus,
    CustomRule,
    PluginStatus,
    ProblemType,
    Status,
)


def test_plugin_status_values_match_exit_codes():
    assert PluginStatus(0) is PluginStatus.OK
    assert PluginStatus(1) is PluginStatus.NON_OK
    assert PluginStatus(2) is PluginStatus.UNKNOWN


def test_condition_from_dict_keeps_fields():
    cond = Condition.from_dict(
        {"type": "TestCondition", "reason": "TestConditionOK", "message": "Test condition is OK."}
    )
    assert cond.type == "TestCondition"
    assert cond.reason == "TestConditionOK"
    assert cond.message == "Test condition is OK."
    assert cond.status is ConditionStatus.FALSE
    assert cond.transition is None


def test_condition_from_dict_reads_status():
    cond = Condition.from_dict({"type": "X", "status": "True"})
    assert cond.status is ConditionStatus.TRUE


def test_rule_from_dict():
    rule = CustomRule.from_dict(
        {
            "type": "temporary",
            "reason": "MissingPigz",
            "path": "./ok.sh",
            "args": ["--a", "b"],
            "timeout": "3s",
        }
    )
    assert rule.type is ProblemType.TEMP
    assert rule.reason == "MissingPigz"
    assert rule.path == "./ok.sh"
    assert rule.args == ["--a", "b"]
    assert rule.timeout_string == "3s"
    assert rule.timeout is None


def test_rule_from_dict_missing_args_is_empty_list():
    rule = CustomRule.from_dict({"path": "./ok.sh"})
    assert rule.args == []
    assert rule.timeout_string is None


def test_rule_from_dict_unknown_type_rejected():
    with pytest.raises(ValueError):
        CustomRule.from_dict({"type": "sometimes"})


def test_status_defaults_are_independent():
    first = Status(source="a")
    second = Status(source="b")
    first.events.append("x")
    assert second.events == []
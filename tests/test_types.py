from datetime import datetime, timezone

import pytest

from nodestatsmon.types import (
    Condition,
    ConditionStatus,
    Event,
    Monitor,
    ProblemDaemonHandler,
    ProblemType,
    Severity,
    Status,
)


def test_enum_values_come_from_strings():
    assert Severity("info") is Severity.INFO
    assert Severity("warn") is Severity.WARN
    assert ConditionStatus("True") is ConditionStatus.TRUE
    assert ConditionStatus("False") is ConditionStatus.FALSE
    assert ConditionStatus("Unknown") is ConditionStatus.UNKNOWN
    assert ProblemType("temporary") is ProblemType.TEMP
    assert ProblemType("permanent") is ProblemType.PERM


def test_unknown_enum_value_raises():
    with pytest.raises(ValueError):
        Severity("fatal")


def test_status_lists_are_independent():
    first = Status(source="a")
    second = Status(source="b")
    first.events.append(
        Event(Severity.INFO, datetime(2020, 1, 1, tzinfo=timezone.utc), "r", "m")
    )
    assert len(first.events) == 1
    assert second.events == []
    assert second.conditions == []


def test_condition_holds_fields():
    when = datetime(2021, 5, 6, tzinfo=timezone.utc)
    cond = Condition("KernelDeadlock", ConditionStatus.TRUE, when, "reason", "message")
    assert cond.type == "KernelDeadlock"
    assert cond.status == ConditionStatus.TRUE
    assert cond.transition == when


def test_monitor_is_abstract():
    with pytest.raises(TypeError):
        Monitor()


def test_handler_creates_monitor():
    class _Dummy(Monitor):
        def __init__(self, path):
            self.path = path
            self.stopped = False

        def start(self):
            return None

        def stop(self):
            self.stopped = True

    handler = ProblemDaemonHandler(_Dummy, "Set to config file paths.")
    monitor = handler.create_problem_daemon_or_die("/etc/cfg.json")
    assert monitor.path == "/etc/cfg.json"
    assert monitor.start() is None
    monitor.stop()
    assert monitor.stopped is True
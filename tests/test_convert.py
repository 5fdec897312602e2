from datetime import datetime, timezone

import pytest

from nodestatsmon.convert import (
    NodeCondition,
    convert_to_api_condition,
    convert_to_api_condition_status,
    convert_to_api_event_type,
    convert_to_api_timestamp,
)
from nodestatsmon.types import Condition, ConditionStatus, Severity


def test_convert_to_api_condition():
    now = datetime.now(timezone.utc)
    condition = Condition(
        type="TestCondition",
        status=ConditionStatus.TRUE,
        transition=now,
        reason="test reason",
        message="test message",
    )
    expected = NodeCondition(
        type="TestCondition",
        status="True",
        last_transition_time=now,
        reason="test reason",
        message="test message",
    )
    assert convert_to_api_condition(condition) == expected


@pytest.mark.parametrize(
    "status, expected",
    [
        (ConditionStatus.TRUE, "True"),
        (ConditionStatus.FALSE, "False"),
        (ConditionStatus.UNKNOWN, "Unknown"),
    ],
)
def test_convert_status(status, expected):
    assert convert_to_api_condition_status(status) == expected


def test_convert_unknown_status_raises():
    with pytest.raises(ValueError):
        convert_to_api_condition_status("Maybe")


@pytest.mark.parametrize(
    "severity, expected",
    [(Severity.INFO, "Normal"), (Severity.WARN, "Warning"), ("bogus", "Normal")],
)
def test_convert_event_type(severity, expected):
    assert convert_to_api_event_type(severity) == expected


def test_convert_timestamp_preserves_value():
    when = datetime(2020, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
    assert convert_to_api_timestamp(when) == when
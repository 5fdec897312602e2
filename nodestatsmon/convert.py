"""Conversion of internal problem types to cluster API representations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from nodestatsmon.types import Condition, ConditionStatus, Severity

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

_STATUS_MAP = {
    ConditionStatus.TRUE: CONDITION_TRUE,
    ConditionStatus.FALSE: CONDITION_FALSE,
    ConditionStatus.UNKNOWN: CONDITION_UNKNOWN,
}


@dataclass(frozen=True)
class NodeCondition:
    """A node condition in the cluster API shape."""

    type: str
    status: str
    last_transition_time: datetime
    reason: str
    message: str


def convert_to_api_condition(condition: Condition) -> NodeCondition:
    """Convert an internal condition to an API node condition."""
    return NodeCondition(
        type=condition.type,
        status=convert_to_api_condition_status(condition.status),
        last_transition_time=convert_to_api_timestamp(condition.transition),
        reason=condition.reason,
        message=condition.message,
    )


def convert_to_api_condition_status(status: Union[ConditionStatus, str]) -> str:
    """Convert an internal condition status to the API status string."""
    try:
        return _STATUS_MAP[ConditionStatus(status)]
    except ValueError:
        raise ValueError("unknown condition status") from None


def convert_to_api_event_type(severity: Union[Severity, str]) -> str:
    """Map a severity to an API event type; unknown severities map to Normal."""
    try:
        severity = Severity(severity)
    except ValueError:
        return EVENT_TYPE_NORMAL
    return EVENT_TYPE_WARNING if severity is Severity.WARN else EVENT_TYPE_NORMAL


def convert_to_api_timestamp(timestamp: datetime) -> datetime:
    """Convert a timestamp to the API time representation, an equal datetime."""
    if not isinstance(timestamp, datetime):
        raise TypeError(f"expected a datetime, got {type(timestamp).__name__}")
    return datetime(
        timestamp.year,
        timestamp.month,
        timestamp.day,
        timestamp.hour,
        timestamp.minute,
        timestamp.second,
        timestamp.microsecond,
        tzinfo=timestamp.tzinfo,
        fold=timestamp.fold,
    )
"""Core problem-reporting types shared by monitors and exporters."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional


class Severity(str, Enum):
    """Severity of a problem event."""

    INFO = "info"
    WARN = "warn"


class ConditionStatus(str, Enum):
    """Status of a node condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ProblemType(str, Enum):
    """Whether a problem is temporary (event) or permanent (condition)."""

    TEMP = "temporary"
    PERM = "permanent"


@dataclass
class Condition:
    """A node condition as tracked by the problem detector."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Event:
    """A problem event as tracked by the problem detector."""

    severity: Severity
    timestamp: datetime
    reason: str = ""
    message: str = ""


@dataclass
class Status:
    """What a problem daemon reports: its events and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)


class Monitor(abc.ABC):
    """Watches the system and reports problems and metrics."""

    @abc.abstractmethod
    def start(self) -> Optional[object]:
        """Start the monitor; return a status source, or None for metrics-only monitors."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the monitor."""


@dataclass
class ProblemDaemonHandler:
    """How to create one type of problem daemon from a config path."""

    create_problem_daemon_or_die: Callable[[str], Monitor]
    cmd_option_description: str = ""
"""In-process metrics with tagged measurements, plus Prometheus text parsing."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Union


class MetricError(Exception):
    """Raised when a metric cannot be created, recorded, parsed or found."""


class Aggregation(str, Enum):
    """How measurements are folded into a data point."""

    LAST_VALUE = "LastValue"  # gauge: last measurement wins
    SUM = "Sum"  # counter: measurements add up


class MetricID(str, Enum):
    """Identifiers of every metric the monitors can report."""

    CPU_RUNNABLE_TASK_COUNT = "cpu/runnable_task_count"
    CPU_USAGE_TIME = "cpu/usage_time"
    CPU_LOAD_1M = "cpu/load_1m"
    CPU_LOAD_5M = "cpu/load_5m"
    CPU_LOAD_15M = "cpu/load_15m"
    PROBLEM_COUNTER = "problem_counter"
    PROBLEM_GAUGE = "problem_gauge"
    DISK_IO_TIME = "disk/io_time"
    DISK_WEIGHTED_IO = "disk/weighted_io"
    DISK_AVG_QUEUE_LEN = "disk/avg_queue_len"
    DISK_OPS_COUNT = "disk/operation_count"
    DISK_MERGED_OPS_COUNT = "disk/merged_operation_count"
    DISK_OPS_BYTES = "disk/operation_bytes_count"
    DISK_OPS_TIME = "disk/operation_time"
    DISK_BYTES_USED = "disk/bytes_used"
    DISK_PERCENT_USED = "disk/percent_used"
    HOST_UPTIME = "host/uptime"
    MEMORY_BYTES_USED = "memory/bytes_used"
    MEMORY_ANONYMOUS_USED = "memory/anonymous_used"
    MEMORY_PAGE_CACHE_USED = "memory/page_cache_used"
    MEMORY_UNEVICTABLE_USED = "memory/unevictable_used"
    MEMORY_DIRTY_USED = "memory/dirty_used"
    MEMORY_PERCENT_USED = "memory/percent_used"
    OS_FEATURE = "system/os_feature"
    SYSTEM_PROCESSES_TOTAL = "system/processes_total"
    SYSTEM_PROCS_RUNNING = "system/procs_running"
    SYSTEM_PROCS_BLOCKED = "system/procs_blocked"
    SYSTEM_INTERRUPTS_TOTAL = "system/interrupts_total"
    SYSTEM_CPU_STAT = "system/cpu_stat"
    NET_DEV_RX_BYTES = "net/rx_bytes"
    NET_DEV_RX_PACKETS = "net/rx_packets"
    NET_DEV_RX_ERRORS = "net/rx_errors"
    NET_DEV_RX_DROPPED = "net/rx_dropped"
    NET_DEV_RX_FIFO = "net/rx_fifo"
    NET_DEV_RX_FRAME = "net/rx_frame"
    NET_DEV_RX_COMPRESSED = "net/rx_compressed"
    NET_DEV_RX_MULTICAST = "net/rx_multicast"
    NET_DEV_TX_BYTES = "net/tx_bytes"
    NET_DEV_TX_PACKETS = "net/tx_packets"
    NET_DEV_TX_ERRORS = "net/tx_errors"
    NET_DEV_TX_DROPPED = "net/tx_dropped"
    NET_DEV_TX_FIFO = "net/tx_fifo"
    NET_DEV_TX_COLLISIONS = "net/tx_collisions"
    NET_DEV_TX_CARRIER = "net/tx_carrier"
    NET_DEV_TX_COMPRESSED = "net/tx_compressed"


class MetricMapping:
    """Thread-safe mapping from view names to metric IDs."""

    def __init__(self) -> None:
        self._map: dict[str, Union[MetricID, str]] = {}
        self._lock = threading.RLock()

    def add_mapping(self, metric_id: Union[MetricID, str], view_name: str) -> None:
        """Remember that view_name reports metric_id."""
        with self._lock:
            self._map[view_name] = metric_id

    def view_name_to_metric_id(self, view_name: str) -> Optional[Union[MetricID, str]]:
        """Return the metric ID behind view_name, or None if unknown."""
        with self._lock:
            return self._map.get(view_name)


METRIC_MAP = MetricMapping()

_tag_keys: set[str] = set()
_tag_lock = threading.RLock()
_MAX_TAG_KEY_LEN = 255


def _check_tag_name(name: str) -> None:
    if not name or len(name) > _MAX_TAG_KEY_LEN or any(not " " <= ch <= "~" for ch in name):
        raise MetricError(
            "invalid key name: only ASCII characters accepted; max length must be 255 characters"
        )


def _register_tag_names(tag_names: Iterable[str]) -> tuple[str, ...]:
    names = tuple(tag_names)
    with _tag_lock:
        for name in names:
            if name in _tag_keys:
                continue
            try:
                _check_tag_name(name)
            except MetricError as exc:
                raise MetricError(f"failed to create tag {name!r}: {exc}") from exc
            _tag_keys.add(name)
    return names


@dataclass
class Float64MetricRepresentation:
    """Snapshot of one float64 data point."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0


@dataclass
class Int64MetricRepresentation:
    """Snapshot of one int64 data point."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: int = 0


class _Metric:
    _zero: Union[int, float] = 0

    def __init__(self, name: str, description: str, unit: str,
                 aggregation: Aggregation, tag_names: tuple[str, ...]) -> None:
        self.name = name
        self.description = description
        self.unit = unit
        self.aggregation = aggregation
        self.tag_names = tag_names
        self._rows: dict[tuple[tuple[str, str], ...], Union[int, float]] = {}
        self._lock = threading.Lock()

    def _convert(self, measurement):
        raise NotImplementedError

    def record(self, tags: Mapping[str, str], measurement) -> None:
        """Record a measurement with the given tags as labels."""
        with _tag_lock:
            for tag_name in tags:
                if tag_name not in _tag_keys:
                    raise MetricError(
                        f"referencing none existing tag {tag_name!r} in metric {self.name!r}"
                    )
        value = self._convert(measurement)
        key = tuple(sorted((k, v) for k, v in tags.items() if k in self.tag_names))
        with self._lock:
            if self.aggregation is Aggregation.SUM:
                self._rows[key] = self._rows.get(key, self._zero) + value
            else:
                self._rows[key] = value

    def _snapshot(self):
        with self._lock:
            return [(dict(key), value) for key, value in self._rows.items()]


class Float64Metric(_Metric):
    """A float64 metric aggregated in process."""

    _zero = 0.0

    def _convert(self, measurement) -> float:
        return float(measurement)

    def record(self, tags: Mapping[str, str], measurement: float) -> None:
        """Record a float measurement with the given tags as labels."""
        super().record(tags, measurement)

    def list_metrics(self) -> list[Float64MetricRepresentation]:
        """Snapshot of the current data points."""
        return [Float64MetricRepresentation(self.name, labels, value)
                for labels, value in self._snapshot()]


class Int64Metric(_Metric):
    """An int64 metric aggregated in process."""

    _zero = 0

    def _convert(self, measurement) -> int:
        return int(measurement)

    def record(self, tags: Mapping[str, str], measurement: int) -> None:
        """Record an integer measurement with the given tags as labels."""
        super().record(tags, measurement)

    def list_metrics(self) -> list[Int64MetricRepresentation]:
        """Snapshot of the current data points."""
        return [Int64MetricRepresentation(self.name, labels, value)
                for labels, value in self._snapshot()]


def _prepare(metric_id, view_name, aggregation, tag_names):
    METRIC_MAP.add_mapping(metric_id, view_name)
    try:
        names = _register_tag_names(tag_names)
    except MetricError as exc:
        raise MetricError(
            f"failed to create metric {view_name!r} because of tag creation failure: {exc}"
        ) from exc
    try:
        agg = Aggregation(aggregation)
    except ValueError:
        raise MetricError(f"unknown aggregation option {str(aggregation)!r}") from None
    return agg, names


def new_float64_metric(metric_id, view_name: str, description: str, unit: str,
                       aggregation, tag_names: Iterable[str]) -> Optional[Float64Metric]:
    """Create a float64 metric; None when view_name is empty."""
    if not view_name:
        return None
    agg, names = _prepare(metric_id, view_name, aggregation, tag_names)
    return Float64Metric(view_name, description, unit, agg, names)


def new_int64_metric(metric_id, view_name: str, description: str, unit: str,
                     aggregation, tag_names: Iterable[str]) -> Optional[Int64Metric]:
    """Create an int64 metric; None when view_name is empty."""
    if not view_name:
        return None
    agg, names = _prepare(metric_id, view_name, aggregation, tag_names)
    return Int64Metric(view_name, description, unit, agg, names)


_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_TYPES = {"counter", "gauge", "histogram", "summary", "untyped"}
_LABEL_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}


def _skip_blank(line: str, pos: int) -> int:
    while pos < len(line) and line[pos] in " \t":
        pos += 1
    return pos


def _parse_labels(line: str, pos: int, lineno: int) -> tuple[dict[str, str], int]:
    labels: dict[str, str] = {}
    while True:
        pos = _skip_blank(line, pos)
        if pos < len(line) and line[pos] == "}":
            return labels, pos + 1
        match = _LABEL_NAME.match(line, pos)
        if not match:
            raise MetricError(f"text format parsing error in line {lineno}: invalid label name")
        name = match.group(0)
        if name in labels:
            raise MetricError(
                f"text format parsing error in line {lineno}: duplicate label name {name!r}"
            )
        pos = _skip_blank(line, match.end())
        if pos >= len(line) or line[pos] != "=":
            raise MetricError(f"text format parsing error in line {lineno}: expected '='")
        pos = _skip_blank(line, pos + 1)
        if pos >= len(line) or line[pos] != '"':
            raise MetricError(f"text format parsing error in line {lineno}: expected '\"'")
        pos += 1
        chars: list[str] = []
        while True:
            if pos >= len(line):
                raise MetricError(
                    f"text format parsing error in line {lineno}: unterminated label value"
                )
            ch = line[pos]
            if ch == "\\":
                if pos + 1 >= len(line) or line[pos + 1] not in _LABEL_ESCAPES:
                    raise MetricError(
                        f"text format parsing error in line {lineno}: invalid escape sequence"
                    )
                chars.append(_LABEL_ESCAPES[line[pos + 1]])
                pos += 2
                continue
            if ch == '"':
                pos += 1
                break
            chars.append(ch)
            pos += 1
        labels[name] = "".join(chars)
        pos = _skip_blank(line, pos)
        if pos < len(line) and line[pos] == ",":
            pos += 1
        elif pos >= len(line) or line[pos] != "}":
            raise MetricError(
                f"text format parsing error in line {lineno}: expected ',' or '}}'"
            )


def _family_for(name: str, families: dict) -> str:
    if name in families:
        return name
    for suffix in ("_bucket", "_sum", "_count"):
        if name.endswith(suffix):
            base = name[: -len(suffix)]
            if base in families and families[base]["type"] in ("histogram", "summary"):
                return base
    return name


def parse_prometheus_metrics(metrics_text: str) -> list[Float64MetricRepresentation]:
    """Parse Prometheus text exposition format; only counters and gauges are accepted."""
    families: dict[str, dict] = {}
    text = metrics_text.replace("\r", "")
    for lineno, raw in enumerate(text.split("\n"), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            tokens = line[1:].split(None, 2)
            if len(tokens) < 2 or tokens[0] not in ("HELP", "TYPE"):
                continue
            name = tokens[1]
            if not _METRIC_NAME.fullmatch(name):
                raise MetricError(f"text format parsing error in line {lineno}: invalid metric name")
            family = families.setdefault(name, {"type": None, "samples": []})
            if tokens[0] == "TYPE":
                kind = tokens[2].strip() if len(tokens) > 2 else ""
                if kind not in _TYPES:
                    raise MetricError(
                        f"text format parsing error in line {lineno}: unknown metric type {kind!r}"
                    )
                if family["type"] is not None:
                    raise MetricError(
                        f"text format parsing error in line {lineno}: second TYPE line for metric name {name!r}"
                    )
                if family["samples"]:
                    raise MetricError(
                        f"text format parsing error in line {lineno}: TYPE line for {name!r} after samples"
                    )
                family["type"] = kind
            continue
        match = _METRIC_NAME.match(line)
        if not match:
            raise MetricError(f"text format parsing error in line {lineno}: invalid metric name")
        name = match.group(0)
        pos = _skip_blank(line, match.end())
        labels: dict[str, str] = {}
        if pos < len(line) and line[pos] == "{":
            labels, pos = _parse_labels(line, pos + 1, lineno)
        rest = line[pos:].split()
        if not rest or len(rest) > 2:
            raise MetricError(f"text format parsing error in line {lineno}: expected value")
        try:
            value = float(rest[0])
            if len(rest) == 2:
                int(rest[1])
        except ValueError:
            raise MetricError(
                f"text format parsing error in line {lineno}: invalid number {line[pos:].strip()!r}"
            ) from None
        family_name = _family_for(name, families)
        family = families.setdefault(family_name, {"type": None, "samples": []})
        family["samples"].append((labels, value))

    result: list[Float64MetricRepresentation] = []
    for name, family in families.items():
        kind = family["type"] or "untyped"
        for labels, value in family["samples"]:
            if kind not in ("counter", "gauge"):
                raise MetricError(f"unexpected MetricType {kind.upper()} for metric {name}")
            result.append(Float64MetricRepresentation(name, labels, value))
    return result


def get_float64_metric(metrics: Iterable[Float64MetricRepresentation], name: str,
                       labels: Mapping[str, str],
                       strict_label_matching: bool) -> Float64MetricRepresentation:
    """Find the first metric named name whose labels match.

    With strict matching the labels must be identical; otherwise the metric's
    labels need only be a superset of the given ones.
    """
    for metric in metrics:
        if metric.name != name:
            continue
        if strict_label_matching and len(metric.labels) != len(labels):
            continue
        if all(metric.labels.get(key, "") == value for key, value in labels.items()):
            return metric
    raise MetricError("no matching metric found")
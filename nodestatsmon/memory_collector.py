"""Collects memory usage metrics from /proc/meminfo."""

from __future__ import annotations

import logging
import os
from typing import Optional

from nodestatsmon.config import STATE_LABEL, MemoryStatsConfig, MetricConfig
from nodestatsmon.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

_KIB = 1024


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse /proc/meminfo into a mapping of field name to its raw value (usually kB)."""
    result: dict[str, int] = {}
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) not in (2, 3):
            raise ValueError(f"malformed meminfo line {line!r}")
        try:
            value = int(parts[1])
        except ValueError as exc:
            raise ValueError(f"malformed meminfo line {line!r}: {exc}") from exc
        if value < 0:
            raise ValueError(f"malformed meminfo line {line!r}: negative value")
        result[parts[0].rstrip(":")] = value
    return result


def _display_name(config: MemoryStatsConfig, metric_id: MetricID) -> str:
    return config.metrics_configs.get(metric_id.value, MetricConfig()).display_name


class MemoryCollector:
    """Records memory usage broken down by state."""

    def __init__(self, memory_config: MemoryStatsConfig, proc_path: str = "/proc") -> None:
        self.config = memory_config
        self.proc_path = proc_path

        def i64(metric_id, description, tags) -> Optional[Int64Metric]:
            return new_int64_metric(metric_id, _display_name(memory_config, metric_id),
                                    description, "Byte", Aggregation.LAST_VALUE, tags)

        self.bytes_used = i64(
            MetricID.MEMORY_BYTES_USED,
            "Memory usage by each memory state, in Bytes. Summing values of all states "
            "yields the total memory on the node.",
            [STATE_LABEL])
        self.percent_used: Optional[Float64Metric] = new_float64_metric(
            MetricID.MEMORY_PERCENT_USED,
            _display_name(memory_config, MetricID.MEMORY_PERCENT_USED),
            "Memory usage in percentage of total memory.",
            "%",
            Aggregation.LAST_VALUE,
            [STATE_LABEL])
        self.anonymous_used = i64(
            MetricID.MEMORY_ANONYMOUS_USED,
            "Anonymous memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL])
        self.page_cache_used = i64(
            MetricID.MEMORY_PAGE_CACHE_USED,
            "Page cache memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL])
        self.unevictable_used = i64(
            MetricID.MEMORY_UNEVICTABLE_USED,
            "Unevictable memory usage, in Bytes",
            [])
        self.dirty_used = i64(
            MetricID.MEMORY_DIRTY_USED,
            "Dirty pages usage, in Bytes. Dirty means the memory is waiting to be written "
            "back to disk, and writeback means the memory is actively being written back "
            "to disk.",
            [STATE_LABEL])

    def _read_meminfo(self) -> Optional[dict[str, int]]:
        path = os.path.join(self.proc_path, "meminfo")
        try:
            with open(path, encoding="utf-8") as handle:
                return parse_meminfo(handle.read())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve memory stats: %s", exc)
            return None

    @staticmethod
    def _record_states(metric: Optional[Int64Metric], info: dict[str, int],
                       states: tuple[tuple[str, str], ...]) -> None:
        if metric is None:
            return
        for state, key in states:
            if key in info:
                metric.record({STATE_LABEL: state}, info[key] * _KIB)

    def collect(self) -> None:
        """Read meminfo and record every configured memory metric."""
        info = self._read_meminfo()
        if info is None:
            return

        parts = ("MemTotal", "MemFree", "Buffers", "Cached", "Slab")
        used_kb: Optional[int] = None
        if all(key in info for key in parts):
            used_kb = (info["MemTotal"] - info["MemFree"] - info["Buffers"]
                       - info["Cached"] - info["Slab"])

        if self.bytes_used is not None:
            self._record_states(self.bytes_used, info, (
                ("free", "MemFree"),
                ("buffered", "Buffers"),
                ("cached", "Cached"),
                ("slab", "Slab"),
            ))
            if used_kb is not None:
                self.bytes_used.record({STATE_LABEL: "used"}, used_kb * _KIB)

        if self.percent_used is not None and used_kb is not None and info["MemTotal"] > 0:
            ratio = used_kb / info["MemTotal"]
            self.percent_used.record({STATE_LABEL: "used"}, ratio * 100.0)

        self._record_states(self.dirty_used, info, (
            ("dirty", "Dirty"),
            ("writeback", "Writeback"),
        ))
        self._record_states(self.anonymous_used, info, (
            ("active", "Active(anon)"),
            ("inactive", "Inactive(anon)"),
        ))
        self._record_states(self.page_cache_used, info, (
            ("active", "Active(file)"),
            ("inactive", "Inactive(file)"),
        ))

        if self.unevictable_used is not None and "Unevictable" in info:
            self.unevictable_used.record({}, info["Unevictable"] * _KIB)
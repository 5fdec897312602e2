"""Collects CPU metrics: load averages, usage time and /proc/stat counters."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Optional

import psutil

from nodestatsmon.config import (
    CPU_LABEL,
    STAGE_LABEL,
    STATE_LABEL,
    CPUStatsConfig,
    MetricConfig,
)
from nodestatsmon.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

# Ratio between one second and one USER_HZ clock tick; 100 on nearly every architecture.
CLOCK_TICK = 100.0

_USAGE_STATES = (
    "user", "system", "idle", "nice", "iowait",
    "irq", "softirq", "steal", "guest", "guest_nice",
)

_CPU_STAGES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("iRQ", "irq"),
    ("softIRQ", "softirq"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guestNice", "guest_nice"),
)


@dataclass
class CPUStat:
    """Time one CPU spent in each state, in seconds."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass
class ProcStat:
    """The parts of /proc/stat the collector reports."""

    boot_time: int = 0
    cpu_total: CPUStat = field(default_factory=CPUStat)
    cpu: dict[int, CPUStat] = field(default_factory=dict)
    irq_total: int = 0
    context_switches: int = 0
    process_created: int = 0
    processes_running: int = 0
    processes_blocked: int = 0


_CPU_FIELD_NAMES = tuple(f.name for f in fields(CPUStat))
_COUNTERS = {
    "btime": "boot_time",
    "intr": "irq_total",
    "ctxt": "context_switches",
    "processes": "process_created",
    "procs_running": "processes_running",
    "procs_blocked": "processes_blocked",
}


def _parse_cpu_line(parts: list[str], line: str) -> CPUStat:
    values = parts[1:1 + len(_CPU_FIELD_NAMES)]
    if not values:
        raise ValueError(f"couldn't parse {line!r} (cpu): no values")
    try:
        seconds = [float(v) / CLOCK_TICK for v in values]
    except ValueError as exc:
        raise ValueError(f"couldn't parse {line!r} (cpu): {exc}") from exc
    return CPUStat(**dict(zip(_CPU_FIELD_NAMES, seconds)))


def parse_proc_stat(text: str) -> ProcStat:
    """Parse the contents of /proc/stat; CPU times come back in seconds."""
    stat = ProcStat()
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        key = parts[0]
        if key in _COUNTERS:
            try:
                setattr(stat, _COUNTERS[key], int(parts[1]))
            except (IndexError, ValueError) as exc:
                raise ValueError(f"couldn't parse {line!r} ({key}): {exc}") from exc
        elif key == "cpu":
            stat.cpu_total = _parse_cpu_line(parts, line)
        elif key.startswith("cpu"):
            try:
                cpu_id = int(key[3:])
            except ValueError as exc:
                raise ValueError(f"couldn't parse {line!r} (cpu id): {exc}") from exc
            stat.cpu[cpu_id] = _parse_cpu_line(parts, line)
    return stat


def _display_name(config: CPUStatsConfig, metric_id: MetricID) -> str:
    return config.metrics_configs.get(metric_id.value, MetricConfig()).display_name


class CPUCollector:
    """Records CPU load, usage time and per-CPU statistics."""

    def __init__(self, cpu_config: CPUStatsConfig, proc_path: str) -> None:
        self.config = cpu_config
        self.proc_path = proc_path

        def f64(metric_id, description, unit, aggregation, tags) -> Optional[Float64Metric]:
            return new_float64_metric(metric_id, _display_name(cpu_config, metric_id),
                                      description, unit, aggregation, tags)

        def i64(metric_id, description, unit, aggregation, tags) -> Optional[Int64Metric]:
            return new_int64_metric(metric_id, _display_name(cpu_config, metric_id),
                                    description, unit, aggregation, tags)

        self.runnable_task_count = f64(
            MetricID.CPU_RUNNABLE_TASK_COUNT,
            "The average number of runnable tasks in the run-queue during the last minute",
            "1", Aggregation.LAST_VALUE, [])
        self.usage_time = f64(
            MetricID.CPU_USAGE_TIME, "CPU usage, in seconds", "s",
            Aggregation.SUM, [STATE_LABEL])
        self.load_1m = f64(MetricID.CPU_LOAD_1M, "CPU average load (1m)", "1",
                           Aggregation.LAST_VALUE, [])
        self.load_5m = f64(MetricID.CPU_LOAD_5M, "CPU average load (5m)", "1",
                           Aggregation.LAST_VALUE, [])
        self.load_15m = f64(MetricID.CPU_LOAD_15M, "CPU average load (15m)", "1",
                            Aggregation.LAST_VALUE, [])
        self.processes_total = i64(
            MetricID.SYSTEM_PROCESSES_TOTAL, "Number of forks since boot.", "1",
            Aggregation.SUM, [])
        self.procs_running = i64(
            MetricID.SYSTEM_PROCS_RUNNING, "Number of processes currently running.", "1",
            Aggregation.LAST_VALUE, [])
        self.procs_blocked = i64(
            MetricID.SYSTEM_PROCS_BLOCKED, "Number of processes currently blocked.", "1",
            Aggregation.LAST_VALUE, [])
        self.interrupts_total = i64(
            MetricID.SYSTEM_INTERRUPTS_TOTAL,
            "Total number of interrupts serviced (cumulative).", "1",
            Aggregation.SUM, [])
        self.cpu_stat = f64(
            MetricID.SYSTEM_CPU_STAT,
            "Cumulative time each cpu spent in various stages.", "ns",
            Aggregation.SUM, [CPU_LABEL, STAGE_LABEL])

        self.last_usage_time: dict[str, float] = {}

    def _record_load(self) -> None:
        load_metrics = (self.runnable_task_count, self.load_1m, self.load_5m, self.load_15m)
        if all(metric is None for metric in load_metrics):
            return
        try:
            load1, load5, load15 = os.getloadavg()
        except (OSError, AttributeError) as exc:
            log.error("Failed to retrieve average CPU load: %s", exc)
            return
        for metric, value in zip(load_metrics, (load1, load1, load5, load15)):
            if metric is not None:
                metric.record({}, value)

    def _record_usage(self) -> None:
        if self.usage_time is None:
            return
        try:
            times = psutil.cpu_times(percpu=False)
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve CPU timers stat: %s", exc)
            return
        for state in _USAGE_STATES:
            current = CLOCK_TICK * getattr(times, state, 0.0)
            self.usage_time.record({STATE_LABEL: state},
                                   current - self.last_usage_time.get(state, 0.0))
            self.last_usage_time[state] = current

    def _record_system_stats(self) -> None:
        if all(metric is None for metric in (
                self.cpu_stat, self.interrupts_total, self.processes_total,
                self.procs_blocked, self.procs_running)):
            return
        path = os.path.join(self.proc_path, "stat")
        try:
            with open(path, encoding="utf-8") as handle:
                stats = parse_proc_stat(handle.read())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve cpu/process stats: %s", exc)
            return

        if self.processes_total is not None:
            self.processes_total.record({}, stats.process_created)
        if self.procs_running is not None:
            self.procs_running.record({}, stats.processes_running)
        if self.procs_blocked is not None:
            self.procs_blocked.record({}, stats.processes_blocked)
        if self.interrupts_total is not None:
            self.interrupts_total.record({}, stats.irq_total)

        if self.cpu_stat is not None:
            for cpu_id, cpu in stats.cpu.items():
                for stage, attr in _CPU_STAGES:
                    self.cpu_stat.record(
                        {CPU_LABEL: f"cpu{cpu_id}", STAGE_LABEL: stage}, getattr(cpu, attr))

    def collect(self) -> None:
        """Record load, usage and system statistics."""
        self._record_load()
        self._record_usage()
        self._record_system_stats()
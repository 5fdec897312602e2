"""Collects disk IO counters and disk space usage."""

from __future__ import annotations

import logging
import math
import os
import subprocess
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Mapping, Optional, Union

import psutil

from nodestatsmon.config import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    FS_TYPE_LABEL,
    MOUNT_OPTION_LABEL,
    STATE_LABEL,
    DiskStatsConfig,
    MetricConfig,
)
from nodestatsmon.metrics import (
    Aggregation,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

log = logging.getLogger(__name__)

_SECTOR_SIZE = 512
_DIRECTIONAL_FIELDS = ("count", "merged_count", "bytes", "time")


@dataclass
class _IOCounters:
    name: str
    read_count: int = 0
    merged_read_count: int = 0
    write_count: int = 0
    merged_write_count: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_time: int = 0
    write_time: int = 0
    iops_in_progress: int = 0
    io_time: int = 0
    weighted_io: int = 0


def _parse_diskstats(text: str, names: Iterable[str]) -> dict[str, _IOCounters]:
    wanted = list(names)
    result: dict[str, _IOCounters] = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 14:
            continue
        name = fields[2]
        if wanted and name not in wanted:
            continue
        try:
            values = [int(v) for v in fields[3:14]]
        except ValueError as exc:
            raise ValueError(f"malformed diskstats line {line!r}: {exc}") from exc
        (reads, merged_reads, sectors_read, read_time, writes, merged_writes,
         sectors_written, write_time, in_progress, io_time, weighted_io) = values
        result[name] = _IOCounters(
            name=name,
            read_count=reads,
            merged_read_count=merged_reads,
            write_count=writes,
            merged_write_count=merged_writes,
            read_bytes=sectors_read * _SECTOR_SIZE,
            write_bytes=sectors_written * _SECTOR_SIZE,
            read_time=read_time,
            write_time=write_time,
            iops_in_progress=in_progress,
            io_time=io_time,
            weighted_io=weighted_io,
        )
    return result


def _display_name(config: DiskStatsConfig, metric_id: MetricID) -> str:
    return config.metrics_configs.get(metric_id.value, MetricConfig()).display_name


def list_root_block_devices(timeout: Union[timedelta, float]) -> list[str]:
    """List block devices that are neither slaves nor holders, using lsblk."""
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    output: Any = ""
    try:
        # -d skips slave/holder devices, -n drops headings, -o NAME prints names only.
        completed = subprocess.run(
            ["lsblk", "-d", "-n", "-o", "NAME"],
            capture_output=True, timeout=seconds, check=False,
        )
        output = completed.stdout
        if completed.returncode != 0:
            log.error("Error calling lsblk")
    except subprocess.TimeoutExpired as exc:
        log.error("Error calling lsblk")
        output = exc.stdout or ""
    except OSError:
        log.error("Error calling lsblk")
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    return output.strip().split("\n")


def list_attached_block_devices(partitions: Iterable[Any]) -> list[str]:
    """List the devices of all currently attached partitions."""
    return [partition.device for partition in partitions]


class DiskCollector:
    """Records disk IO deltas per device and disk space usage per partition."""

    def __init__(self, disk_config: DiskStatsConfig, proc_path: str = "/proc") -> None:
        self.config = disk_config
        self.proc_path = proc_path

        def i64(metric_id, description, unit, aggregation, tags):
            return new_int64_metric(metric_id, _display_name(disk_config, metric_id),
                                    description, unit, aggregation, tags)

        def f64(metric_id, description, unit, aggregation, tags):
            return new_float64_metric(metric_id, _display_name(disk_config, metric_id),
                                      description, unit, aggregation, tags)

        self.io_time = i64(MetricID.DISK_IO_TIME, "The IO time spent on the disk, in ms",
                           "ms", Aggregation.SUM, [DEVICE_NAME_LABEL])
        self.weighted_io = i64(MetricID.DISK_WEIGHTED_IO, "The weighted IO on the disk, in ms",
                               "ms", Aggregation.SUM, [DEVICE_NAME_LABEL])
        self.avg_queue_len = f64(MetricID.DISK_AVG_QUEUE_LEN,
                                 "The average queue length on the disk", "1",
                                 Aggregation.LAST_VALUE, [DEVICE_NAME_LABEL])
        self.ops_count = i64(MetricID.DISK_OPS_COUNT, "Disk operations count", "1",
                             Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.merged_ops_count = i64(MetricID.DISK_MERGED_OPS_COUNT,
                                    "Disk merged operations count", "1",
                                    Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.ops_bytes = i64(MetricID.DISK_OPS_BYTES, "Bytes transferred in disk operations",
                             "1", Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.ops_time = i64(MetricID.DISK_OPS_TIME, "Time spent in disk operations, in ms",
                            "ms", Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL])
        self.bytes_used = i64(MetricID.DISK_BYTES_USED, "Disk bytes used, in Bytes", "Byte",
                              Aggregation.LAST_VALUE,
                              [DEVICE_NAME_LABEL, FS_TYPE_LABEL, MOUNT_OPTION_LABEL,
                               STATE_LABEL])
        self.percent_used = f64(MetricID.DISK_PERCENT_USED,
                                "Disk usage in percentage of total space", "%",
                                Aggregation.LAST_VALUE, [DEVICE_NAME_LABEL])

        self.last_io_time: dict[str, int] = {}
        self.last_weighted_io: dict[str, int] = {}
        self._last: dict[str, dict[str, int]] = defaultdict(dict)
        self.last_sample_time: float = 0.0

    def _directional_metrics(self, direction: str):
        return (
            (self.ops_count, f"{direction}_count"),
            (self.merged_ops_count, f"merged_{direction}_count"),
            (self.ops_bytes, f"{direction}_bytes"),
            (self.ops_time, f"{direction}_time"),
        )

    def record_io_counters(self, io_counters: Mapping[str, Any], sample_time: float) -> None:
        """Record IO deltas since the previous sample; sample_time is in seconds."""
        for device, stat in io_counters.items():
            tags = {DEVICE_NAME_LABEL: device}

            history_exists = device in self.last_io_time
            last_io_time = self.last_io_time.get(device, 0)
            last_weighted_io = self.last_weighted_io.get(device, 0)
            self.last_io_time[device] = stat.io_time
            self.last_weighted_io[device] = stat.weighted_io

            if self.io_time is not None:
                self.io_time.record(tags, stat.io_time - last_io_time)
            if self.weighted_io is not None:
                self.weighted_io.record(tags, stat.weighted_io - last_weighted_io)
            if history_exists:
                avg_queue_len = 0.0
                delta = stat.weighted_io - last_weighted_io
                if delta != 0:
                    diff_ms = (sample_time - self.last_sample_time) * 1000
                    avg_queue_len = delta / diff_ms if diff_ms else math.copysign(math.inf, delta)
                if self.avg_queue_len is not None:
                    self.avg_queue_len.record(tags, avg_queue_len)

            for direction in ("read", "write"):
                dir_tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: direction}
                for metric, attr in self._directional_metrics(direction):
                    if metric is None:
                        continue
                    current = getattr(stat, attr)
                    metric.record(dir_tags, current - self._last[attr].get(device, 0))
                    self._last[attr][device] = current
        self.last_sample_time = sample_time

    def _read_io_counters(self, devices: list[str]) -> dict[str, _IOCounters]:
        path = os.path.join(self.proc_path, "diskstats")
        with open(path, encoding="utf-8") as handle:
            return _parse_diskstats(handle.read(), devices)

    def collect(self) -> None:
        """Record disk IO counters and, when configured, disk space usage."""
        devices: list[str] = []
        if self.config.include_root_blk:
            devices.extend(list_root_block_devices(self.config.lsblk_timeout))

        try:
            partitions = psutil.disk_partitions(all=False)
        except (OSError, psutil.Error) as exc:
            log.error("Failed to list disk partitions: %s", exc)
            return

        if self.config.include_all_attached_blk:
            devices.extend(list_attached_block_devices(partitions))

        try:
            io_counters = self._read_io_counters(devices)
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve disk IO counters: %s", exc)
            return

        self.record_io_counters(io_counters, time.monotonic())

        if self.bytes_used is None:
            return

        # Report each device once even when it is mounted several times.
        seen: set[str] = set()
        for partition in partitions:
            if partition.device in seen:
                continue
            seen.add(partition.device)
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (OSError, psutil.Error) as exc:
                log.error("Failed to retrieve disk usage for %r: %s", partition.mountpoint, exc)
                continue
            device_name = partition.device.removeprefix("/dev/")
            opts = partition.opts
            if not isinstance(opts, str):
                opts = ",".join(opts)
            base = {DEVICE_NAME_LABEL: device_name, FS_TYPE_LABEL: partition.fstype,
                    MOUNT_OPTION_LABEL: opts}
            self.bytes_used.record({**base, STATE_LABEL: "free"}, int(usage.free))
            self.bytes_used.record({**base, STATE_LABEL: "used"}, int(usage.used))
            if self.percent_used is not None:
                self.percent_used.record({**base, STATE_LABEL: "used"}, float(usage.percent))
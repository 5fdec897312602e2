"""Collects host-level metrics: uptime, tagged with kernel and OS version."""

from __future__ import annotations

import logging
import platform
import time
from typing import Optional

import psutil

from nodestatsmon.config import HostStatsConfig, MetricConfig
from nodestatsmon.helpers import get_os_version
from nodestatsmon.metrics import Aggregation, MetricID, new_int64_metric

log = logging.getLogger(__name__)


class HostCollector:
    """Records the host uptime with kernel_version and os_version labels."""

    def __init__(self, host_config: HostStatsConfig,
                 os_release_path: Optional[str] = None) -> None:
        self.tags: dict[str, str] = {}

        kernel_version = platform.release()
        if not kernel_version:
            raise RuntimeError("Failed to retrieve kernel version")
        self.tags["kernel_version"] = kernel_version

        try:
            self.tags["os_version"] = get_os_version(os_release_path)
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Failed to retrieve OS version: {exc}") from exc

        self.uptime = None
        display_name = host_config.metrics_configs.get(
            MetricID.HOST_UPTIME.value, MetricConfig()
        ).display_name
        if display_name:
            self.uptime = new_int64_metric(
                MetricID.HOST_UPTIME,
                display_name,
                "The uptime of the operating system",
                "second",
                Aggregation.LAST_VALUE,
                ["kernel_version", "os_version"],
            )

    def collect(self) -> None:
        """Record the current uptime in seconds."""
        try:
            uptime = int(time.time() - psutil.boot_time())
        except (OSError, psutil.Error) as exc:
            log.error("Failed to retrieve uptime of the host: %s", exc)
            return
        if self.uptime is not None:
            self.uptime.record(self.tags, uptime)
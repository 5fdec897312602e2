"""Monitor that periodically collects system statistics into metrics."""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from nodestatsmon.config import ConfigError, SystemStatsConfig, parse_system_stats_config
from nodestatsmon.cpu_collector import CPUCollector
from nodestatsmon.disk_collector import DiskCollector
from nodestatsmon.host_collector import HostCollector
from nodestatsmon.memory_collector import MemoryCollector
from nodestatsmon.net_collector import NetCollector
from nodestatsmon.osfeature_collector import OSFeatureCollector

log = logging.getLogger(__name__)

SYSTEM_STATS_MONITOR_NAME = "system-stats-monitor"


class SystemStatsMonitor:
    """Runs the configured collectors every invoke interval on a background thread."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        try:
            with open(config_path, "rb") as handle:
                raw = handle.read()
        except OSError as exc:
            raise ConfigError(
                f"Failed to read configuration file {config_path!r}: {exc}") from exc
        try:
            self.config: SystemStatsConfig = parse_system_stats_config(raw)
        except ConfigError as exc:
            raise ConfigError(
                f"Failed to unmarshal configuration file {config_path!r}: {exc}") from exc
        try:
            self.config.apply_configuration()
        except ConfigError as exc:
            raise ConfigError(
                f"Failed to apply configuration for {config_path!r}: {exc}") from exc
        try:
            self.config.validate()
        except ConfigError as exc:
            raise ConfigError(f"Failed to validate {config_path} configuration: {exc}") from exc

        cfg = self.config
        self.cpu_collector: Optional[CPUCollector] = None
        self.disk_collector: Optional[DiskCollector] = None
        self.host_collector: Optional[HostCollector] = None
        self.memory_collector: Optional[MemoryCollector] = None
        self.os_feature_collector: Optional[OSFeatureCollector] = None
        self.net_collector: Optional[NetCollector] = None

        if cfg.cpu_config.metrics_configs:
            self.cpu_collector = CPUCollector(cfg.cpu_config, cfg.proc_path)
        if cfg.disk_config.metrics_configs:
            self.disk_collector = DiskCollector(cfg.disk_config)
        if cfg.host_config.metrics_configs:
            self.host_collector = HostCollector(cfg.host_config)
        if cfg.memory_config.metrics_configs:
            self.memory_collector = MemoryCollector(cfg.memory_config)
        if cfg.os_feature_config.metrics_configs:
            # A relative known-modules path is taken relative to the config file.
            known = cfg.os_feature_config.known_modules_config_path
            if not os.path.isabs(known):
                cfg.os_feature_config.known_modules_config_path = os.path.join(
                    os.path.dirname(config_path), known)
            self.os_feature_collector = OSFeatureCollector(cfg.os_feature_config, cfg.proc_path)
        if cfg.net_config.metrics_configs:
            self.net_collector = NetCollector(cfg.net_config, cfg.proc_path)

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _collectors(self):
        return [c for c in (self.cpu_collector, self.disk_collector, self.host_collector,
                            self.memory_collector, self.os_feature_collector,
                            self.net_collector) if c is not None]

    def _collect_all(self) -> None:
        for collector in self._collectors():
            collector.collect()

    def _monitor_loop(self) -> None:
        interval = self.config.invoke_interval.total_seconds()
        try:
            if self._stop_event.is_set():
                return
            self._collect_all()
            while not self._stop_event.wait(interval):
                self._collect_all()
        except Exception:
            log.exception("System stats monitor failed: %s", self.config_path)
        finally:
            log.info("System stats monitor stopped: %s", self.config_path)

    def start(self) -> None:
        """Start collecting in the background; no problem status is reported."""
        log.info("Start system stats monitor %s", self.config_path)
        if self._thread is not None:
            return None
        self._thread = threading.Thread(target=self._monitor_loop,
                                        name=SYSTEM_STATS_MONITOR_NAME, daemon=True)
        self._thread.start()
        return None

    def stop(self) -> None:
        """Stop collecting and wait for the background thread to finish."""
        log.info("Stop system stats monitor %s", self.config_path)
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
"""Configuration of the system stats monitor and the labels its metrics use."""

from __future__ import annotations

import json
import os
import re
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping, Optional, Union

from nodestatsmon.helpers import format_duration, parse_duration

# Metric label names.
DEVICE_NAME_LABEL = "device_name"
DIRECTION_LABEL = "direction"
STATE_LABEL = "state"
FS_TYPE_LABEL = "fs_type"
MOUNT_OPTION_LABEL = "mount_option"
FEATURE_LABEL = "os_feature"
VALUE_LABEL = "value"
INTERFACE_NAME_LABEL = "interface_name"
CPU_LABEL = "cpu"
STAGE_LABEL = "stage"

DEFAULT_INVOKE_INTERVAL_STRING = format_duration(timedelta(seconds=60))
DEFAULT_LSBLK_TIMEOUT_STRING = format_duration(timedelta(seconds=5))
DEFAULT_KNOWN_MODULES_CONFIG_PATH = "guestosconfig/known-modules.json"
DEFAULT_PROC_PATH = "/proc" if sys.platform.startswith("linux") else ""


class ConfigError(ValueError):
    """Raised when a configuration cannot be parsed, applied or validated."""


@dataclass
class MetricConfig:
    """Per-metric settings."""

    display_name: str = ""


@dataclass
class CPUStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class DiskStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    include_root_blk: bool = False
    include_all_attached_blk: bool = False
    lsblk_timeout_string: str = ""
    lsblk_timeout: timedelta = timedelta(0)


@dataclass
class HostStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class MemoryStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class OSFeatureStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    known_modules_config_path: str = ""


@dataclass
class NetStatsInterfaceRegexp:
    """Optional regular expression; an empty pattern means no regexp at all."""

    pattern: Optional[Union[re.Pattern, str]] = None

    def __post_init__(self) -> None:
        if isinstance(self.pattern, str):
            if not self.pattern:
                self.pattern = None
            else:
                try:
                    self.pattern = re.compile(self.pattern)
                except re.error as exc:
                    raise ConfigError(f"invalid regexp {self.pattern!r}: {exc}") from exc

    @property
    def text(self) -> str:
        """The pattern's source text, or an empty string when unset."""
        return self.pattern.pattern if self.pattern is not None else ""

    def matches(self, name: str) -> bool:
        """Whether the regexp is set and matches anywhere in name."""
        return self.pattern is not None and self.pattern.search(name) is not None


@dataclass
class NetStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    exclude_interface_regexp: NetStatsInterfaceRegexp = field(
        default_factory=NetStatsInterfaceRegexp
    )


@dataclass
class SystemStatsConfig:
    """Settings of the whole system stats monitor."""

    cpu_config: CPUStatsConfig = field(default_factory=CPUStatsConfig)
    disk_config: DiskStatsConfig = field(default_factory=DiskStatsConfig)
    host_config: HostStatsConfig = field(default_factory=HostStatsConfig)
    memory_config: MemoryStatsConfig = field(default_factory=MemoryStatsConfig)
    os_feature_config: OSFeatureStatsConfig = field(default_factory=OSFeatureStatsConfig)
    net_config: NetStatsConfig = field(default_factory=NetStatsConfig)
    invoke_interval_string: str = ""
    invoke_interval: timedelta = timedelta(0)
    proc_path: str = ""

    def apply_configuration(self) -> None:
        """Fill in defaults and parse the duration strings."""
        if not self.invoke_interval_string:
            self.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        if not self.proc_path:
            self.proc_path = DEFAULT_PROC_PATH
        if not self.disk_config.lsblk_timeout_string:
            self.disk_config.lsblk_timeout_string = DEFAULT_LSBLK_TIMEOUT_STRING
        if not self.os_feature_config.known_modules_config_path:
            self.os_feature_config.known_modules_config_path = DEFAULT_KNOWN_MODULES_CONFIG_PATH

        try:
            self.invoke_interval = parse_duration(self.invoke_interval_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing InvokeIntervalString {self.invoke_interval_string!r}: {exc}"
            ) from exc
        try:
            self.disk_config.lsblk_timeout = parse_duration(self.disk_config.lsblk_timeout_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing LsblkTimeoutString "
                f"{self.disk_config.lsblk_timeout_string!r}: {exc}"
            ) from exc

    def _validate_proc_path(self) -> None:
        if not sys.platform.startswith("linux"):
            return
        try:
            os.stat(self.proc_path)
        except OSError as exc:
            raise ConfigError(f"ProcPath {self.proc_path} check failed: {exc}") from exc

    def validate(self) -> None:
        """Check that the applied settings are usable."""
        if self.invoke_interval <= timedelta(0):
            raise ConfigError(
                f"InvokeInterval {format_duration(self.invoke_interval)} must be above 0s"
            )
        self._validate_proc_path()
        lsblk = self.disk_config.lsblk_timeout
        if lsblk <= timedelta(0):
            raise ConfigError(f"LsblkTimeout {format_duration(lsblk)} must be above 0s")
        if lsblk > self.invoke_interval:
            raise ConfigError(
                f"LsblkTimeout {format_duration(lsblk)} must be shorter than "
                f"InvokeInterval {format_duration(self.invoke_interval)}"
            )


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key!r} must be an object")
    return value


def _typed(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or (kind is not bool and isinstance(value, bool)):
        raise ConfigError(f"{key!r} must be of type {kind.__name__}")
    return value


def _metrics_configs(section: Mapping[str, Any]) -> dict[str, MetricConfig]:
    raw = _section(section, "metricsConfigs")
    result: dict[str, MetricConfig] = {}
    for name, cfg in raw.items():
        if cfg is None:
            cfg = {}
        if not isinstance(cfg, dict):
            raise ConfigError(f"metric config {name!r} must be an object")
        result[name] = MetricConfig(display_name=_typed(cfg, "displayName", str, ""))
    return result


def parse_system_stats_config(data: Union[str, bytes, Mapping[str, Any]]) -> SystemStatsConfig:
    """Build a configuration from its JSON text or an already decoded mapping."""
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise ConfigError(f"invalid JSON configuration: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a JSON object")

    cpu = _section(data, "cpu")
    disk = _section(data, "disk")
    host = _section(data, "host")
    memory = _section(data, "memory")
    os_feature = _section(data, "osFeature")
    net = _section(data, "net")

    return SystemStatsConfig(
        cpu_config=CPUStatsConfig(metrics_configs=_metrics_configs(cpu)),
        disk_config=DiskStatsConfig(
            metrics_configs=_metrics_configs(disk),
            include_root_blk=_typed(disk, "includeRootBlk", bool, False),
            include_all_attached_blk=_typed(disk, "includeAllAttachedBlk", bool, False),
            lsblk_timeout_string=_typed(disk, "lsblkTimeout", str, ""),
        ),
        host_config=HostStatsConfig(metrics_configs=_metrics_configs(host)),
        memory_config=MemoryStatsConfig(metrics_configs=_metrics_configs(memory)),
        os_feature_config=OSFeatureStatsConfig(
            metrics_configs=_metrics_configs(os_feature),
            known_modules_config_path=_typed(os_feature, "knownModulesConfigPath", str, ""),
        ),
        net_config=NetStatsConfig(
            metrics_configs=_metrics_configs(net),
            exclude_interface_regexp=NetStatsInterfaceRegexp(
                _typed(net, "excludeInterfaceRegexp", str, "")
            ),
        ),
        invoke_interval_string=_typed(data, "invokeInterval", str, ""),
        proc_path=_typed(data, "procPath", str, ""),
    )
"""Collects guest OS features from the kernel command line and loaded modules."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Iterable, Optional

from nodestatsmon.config import FEATURE_LABEL, VALUE_LABEL, MetricConfig, OSFeatureStatsConfig
from nodestatsmon.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric
from nodestatsmon.system import CmdlineArg, Module, cmdline_args, contains_module, modules

log = logging.getLogger(__name__)

_INT = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_CMDLINE_FEATURES = {
    "csm.enabled": "KTD",
    "systemd.unified_cgroup_hierarchy": "UnifiedCgroupHierarchy",
    "module.sig_enforce": "ModuleSigned",
    "loadpin.enabled": "LoadPinEnabled",
}

_MODULE_JSON_FIELDS = {
    "modulename": ("module_name", str),
    "instances": ("instances", int),
    "proprietary": ("proprietary", bool),
    "outoftree": ("out_of_tree", bool),
    "unsigned": ("unsigned", bool),
}


def _parse_int64(text: str) -> int:
    """Parse a decimal integer; invalid text gives 0, out-of-range text is clamped."""
    if not _INT.fullmatch(text):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


def _module_from_json(item: Any) -> Module:
    if not isinstance(item, dict):
        raise ValueError(f"known module entry must be an object, got {item!r}")
    values: dict[str, Any] = {}
    for key, value in item.items():
        spec = _MODULE_JSON_FIELDS.get(key.lower())
        if spec is None or value is None:
            continue
        name, kind = spec
        if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
            raise ValueError(f"known module field {key!r} has wrong type")
        values[name] = value
    return Module(**values)


def _path_under(proc_path: str, name: str) -> str:
    return os.path.join(proc_path, name) if proc_path else "/" + name


class OSFeatureCollector:
    """Records OS features such as KTD, cgroup hierarchy, GPU support and unknown modules."""

    def __init__(self, os_feature_config: OSFeatureStatsConfig, proc_path: str) -> None:
        self.config = os_feature_config
        self.proc_path = proc_path
        self.os_feature: Optional[Int64Metric] = None
        display_name = os_feature_config.metrics_configs.get(
            MetricID.OS_FEATURE.value, MetricConfig()
        ).display_name
        if display_name:
            self.os_feature = new_int64_metric(
                MetricID.OS_FEATURE,
                display_name,
                "OS Features like GPU support, KTD kernel, third party modules as unknown "
                "modules. 1 if the feature is enabled and 0, if disabled.",
                "1",
                Aggregation.LAST_VALUE,
                [FEATURE_LABEL, VALUE_LABEL],
            )

    def record_features_from_cmdline(self, cmdline_args: Iterable[CmdlineArg]) -> None:
        """Record KTD, UnifiedCgroupHierarchy and KernelModuleIntegrity from cmdline args."""
        if self.os_feature is None:
            return
        features = {name: 0 for name in _CMDLINE_FEATURES.values()}
        for arg in cmdline_args:
            feature = _CMDLINE_FEATURES.get(arg.key)
            if feature is not None:
                features[feature] = _parse_int64(arg.value)
        self.os_feature.record({FEATURE_LABEL: "KTD"}, features["KTD"])
        self.os_feature.record({FEATURE_LABEL: "UnifiedCgroupHierarchy"},
                               features["UnifiedCgroupHierarchy"])
        integrity = int(features["ModuleSigned"] == 1 and features["LoadPinEnabled"] == 1)
        self.os_feature.record({FEATURE_LABEL: "KernelModuleIntegrity"}, integrity)

    def _known_modules(self) -> list[Module]:
        path = self.config.known_modules_config_path
        try:
            with open(path, "rb") as handle:
                data = handle.read()
        except OSError as exc:
            log.warning("Failed to read configuration file %s: %s", path, exc)
            return []
        try:
            items = json.loads(data)
            if items is None:
                return []
            if not isinstance(items, list):
                raise ValueError("known modules must be a JSON array")
            return [_module_from_json(item) for item in items]
        except ValueError as exc:
            log.warning("Failed to retrieve known modules %s", exc)
            return []

    def record_features_from_modules(self, modules: Iterable[Module]) -> None:
        """Record GPUSupport and UnknownModules from the loaded kernel modules."""
        if self.os_feature is None:
            return
        known = self._known_modules()
        has_gpu_support = 0
        unknown: list[str] = []
        for module in modules:
            if "nvidia" in module.module_name:
                has_gpu_support = 1
            elif (module.out_of_tree or module.proprietary) and not contains_module(
                    module.module_name, known):
                unknown.append(module.module_name)
        if unknown:
            self.os_feature.record(
                {FEATURE_LABEL: "UnknownModules", VALUE_LABEL: ",".join(unknown)}, 1)
        else:
            self.os_feature.record({FEATURE_LABEL: "UnknownModules"}, 0)
        self.os_feature.record({FEATURE_LABEL: "GPUSupport"}, has_gpu_support)

    def collect(self) -> None:
        """Read cmdline and modules from the proc directory and record the features."""
        if self.os_feature is None:
            return
        try:
            args = cmdline_args(_path_under(self.proc_path, "cmdline"))
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Error retrieving cmdline args: {exc}") from exc
        self.record_features_from_cmdline(args)
        try:
            loaded = modules(_path_under(self.proc_path, "modules"))
        except (OSError, ValueError) as exc:
            raise RuntimeError(f"Error retrieving kernel modules: {exc}") from exc
        self.record_features_from_modules(loaded)
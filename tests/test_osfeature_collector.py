import json

import pytest

from nodestatsmon.config import MetricConfig, OSFeatureStatsConfig
from nodestatsmon.osfeature_collector import OSFeatureCollector
from nodestatsmon.system import CmdlineArg, Module


def _config(known_path="", name="system/os_feature"):
    return OSFeatureStatsConfig(
        metrics_configs={"system/os_feature": MetricConfig(display_name=name)},
        known_modules_config_path=known_path,
    )


def _features(collector):
    return {m.labels["os_feature"]: m for m in collector.os_feature.list_metrics()}


def test_no_display_name_disables_collector(tmp_path):
    collector = OSFeatureCollector(OSFeatureStatsConfig(), str(tmp_path))
    collector.collect()
    assert collector.os_feature is None


def test_cmdline_features_enabled(tmp_path):
    collector = OSFeatureCollector(_config(), str(tmp_path))
    collector.record_features_from_cmdline([
        CmdlineArg("csm.enabled", "1"),
        CmdlineArg("systemd.unified_cgroup_hierarchy", "1"),
        CmdlineArg("module.sig_enforce", "1"),
        CmdlineArg("loadpin.enabled", "1"),
    ])
    features = _features(collector)
    assert features["KTD"].value == 1
    assert features["UnifiedCgroupHierarchy"].value == 1
    assert features["KernelModuleIntegrity"].value == 1


def test_cmdline_integrity_needs_both(tmp_path):
    collector = OSFeatureCollector(_config(), str(tmp_path))
    collector.record_features_from_cmdline([
        CmdlineArg("module.sig_enforce", "1"),
        CmdlineArg("csm.enabled", "junk"),
        CmdlineArg("console", "ttyS0"),
    ])
    features = _features(collector)
    assert features["KernelModuleIntegrity"].value == 0
    assert features["KTD"].value == 0
    assert features["UnifiedCgroupHierarchy"].value == 0
    assert set(features) == {"KTD", "UnifiedCgroupHierarchy", "KernelModuleIntegrity"}


def test_modules_gpu_and_unknown(tmp_path):
    known = tmp_path / "known.json"
    known.write_text(json.dumps([{"moduleName": "known_oot"}]))
    collector = OSFeatureCollector(_config(str(known)), str(tmp_path))
    collector.record_features_from_modules([
        Module("nvidia_uvm", out_of_tree=True, proprietary=True),
        Module("known_oot", out_of_tree=True),
        Module("third_a", proprietary=True),
        Module("third_b", out_of_tree=True),
        Module("ext4"),
    ])
    features = _features(collector)
    assert features["GPUSupport"].value == 1
    unknown = features["UnknownModules"]
    assert unknown.value == 1
    assert unknown.labels["value"] == "third_a,third_b"


def test_modules_without_known_file_and_no_unknown(tmp_path):
    collector = OSFeatureCollector(_config(str(tmp_path / "missing.json")), str(tmp_path))
    collector.record_features_from_modules([Module("ext4"), Module("virtio_net")])
    features = _features(collector)
    assert features["GPUSupport"].value == 0
    assert features["UnknownModules"].value == 0
    assert "value" not in features["UnknownModules"].labels


def test_known_modules_key_match_is_case_insensitive(tmp_path):
    known = tmp_path / "known.json"
    known.write_text('[{"modulename": "vendor_mod"}]')
    collector = OSFeatureCollector(_config(str(known)), str(tmp_path))
    collector.record_features_from_modules([Module("vendor_mod", out_of_tree=True)])
    assert _features(collector)["UnknownModules"].value == 0


def test_invalid_known_modules_file_treats_all_as_unknown(tmp_path):
    known = tmp_path / "known.json"
    known.write_text("not json")
    collector = OSFeatureCollector(_config(str(known)), str(tmp_path))
    collector.record_features_from_modules([Module("vendor_mod", out_of_tree=True)])
    unknown = _features(collector)["UnknownModules"]
    assert unknown.labels["value"] == "vendor_mod"


def test_collect_reads_proc_files(tmp_path):
    (tmp_path / "cmdline").write_text("console=ttyS0 csm.enabled=1 loadpin.enabled=1\n")
    (tmp_path / "modules").write_text(
        "nvidia 100 0 - Live 0x0000000000000000 (PO)\n"
        "ext4 200 1 - Live 0x0000000000000000\n"
    )
    collector = OSFeatureCollector(_config(str(tmp_path / "none.json")), str(tmp_path))
    collector.collect()
    features = _features(collector)
    assert features["KTD"].value == 1
    assert features["KernelModuleIntegrity"].value == 0
    assert features["GPUSupport"].value == 1
    assert features["UnknownModules"].value == 0


def test_collect_missing_cmdline_raises(tmp_path):
    collector = OSFeatureCollector(_config(), str(tmp_path))
    with pytest.raises(RuntimeError, match="cmdline"):
        collector.collect()


def test_collect_missing_modules_raises(tmp_path):
    (tmp_path / "cmdline").write_text("console=ttyS0\n")
    collector = OSFeatureCollector(_config(), str(tmp_path))
    with pytest.raises(RuntimeError, match="kernel modules"):
        collector.collect()
import subprocess
from types import SimpleNamespace
from unittest import mock

import pytest

from nodestatsmon.config import DiskStatsConfig, MetricConfig
from nodestatsmon.disk_collector import (
    DiskCollector,
    list_attached_block_devices,
    list_root_block_devices,
)
from nodestatsmon.metrics import MetricID


def _config(*metric_ids, **kwargs):
    return DiskStatsConfig(
        metrics_configs={m.value: MetricConfig(display_name=m.value) for m in metric_ids},
        **kwargs,
    )


def _stat(**values):
    fields = dict(
        read_count=0, merged_read_count=0, write_count=0, merged_write_count=0,
        read_bytes=0, write_bytes=0, read_time=0, write_time=0,
        io_time=0, weighted_io=0,
    )
    fields.update(values)
    return SimpleNamespace(**fields)


def _values(metric):
    return {tuple(sorted(r.labels.items())): r.value for r in metric.list_metrics()}


def test_unconfigured_collector_collects(tmp_path):
    (tmp_path / "diskstats").write_text(
        "   8       0 sda 10 2 40 7 5 1 16 3 0 1234 99 0 0 0 0\n"
    )
    dc = DiskCollector(DiskStatsConfig(), proc_path=str(tmp_path))
    with mock.patch("nodestatsmon.disk_collector.psutil.disk_partitions", return_value=[]):
        dc.collect()
    assert dc.io_time is None
    assert dc.last_io_time == {"sda": 1234}
    assert dc.last_weighted_io == {"sda": 99}


def test_collect_records_io_time_from_diskstats(tmp_path):
    (tmp_path / "diskstats").write_text(
        "   8       0 sda 10 2 40 7 5 1 16 3 0 1234 99 0 0 0 0\n"
        "   8       1 short 1 2 3\n"
    )
    dc = DiskCollector(_config(MetricID.DISK_IO_TIME, MetricID.DISK_OPS_BYTES),
                       proc_path=str(tmp_path))
    with mock.patch("nodestatsmon.disk_collector.psutil.disk_partitions", return_value=[]):
        dc.collect()
    assert _values(dc.io_time) == {(("device_name", "sda"),): 1234}
    ops = _values(dc.ops_bytes)
    assert ops[(("device_name", "sda"), ("direction", "read"))] == 40 * 512
    assert ops[(("device_name", "sda"), ("direction", "write"))] == 16 * 512


def test_collect_filters_by_attached_devices(tmp_path):
    (tmp_path / "diskstats").write_text(
        "   8       0 sda 1 0 0 0 0 0 0 0 0 5 0\n"
        "   8      16 sdb 1 0 0 0 0 0 0 0 0 6 0\n"
    )
    parts = [SimpleNamespace(device="sdb", mountpoint="/", fstype="ext4", opts="rw")]
    dc = DiskCollector(_config(MetricID.DISK_IO_TIME, include_all_attached_blk=True),
                       proc_path=str(tmp_path))
    with mock.patch("nodestatsmon.disk_collector.psutil.disk_partitions", return_value=parts):
        dc.collect()
    assert _values(dc.io_time) == {(("device_name", "sdb"),): 6}


def test_record_io_counters_deltas_and_queue_length():
    dc = DiskCollector(_config(MetricID.DISK_IO_TIME, MetricID.DISK_WEIGHTED_IO,
                               MetricID.DISK_AVG_QUEUE_LEN, MetricID.DISK_OPS_COUNT))
    dc.record_io_counters({"sda": _stat(io_time=100, weighted_io=50, read_count=10)}, 10.0)
    assert dc.avg_queue_len.list_metrics() == []

    dc.record_io_counters({"sda": _stat(io_time=300, weighted_io=250, read_count=25)}, 12.0)
    # Sum aggregation of deltas equals the latest cumulative counter.
    assert _values(dc.io_time) == {(("device_name", "sda"),): 300}
    assert _values(dc.weighted_io) == {(("device_name", "sda"),): 250}
    ops = _values(dc.ops_count)
    assert ops[(("device_name", "sda"), ("direction", "read"))] == 25
    assert ops[(("device_name", "sda"), ("direction", "write"))] == 0
    assert _values(dc.avg_queue_len)[(("device_name", "sda"),)] == pytest.approx(0.1)


def test_avg_queue_length_zero_without_weighted_change():
    dc = DiskCollector(_config(MetricID.DISK_AVG_QUEUE_LEN))
    dc.record_io_counters({"sda": _stat(weighted_io=7)}, 1.0)
    dc.record_io_counters({"sda": _stat(weighted_io=7)}, 2.0)
    assert _values(dc.avg_queue_len) == {(("device_name", "sda"),): 0.0}


def test_bytes_used_reports_each_device_once(tmp_path):
    (tmp_path / "diskstats").write_text("")
    parts = [
        SimpleNamespace(device="/dev/sda1", mountpoint="/", fstype="ext4", opts="rw,relatime"),
        SimpleNamespace(device="/dev/sda1", mountpoint="/mnt", fstype="ext4", opts="ro"),
    ]
    usage = SimpleNamespace(total=1000, used=400, free=600, percent=40.0)
    dc = DiskCollector(_config(MetricID.DISK_BYTES_USED, MetricID.DISK_PERCENT_USED),
                       proc_path=str(tmp_path))
    with mock.patch("nodestatsmon.disk_collector.psutil.disk_partitions", return_value=parts), \
            mock.patch("nodestatsmon.disk_collector.psutil.disk_usage",
                       return_value=usage) as disk_usage:
        dc.collect()
    assert disk_usage.call_count == 1
    rows = {r.labels["state"]: r for r in dc.bytes_used.list_metrics()}
    assert rows["free"].value == 600
    assert rows["used"].value == 400
    assert rows["used"].labels["device_name"] == "sda1"
    assert rows["used"].labels["mount_option"] == "rw,relatime"
    assert _values(dc.percent_used) == {(("device_name", "sda1"),): 40.0}


def test_list_attached_block_devices():
    parts = [SimpleNamespace(device="/dev/sda1"), SimpleNamespace(device="/dev/sdb")]
    assert list_attached_block_devices(parts) == ["/dev/sda1", "/dev/sdb"]
    assert list_attached_block_devices([]) == []


def test_list_root_block_devices_parses_output():
    done = subprocess.CompletedProcess(args=[], returncode=0, stdout=b"sda\nsdb\n")
    with mock.patch("nodestatsmon.disk_collector.subprocess.run", return_value=done) as run:
        assert list_root_block_devices(5) == ["sda", "sdb"]
    assert run.call_args[0][0] == ["lsblk", "-d", "-n", "-o", "NAME"]


def test_list_root_block_devices_missing_lsblk():
    with mock.patch("nodestatsmon.disk_collector.subprocess.run",
                    side_effect=FileNotFoundError("lsblk")):
        assert list_root_block_devices(5) == [""]
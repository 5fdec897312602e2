import pytest

from nodestatsmon.config import (
    ConfigError,
    MetricConfig,
    NetStatsConfig,
    NetStatsInterfaceRegexp,
)
from nodestatsmon.fakes import FakeInt64Metric, new_fake_int64_metric
from nodestatsmon.metrics import Aggregation, MetricError, MetricID
from nodestatsmon.net_collector import (
    IfaceStatRecorder,
    NetCollector,
    NetDevLine,
    parse_net_dev,
)

NET_IDS = [m for m in MetricID if m.value.startswith("net/")]

FAKE_NET_PROC_CONTENT = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs "
    "drop fifo colls carrier compressed\n"
    "eth0:\t\t5000\t100\t\t0\t\t0\t\t0 \t\t0 \t\t0 \t\t0\t\t2500\t30\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0  \n"
    "docker0: \t1000\t90\t\t8\t\t7\t\t0 \t\t0 \t\t0 \t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\n"
    "docker1: \t500\t\t10\t\t0\t\t0\t\t0 \t\t0\t\t0\t\t0\t\t3000\t150\t\t15\t\t0\t\t20\t\t30\t\t0\t\t0\n"
    "docker2:\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t6000\t300\t\t550\t\t200\t\t0\t\t0\t\t0\t\t0\n"
)


def fake_metric(metric_id, view_name, description, unit, aggregation, tag_names):
    return new_fake_int64_metric(view_name, aggregation, tag_names)


def default_metrics_config():
    return {m.value: MetricConfig(display_name=m.value) for m in NET_IDS}


def make_collector(tmp_path, pattern):
    net_dir = tmp_path / "net"
    net_dir.mkdir()
    (net_dir / "dev").write_text(FAKE_NET_PROC_CONTENT)
    config = NetStatsConfig(
        metrics_configs=default_metrics_config(),
        exclude_interface_regexp=NetStatsInterfaceRegexp(pattern),
    )
    collector = NetCollector(config, str(tmp_path), IfaceStatRecorder(fake_metric))
    collector.collect()
    return collector


def values_of(collector, metric_id):
    metric = collector.recorder.collectors[metric_id].metric
    assert isinstance(metric, FakeInt64Metric)
    return {rep.labels["interface_name"]: rep.value for rep in metric.list_metrics()}


def test_no_filter_match(tmp_path):
    collector = make_collector(tmp_path, r"^fake$")
    assert values_of(collector, MetricID.NET_DEV_RX_BYTES) == {
        "eth0": 5000, "docker0": 1000, "docker1": 500, "docker2": 0,
    }
    assert values_of(collector, MetricID.NET_DEV_TX_BYTES) == {
        "eth0": 2500, "docker0": 0, "docker1": 3000, "docker2": 6000,
    }


def test_filter_match(tmp_path):
    collector = make_collector(tmp_path, r"docker\d+")
    assert values_of(collector, MetricID.NET_DEV_RX_BYTES) == {"eth0": 5000}
    assert values_of(collector, MetricID.NET_DEV_TX_BYTES) == {"eth0": 2500}


def test_other_counters(tmp_path):
    collector = make_collector(tmp_path, "")
    assert values_of(collector, MetricID.NET_DEV_RX_ERRORS)["docker0"] == 8
    assert values_of(collector, MetricID.NET_DEV_TX_COLLISIONS)["docker1"] == 30
    assert values_of(collector, MetricID.NET_DEV_TX_DROPPED)["docker2"] == 200


def test_all_metrics_registered(tmp_path):
    collector = make_collector(tmp_path, "")
    assert set(collector.recorder.collectors) == set(NET_IDS)


def test_parse_net_dev():
    stats = parse_net_dev(FAKE_NET_PROC_CONTENT)
    assert list(stats) == ["eth0", "docker0", "docker1", "docker2"]
    assert stats["docker1"].tx_fifo == 20
    assert stats["docker0"].rx_dropped == 7


def test_parse_net_dev_rejects_short_line():
    with pytest.raises(ValueError):
        parse_net_dev("h1\nh2\neth0: 1 2 3\n")


def test_parse_net_dev_rejects_missing_colon():
    with pytest.raises(ValueError):
        parse_net_dev("h1\nh2\neth0 1 2 3\n")


def test_duplicate_registration_raises():
    recorder = IfaceStatRecorder(fake_metric)
    recorder.register(MetricID.NET_DEV_RX_BYTES, "rx", "d", "1", Aggregation.SUM,
                      ["interface_name"], lambda s: s.rx_bytes)
    with pytest.raises(MetricError):
        recorder.register(MetricID.NET_DEV_RX_BYTES, "rx", "d", "1", Aggregation.SUM,
                          ["interface_name"], lambda s: s.rx_bytes)


def test_record_with_same_tags_sums():
    recorder = IfaceStatRecorder(fake_metric)
    recorder.register(MetricID.NET_DEV_RX_BYTES, "rx", "d", "1", Aggregation.SUM,
                      ["interface_name"], lambda s: s.rx_bytes)
    stat = NetDevLine("eth0", rx_bytes=10)
    recorder.record_with_same_tags(stat, {"interface_name": "eth0"})
    recorder.record_with_same_tags(stat, {"interface_name": "eth0"})
    metric = recorder.collectors[MetricID.NET_DEV_RX_BYTES].metric
    assert [rep.value for rep in metric.list_metrics()] == [20]


def test_missing_metric_config_raises(tmp_path):
    config = NetStatsConfig(metrics_configs={})
    with pytest.raises(ConfigError):
        NetCollector(config, str(tmp_path), IfaceStatRecorder(fake_metric))


def test_missing_proc_file_records_nothing(tmp_path):
    config = NetStatsConfig(metrics_configs=default_metrics_config())
    collector = NetCollector(config, str(tmp_path), IfaceStatRecorder(fake_metric))
    collector.collect()
    metric = collector.recorder.collectors[MetricID.NET_DEV_RX_BYTES].metric
    assert metric.list_metrics() == []
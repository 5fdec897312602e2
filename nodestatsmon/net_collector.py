"""Collects network interface counters from /proc/net/dev."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Iterable, Mapping, Optional

from nodestatsmon.config import INTERFACE_NAME_LABEL, ConfigError, NetStatsConfig
from nodestatsmon.metrics import Aggregation, MetricError, MetricID, new_int64_metric

log = logging.getLogger(__name__)


@dataclass
class NetDevLine:
    """Counters of one interface as reported in /proc/net/dev."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_fifo: int = 0
    tx_collisions: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0


_COUNTER_FIELDS = tuple(f.name for f in fields(NetDevLine) if f.name != "name")


def _parse_line(line: str) -> NetDevLine:
    idx = line.rfind(":")
    if idx == -1:
        raise ValueError(f"invalid net/dev line, missing colon: {line!r}")
    name = line[:idx].strip()
    if not name:
        raise ValueError(f"invalid net/dev line, empty interface name: {line!r}")
    values = line[idx + 1:].split()
    if len(values) < len(_COUNTER_FIELDS):
        raise ValueError(f"invalid net/dev line, too few fields: {line!r}")
    try:
        counters = [int(v) for v in values[:len(_COUNTER_FIELDS)]]
    except ValueError as exc:
        raise ValueError(f"invalid net/dev line {line!r}: {exc}") from exc
    if any(v < 0 for v in counters):
        raise ValueError(f"invalid net/dev line, negative counter: {line!r}")
    return NetDevLine(name, **dict(zip(_COUNTER_FIELDS, counters)))


def parse_net_dev(text: str) -> dict[str, NetDevLine]:
    """Parse /proc/net/dev (two header lines, then one line per interface)."""
    result: dict[str, NetDevLine] = {}
    for line in text.splitlines()[2:]:
        if not line.strip():
            continue
        stat = _parse_line(line)
        result[stat.name] = stat
    return result


NewInt64MetricFn = Callable[..., Any]
Exporter = Callable[[NetDevLine], int]


@dataclass
class _IfaceStatCollector:
    metric: Any
    exporter: Exporter


class IfaceStatRecorder:
    """Records several metrics, each derived from the same interface counters."""

    def __init__(self, new_metric: NewInt64MetricFn = new_int64_metric) -> None:
        self._new_metric = new_metric
        self.collectors: dict[MetricID, _IfaceStatCollector] = {}

    def register(self, metric_id, view_name: str, description: str, unit: str,
                 aggregation, tag_names: Iterable[str], exporter: Exporter) -> None:
        """Create a metric and remember how to compute it from a NetDevLine."""
        if metric_id in self.collectors:
            raise MetricError(f"metric {str(getattr(metric_id, 'value', metric_id))!r} "
                              f"already registered")
        metric = self._new_metric(metric_id, view_name, description, unit,
                                  aggregation, list(tag_names))
        self.collectors[metric_id] = _IfaceStatCollector(metric=metric, exporter=exporter)

    def record_with_same_tags(self, stat: NetDevLine, tags: Mapping[str, str]) -> None:
        """Record every registered metric for stat under the same tags."""
        for metric_id, collector in self.collectors.items():
            if collector.metric is None:
                continue
            measurement = collector.exporter(stat)
            collector.metric.record(tags, measurement)
            log.debug("Metric %s record measurement %d with tags %s",
                      getattr(metric_id, "value", metric_id), measurement, tags)


_NET_METRICS = (
    (MetricID.NET_DEV_RX_BYTES, "Cumulative count of bytes received.", "Byte", "rx_bytes"),
    (MetricID.NET_DEV_RX_PACKETS, "Cumulative count of packets received.", "1", "rx_packets"),
    (MetricID.NET_DEV_RX_ERRORS, "Cumulative count of receive errors encountered.", "1",
     "rx_errors"),
    (MetricID.NET_DEV_RX_DROPPED, "Cumulative count of packets dropped while receiving.", "1",
     "rx_dropped"),
    (MetricID.NET_DEV_RX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "rx_fifo"),
    (MetricID.NET_DEV_RX_FRAME, "Cumulative count of packet framing errors.", "1", "rx_frame"),
    (MetricID.NET_DEV_RX_COMPRESSED,
     "Cumulative count of compressed packets received by the device driver.", "1",
     "rx_compressed"),
    (MetricID.NET_DEV_RX_MULTICAST,
     "Cumulative count of multicast frames received by the device driver.", "1",
     "rx_multicast"),
    (MetricID.NET_DEV_TX_BYTES, "Cumulative count of bytes transmitted.", "Byte", "tx_bytes"),
    (MetricID.NET_DEV_TX_PACKETS, "Cumulative count of packets transmitted.", "1",
     "tx_packets"),
    (MetricID.NET_DEV_TX_ERRORS, "Cumulative count of transmit errors encountered.", "1",
     "tx_errors"),
    (MetricID.NET_DEV_TX_DROPPED, "Cumulative count of packets dropped while transmitting.",
     "1", "tx_dropped"),
    (MetricID.NET_DEV_TX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "tx_fifo"),
    (MetricID.NET_DEV_TX_COLLISIONS,
     "Cumulative count of collisions detected on the interface.", "1", "tx_collisions"),
    (MetricID.NET_DEV_TX_CARRIER,
     "Cumulative count of carrier losses detected by the device driver.", "1", "tx_carrier"),
    (MetricID.NET_DEV_TX_COMPRESSED,
     "Cumulative count of compressed packets transmitted by the device driver.", "1",
     "tx_compressed"),
)


def _exporter(attr: str) -> Exporter:
    return lambda stat: int(getattr(stat, attr))


class NetCollector:
    """Records per-interface network counters."""

    def __init__(self, net_config: NetStatsConfig, proc_path: str,
                 recorder: Optional[IfaceStatRecorder] = None) -> None:
        self.config = net_config
        self.proc_path = proc_path
        self.recorder = recorder if recorder is not None else IfaceStatRecorder()
        for metric_id, description, unit, attr in _NET_METRICS:
            self._register(metric_id, description, unit, _exporter(attr))

    def _register(self, metric_id: MetricID, description: str, unit: str,
                  exporter: Exporter) -> None:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        if metric_config is None:
            raise ConfigError(f"Metric config {metric_id.value!r} not found")
        try:
            self.recorder.register(metric_id, metric_config.display_name, description, unit,
                                   Aggregation.SUM, [INTERFACE_NAME_LABEL], exporter)
        except MetricError as exc:
            raise MetricError(f"Failed to initialize metric {metric_id.value!r}: {exc}") from exc

    def collect(self) -> None:
        """Read net/dev and record counters for every non-excluded interface."""
        path = os.path.join(self.proc_path, "net", "dev")
        try:
            with open(path, encoding="utf-8") as handle:
                stats = parse_net_dev(handle.read())
        except (OSError, ValueError) as exc:
            log.error("Failed to retrieve net dev stat: %s", exc)
            return

        exclude = self.config.exclude_interface_regexp
        for iface, iface_stats in stats.items():
            if exclude.matches(iface):
                log.debug("Network interface %s matched exclude regexp %r, skipping recording",
                          iface, exclude.text)
                continue
            self.recorder.record_with_same_tags(iface_stats, {INTERFACE_NAME_LABEL: iface})
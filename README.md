# nodestatsmon

`nodestatsmon` collects statistics about the machine it runs on and records them as
labelled metrics held in memory. It covers CPU, memory, disk, network, host and OS
features. Most of the data comes from files under a proc directory (`stat`, `meminfo`,
`diskstats`, `net/dev`, `cmdline`, `modules`). The rest comes from `psutil` and
`os.getloadavg`.

Each metric aggregates its measurements per label set, in one of two ways:

- `Aggregation.LAST_VALUE`: a gauge, where the last measurement wins.
- `Aggregation.SUM`: a counter, where measurements add up.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Configuration

The monitor reads a JSON file. Inside each section, `metricsConfigs` names the metrics to
collect. A metric whose `displayName` is empty or missing is not created and not recorded.
A section whose `metricsConfigs` is empty turns that collector off.

```json
{
  "invokeInterval": "60s",
  "procPath": "/proc",
  "cpu": {
    "metricsConfigs": {
      "cpu/load_1m": {"displayName": "cpu/load_1m"},
      "cpu/usage_time": {"displayName": "cpu/usage_time"}
    }
  },
  "disk": {
    "includeRootBlk": true,
    "includeAllAttachedBlk": true,
    "lsblkTimeout": "5s",
    "metricsConfigs": {
      "disk/io_time": {"displayName": "disk/io_time"},
      "disk/bytes_used": {"displayName": "disk/bytes_used"}
    }
  },
  "host": {
    "metricsConfigs": {"host/uptime": {"displayName": "host/uptime"}}
  },
  "memory": {
    "metricsConfigs": {"memory/bytes_used": {"displayName": "memory/bytes_used"}}
  },
  "osFeature": {
    "knownModulesConfigPath": "guestosconfig/known-modules.json",
    "metricsConfigs": {"system/os_feature": {"displayName": "system/os_feature"}}
  }
}
```

### The `net` section

If the `net` section has any `metricsConfigs`, it must list an entry for every one of the
sixteen `net/...` metrics in `MetricID`:

- receive side: `net/rx_bytes`, `net/rx_packets`, `net/rx_errors`, `net/rx_dropped`,
  `net/rx_fifo`, `net/rx_frame`, `net/rx_compressed`, `net/rx_multicast`
- transmit side: `net/tx_bytes`, `net/tx_packets`, `net/tx_errors`, `net/tx_dropped`,
  `net/tx_fifo`, `net/tx_collisions`, `net/tx_carrier`, `net/tx_compressed`

A missing entry raises `ConfigError`. An entry with an empty `displayName` is allowed, and
that metric is then skipped. `excludeInterfaceRegexp` is a regular expression. Interfaces
whose names it matches anywhere are skipped.

### Loading, defaults and validation

`nodestatsmon.config.parse_system_stats_config` builds a `SystemStatsConfig` from JSON text
or from a decoded mapping. Durations use the compact form `1h2m3.5s` (see
`nodestatsmon.helpers.parse_duration` and `format_duration`).

`SystemStatsConfig.apply_configuration` fills in anything left out:

| Setting | Default |
| --- | --- |
| `invokeInterval` | `1m0s` |
| `lsblkTimeout` | `5s` |
| `procPath` | `/proc` on Linux, empty elsewhere |
| `knownModulesConfigPath` | `guestosconfig/known-modules.json` |

`SystemStatsConfig.validate` raises `ConfigError` in these cases:

- the invoke interval or the lsblk timeout is not positive;
- the lsblk timeout is longer than the invoke interval;
- on Linux, the proc path does not exist.

## Running the monitor

```python
from nodestatsmon.system_stats_monitor import SystemStatsMonitor

monitor = SystemStatsMonitor("/etc/node-stats/system-stats-monitor.json")
monitor.start()   # collects once right away, then once every invoke interval, on a thread
...
monitor.stop()    # blocks until the background thread has finished
```

The constructor reads, applies and validates the configuration, and raises `ConfigError`
on any failure. A relative `knownModulesConfigPath` is resolved against the directory of
the configuration file.

On Linux, `HostCollector` also needs `/etc/os-release` with a supported `ID`: `cos`,
`debian`, `ubuntu`, `centos`, `rocky`, `rhel`, `ol`, `amzn`, `sles`, `mariner` or
`azurelinux`. Otherwise the constructor raises `RuntimeError`.

If a collector raises during the loop, the exception is logged and the background loop
ends. For example, `OSFeatureCollector` raises when the proc `cmdline` or `modules` file
cannot be read.

## The collectors

Each collector can also be used on its own through its `collect()` method.

| Collector | What it records | Source |
| --- | --- | --- |
| `cpu_collector.CPUCollector` | load averages; usage-time deltas per state | `os.getloadavg`, `psutil.cpu_times` |
| | fork, running, blocked and interrupt counts; per-CPU stage times | `<proc>/stat`, parsed by `parse_proc_stat` |
| `memory_collector.MemoryCollector` | bytes per state; percent used; dirty, anonymous, page-cache and unevictable memory | `<proc>/meminfo`, parsed by `parse_meminfo` |
| `disk_collector.DiskCollector` | IO-time, operation, byte and time deltas per device and direction; average queue length | `<proc>/diskstats` |
| | space used and free per partition | `psutil` |
| `net_collector.NetCollector` | per-interface counters | `<proc>/net/dev`, parsed by `parse_net_dev` |
| `host_collector.HostCollector` | uptime, labelled with kernel and OS version | `psutil` and the OS version lookup |
| `osfeature_collector.OSFeatureCollector` | KTD, UnifiedCgroupHierarchy, KernelModuleIntegrity, GPUSupport and UnknownModules | kernel command line and loaded modules |

Notes on the disk collector:

- The devices it reads are those `lsblk` lists when `includeRootBlk` is set, plus the
  attached partitions when `includeAllAttachedBlk` is set.
- When neither option is set, it reads every device in `diskstats`.

Notes on the OS feature collector:

- It reads the known-modules JSON file to decide which modules count as known.
- `UnknownModules` lists the out-of-tree or proprietary modules that are not known.

`net_collector.IfaceStatRecorder` takes a metric factory. You can pass one to the
`NetCollector` constructor as `recorder`, for example
`IfaceStatRecorder(fakes.new_fake_int64_metric)`, to inspect the values it records.

## Reading metrics

Every metric keeps what it records and can list it back:

```python
from nodestatsmon.metrics import Aggregation, MetricID, new_int64_metric

metric = new_int64_metric(
    MetricID.HOST_UPTIME, "host/uptime", "uptime", "second",
    Aggregation.LAST_VALUE, ["kernel_version"],
)
metric.record({"kernel_version": "6.1"}, 42)
print(metric.list_metrics())
```

`new_int64_metric` and `new_float64_metric` return `None` when the view name is empty.
`nodestatsmon.metrics.METRIC_MAP` maps view names back to metric IDs.

Two functions handle text in Prometheus exposition format:

- `parse_prometheus_metrics` parses it; only counters and gauges are accepted.
- `get_float64_metric` finds one series, with strict or superset label matching.

`fakes.FakeInt64Metric` is an in-memory int64 metric for tests. It rejects tags that are
not among its allowed tag names.

## Other utilities

- `nodestatsmon.system`
  - `cmdline_args` parses a kernel command line; parameters in double quotes stay together.
  - `modules` parses a modules list and its taint flags.
  - `read_file_into_lines` and `contains_module` are the helpers they use.
- `nodestatsmon.helpers`
  - duration parsing and formatting;
  - `generate_condition_change_event`;
  - `get_start_time`, which computes where log reading starts from uptime, delay and
    lookback;
  - `get_uptime_duration`;
  - `read_os_release` and `get_os_version`.
- `nodestatsmon.types`: `Severity`, `ConditionStatus`, `Condition`, `Event`, `Status`,
  `ProblemType`, the abstract `Monitor` and `ProblemDaemonHandler`.
- `nodestatsmon.convert`: converts conditions, statuses, severities and timestamps to the
  cluster API shapes (`NodeCondition`, `"Normal"` or `"Warning"` event types).
- `nodestatsmon.tomb`: `Tomb`, a stop/done handshake for a background thread.
- `nodestatsmon.procexec`
  - `exec_command` builds a `Command` that runs in its own process group.
  - `kill` sends SIGKILL to the whole group.
  - Both `kill` and `Command.wait` raise `ProcessNotStartedError` before the command has
    started.
- `nodestatsmon.httputil`: `return_http_json` and `return_http_error` write JSON or 500
  responses from an `http.server` request handler.

## What this package does not do

- It does not export metrics anywhere. Values stay in process memory and are read through
  `list_metrics()`. There is no Prometheus endpoint and no push to a monitoring service.
- It does not report node problems to a cluster. `SystemStatsMonitor.start()` returns
  `None` and produces no problem status.
- It has no command-line program and no registry of problem daemons. You construct and
  start monitors from Python.
- Memory, disk IO, CPU stat and network data are read from Linux proc files. Other systems
  are not covered by those collectors.
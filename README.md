# fuzzwatch

fuzzwatch helps you watch a host during a long fuzzing run. It has three parts:

- detectors that look for memory leaks in a series of memory snapshots,
- a network monitor for interfaces, connections, latency and alerts,
- a real-time monitor that samples system-wide metrics and looks for performance
  patterns in them.

System data comes from the Linux `/proc` files. `psutil` is used only to find
the network interfaces.

## Installation

```
pip install fuzzwatch
```

To install the test tools as well, use `pip install "fuzzwatch[test]"`.

## Memory leak detection (`fuzzwatch.leaks`)

A `MemorySnapshot` holds heap, stack, thread and GC figures for one moment in
time. Every detector is a `LeakDetector`. Its `detect(snapshots)` method returns
a `MemoryLeakAlert`, or `None` when it sees no leak. It raises `DetectionError`
when there are too few snapshots to judge.

| Detector | Needs | Reports when |
|---|---|---|
| `GradualLeakDetector` | 10 snapshots | heap grows faster than 1 MiB/s from first to last |
| `SuddenLeakDetector` | 5 snapshots | the heap grows by more than 50 % and more than 10 MiB between two neighbouring snapshots |
| `CyclicLeakDetector` | 20 snapshots | there are at least three significant peaks that form a cycle |
| `ThreadLeakDetector` | 5 snapshots | the thread count more than doubles and is above 1000 |
| `HeapLeakDetector` | 10 snapshots | the heap grows by more than 100 MiB with fewer than 5 GCs |
| `StackLeakDetector` | 5 snapshots | stack use grows by more than 10 MiB |

`GradualLeakDetector` also raises `DetectionError` when the first and last
snapshots have the same timestamp.

`default_detectors()` returns one detector for each `MemoryLeakType`.

```python
from datetime import datetime, timedelta
from fuzzwatch.leaks import GradualLeakDetector, MemorySnapshot

start = datetime(2024, 1, 1)
snapshots = [
    MemorySnapshot(timestamp=start + timedelta(seconds=i), heap_alloc=i * 2 * 1024 * 1024)
    for i in range(10)
]
alert = GradualLeakDetector().detect(snapshots)
print(alert.severity, alert.message)
```

`CyclicLeakDetector.analyze(values, timestamps)` returns a `CycleInfo`, or
`None` if it finds no pattern. The analysis is built from these functions,
which you can also call on their own:

- `find_peaks`
- `average_cycle_length`
- `overall_growth_rate`
- `baseline_growth_rate`
- `classify_pattern`
- `cycle_amplitude`
- `describe_pattern`
- `cycle_confidence`
- `cycle_severity`

## Network monitoring (`fuzzwatch.network`, `fuzzwatch.procnet`)

`NetworkMonitor(config=None, logger=None)` works as follows:

- `start()` finds the interfaces and begins sampling `/proc/net/dev` in a background thread.
- `stop()` ends the sampling. You can also use the monitor as a context manager.
- `collect()` takes one sample right away.
- `record(metrics)` adds a `NetworkMetrics` sample that you built yourself. It
  works out the rates against the previous sample and returns the alerts that
  this sample raised.

To read the results, use:

- `interfaces()`
- `metrics(name)`
- `alerts()`
- `bandwidth_history(name)`
- `latency_history(name)`
- `connections()`
- `running`

`NetworkMonitorConfig` has these settings:

- `collection_interval` and `history_size` control sampling.
- `interfaces` limits monitoring to the named interfaces. When it is empty, all
  interfaces are monitored.
- `bandwidth_threshold`, `latency_threshold` and `error_threshold` set when alerts are raised.
- `connection_tracking` turns on reading of `/proc/net/tcp` and `/proc/net/udp`.
- `latency_monitoring` turns on latency measurement: the monitor runs `ping`
  once per interface on every pass and calculates jitter from the results.

Three functions can also be used on their own:

- `calculate_rates(current, last)`
- `check_network_alerts(metrics, config)`
- `average_jitter(history)`

`fuzzwatch.procnet` holds the text parsers, which work on plain strings:

- `parse_hex_address("0100007F:0050")` returns `"127.0.0.1:80"`.
- `connection_state`, `parse_connection` and `parse_connections` read the
  connection tables.
- `read_interface_counters` reads the counters of one interface.
- `ping_target`, `parse_ping_latency` and `measure_latency` handle latency.
- `program_name(pid)` returns the name of a process.

## Real-time metrics and patterns (`fuzzwatch.realtime`, `fuzzwatch.patterns`)

`read_system_metrics(proc_dir="/proc")` returns a `RealTimeMetrics` with these fields:

- CPU usage
- memory in use
- network bytes
- disk operations
- load average
- process count
- an estimated thread count
- context switches
- interrupts
- uptime

Each field is read by a parser that you can also call yourself:

- `parse_cpu_usage`
- `parse_memory_used`
- `parse_network_total`
- `parse_disk_total`
- `parse_load_average`
- `parse_stat_counter`
- `parse_uptime`
- `count_processes`

`RealTimeMonitor(config=None, detectors=None, logger=None, proc_dir="/proc")`
keeps a bounded history of samples. Once it holds ten samples and
`pattern_detection` is on, it runs its pattern detectors on every new sample.
It keeps each pattern whose confidence reaches `alert_threshold`. The defaults
come from `default_pattern_detectors()`:

- `CPUSpikeDetector`
- `MemoryLeakPatternDetector`
- `NetworkCongestionDetector`
- `DiskBottleneckDetector`
- `PerformanceDegradationDetector`
- `ResourceContentionDetector`

```python
from fuzzwatch.realtime import RealTimeMonitor, RealTimeMonitorConfig, read_system_metrics

monitor = RealTimeMonitor(RealTimeMonitorConfig(pattern_detection=True))
found = monitor.record(read_system_metrics())
print(monitor.metrics()[-1].cpu_usage, found)
```

`start()` and `stop()` control background sampling. The monitor also works as a
context manager. The recorded data is available from these methods:

- `patterns()`
- `cpu_history()`
- `memory_history()`
- `network_history()`
- `disk_history()`

## What it does not do

- There is no sampler for the memory of your own process. fuzzwatch does not
  fill in `MemorySnapshot` objects, and it does not run the leak detectors on a
  schedule. You build the snapshots and pass them to the detectors yourself.
- There is no command-line program, no server and no dashboard. fuzzwatch is a
  library only.
- System figures come from Linux `/proc`. On other systems the readers return
  zeros or empty results.

## Running the tests

```
pytest
```
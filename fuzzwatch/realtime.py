"""Real-time system metrics read from /proc, with performance pattern detection."""

from __future__ import annotations

import logging
import os
import re
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional

from fuzzwatch.leaks import DetectionError
from fuzzwatch.patterns import (
    GIB,
    MIB,
    PatternDetector,
    PerformancePattern,
    RealTimeMetrics,
    default_pattern_detectors,
)

_log = logging.getLogger(__name__)

_DEC = re.compile(r"[0-9]+")
_UINT64 = 1 << 64

MIN_METRICS_FOR_DETECTION = 10
DEFAULT_PROC_DIR = "/proc"


def _uint(text: str) -> Optional[int]:
    if not _DEC.fullmatch(text):
        return None
    value = int(text)
    return value if value < _UINT64 else None


def _float(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def parse_cpu_usage(text: str) -> float:
    """Share of non-idle CPU time since boot, in percent, from /proc/stat text."""
    for line in text.split("\n"):
        if not line.startswith("cpu "):
            continue
        fields = line.split()
        if len(fields) < 5:
            continue
        times = [(_uint(value) or 0) for value in fields[1:9]]
        times += [0] * (8 - len(times))
        user, nice, system, idle, iowait, irq, softirq, steal = times
        total = user + nice + system + idle + iowait + irq + softirq + steal
        active = total - idle - iowait
        if total > 0:
            return active / total * 100.0
        break
    return 0.0


def parse_memory_used(text: str) -> int:
    """Bytes of memory in use, from /proc/meminfo text."""
    values = {"MemTotal:": 0, "MemFree:": 0, "MemAvailable:": 0}
    for line in text.split("\n"):
        fields = line.split()
        if len(fields) < 2 or fields[0] not in values:
            continue
        values[fields[0]] = _uint(fields[1]) or 0
    total = values["MemTotal:"]
    if total <= 0:
        return 0
    available = values["MemAvailable:"]
    if available > 0:
        return (total - available) * 1024
    return (total - values["MemFree:"]) * 1024


def parse_network_total(text: str) -> int:
    """Received plus transmitted bytes of every interface in /proc/net/dev text."""
    total = 0
    for line in text.split("\n"):
        fields = line.split()
        if len(fields) < 17:
            continue
        if "Inter-|" in line or "face |" in line:
            continue
        for column in (1, 9):
            value = _uint(fields[column])
            if value is not None:
                total += value
    return total


def parse_disk_total(text: str) -> int:
    """Completed reads plus writes of every device in /proc/diskstats text."""
    total = 0
    for line in text.split("\n"):
        fields = line.split()
        if len(fields) < 14:
            continue
        for column in (3, 7):
            value = _uint(fields[column])
            if value is not None:
                total += value
    return total


def parse_load_average(text: str) -> float:
    """One-minute load average from /proc/loadavg text."""
    fields = text.split()
    if fields:
        load = _float(fields[0])
        if load is not None:
            return load
    return 0.0


def parse_stat_counter(text: str, key: str) -> int:
    """First value of the /proc/stat line named key, such as "ctxt" or "intr"."""
    prefix = key + " "
    for line in text.split("\n"):
        if not line.startswith(prefix):
            continue
        fields = line.split()
        if len(fields) >= 2:
            value = _uint(fields[1])
            if value is not None:
                return value
        break
    return 0


def parse_uptime(text: str) -> timedelta:
    """System uptime from /proc/uptime text."""
    fields = text.split()
    if fields:
        seconds = _float(fields[0])
        if seconds is not None and seconds == seconds and abs(seconds) != float("inf"):
            return timedelta(seconds=seconds)
    return timedelta(0)


def count_processes(proc_dir: str = DEFAULT_PROC_DIR) -> int:
    """Number of process directories (numeric names) under proc_dir."""
    try:
        entries = list(os.scandir(proc_dir))
    except OSError as exc:
        _log.debug("Failed to read %s directory: %s", proc_dir, exc)
        return 0
    count = 0
    for entry in entries:
        try:
            is_dir = entry.is_dir()
        except OSError:
            continue
        if is_dir and entry.name.isascii() and entry.name.isdigit():
            count += 1
    return count


def _read(proc_dir: str, *parts: str) -> str:
    path = os.path.join(proc_dir, *parts)
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            return handle.read()
    except OSError as exc:
        _log.debug("Failed to read %s: %s", path, exc)
        return ""


def read_system_metrics(proc_dir: str = DEFAULT_PROC_DIR) -> RealTimeMetrics:
    """Sample system-wide resource usage from the files under proc_dir."""
    stat = _read(proc_dir, "stat")
    context_switches = parse_stat_counter(stat, "ctxt")
    return RealTimeMetrics(
        timestamp=datetime.now(),
        cpu_usage=parse_cpu_usage(stat),
        memory_usage=parse_memory_used(_read(proc_dir, "meminfo")),
        network_bytes=parse_network_total(_read(proc_dir, "net", "dev")),
        disk_io=parse_disk_total(_read(proc_dir, "diskstats")),
        load_average=parse_load_average(_read(proc_dir, "loadavg")),
        process_count=count_processes(proc_dir),
        # A rough estimate: the kernel does not list a system-wide thread total here.
        thread_count=context_switches // 1000,
        context_switches=context_switches,
        interrupts=parse_stat_counter(stat, "intr"),
        uptime=parse_uptime(_read(proc_dir, "uptime")),
    )


@dataclass
class RealTimeMonitorConfig:
    """Settings for a RealTimeMonitor."""

    enabled: bool = True
    collection_interval: float = 1.0
    history_size: int = 100
    pattern_detection: bool = True
    alert_threshold: float = 0.7
    cpu_threshold: float = 80.0
    memory_threshold: int = GIB
    network_threshold: int = 100 * MIB
    disk_threshold: int = 1000


class RealTimeMonitor:
    """Samples system metrics periodically and looks for performance patterns."""

    def __init__(
        self,
        config: Optional[RealTimeMonitorConfig] = None,
        detectors: Optional[Mapping[str, PatternDetector]] = None,
        logger: Optional[logging.Logger] = None,
        proc_dir: str = DEFAULT_PROC_DIR,
    ) -> None:
        self.config = config if config is not None else RealTimeMonitorConfig()
        self.detectors: dict[str, PatternDetector] = dict(
            detectors if detectors is not None else default_pattern_detectors()
        )
        self.proc_dir = proc_dir
        self._log = logger if logger is not None else _log
        self._lock = threading.RLock()
        size = self.config.history_size
        self._metrics: deque[RealTimeMetrics] = deque(maxlen=size)
        self._cpu: deque[float] = deque(maxlen=size)
        self._memory: deque[int] = deque(maxlen=size)
        self._network: deque[int] = deque(maxlen=size)
        self._disk: deque[int] = deque(maxlen=size)
        self._patterns: list[PerformancePattern] = []
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_metrics: Optional[datetime] = None

    def __enter__(self) -> "RealTimeMonitor":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        if self.running:
            self.stop()

    def start(self) -> None:
        """Begin periodic collection."""
        with self._lock:
            if self._running:
                raise RuntimeError("real-time monitor already running")
            self._running = True
            self._stop_event.clear()
            self.last_metrics = datetime.now()
            self._thread = threading.Thread(
                target=self._collection_loop, name="real-time-monitor", daemon=True
            )
            self._thread.start()
        self._log.info("Real-time monitor started")

    def stop(self) -> None:
        """Stop periodic collection and wait for the collector to finish."""
        with self._lock:
            if not self._running:
                raise RuntimeError("real-time monitor not running")
            self._running = False
            self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()
        self._log.info("Real-time monitor stopped")

    def _collection_loop(self) -> None:
        while not self._stop_event.wait(self.config.collection_interval):
            self.collect()

    def collect(self) -> RealTimeMetrics:
        """Sample the system now and feed the sample to the detectors."""
        metrics = read_system_metrics(self.proc_dir)
        self.record(metrics)
        return metrics

    def record(self, metrics: RealTimeMetrics) -> list[PerformancePattern]:
        """Add a sample to the history; return the patterns it revealed."""
        with self._lock:
            self._metrics.append(metrics)
            self._cpu.append(metrics.cpu_usage)
            self._memory.append(metrics.memory_usage)
            self._network.append(metrics.network_bytes)
            self._disk.append(metrics.disk_io)
            found: list[PerformancePattern] = []
            if self.config.pattern_detection and len(self._metrics) >= MIN_METRICS_FOR_DETECTION:
                found = self._run_detection()
            self.last_metrics = datetime.now()
            return found

    def _run_detection(self) -> list[PerformancePattern]:
        history = list(self._metrics)
        found = []
        for pattern_type, detector in self.detectors.items():
            try:
                pattern = detector.detect(history)
            except DetectionError as exc:
                self._log.debug("Pattern detection failed for %s: %s", pattern_type, exc)
                continue
            if pattern is None or pattern.confidence < self.config.alert_threshold:
                continue
            self._patterns.append(pattern)
            found.append(pattern)
            self._log.warning(
                "Performance pattern detected: %s - %s", pattern_type, pattern.description
            )
        return found

    def metrics(self) -> list[RealTimeMetrics]:
        """Samples currently held, oldest first."""
        with self._lock:
            return list(self._metrics)

    def patterns(self) -> list[PerformancePattern]:
        """Every pattern detected so far, oldest first."""
        with self._lock:
            return list(self._patterns)

    def cpu_history(self) -> list[float]:
        """CPU usage readings, oldest first."""
        with self._lock:
            return list(self._cpu)

    def memory_history(self) -> list[int]:
        """Memory usage readings, oldest first."""
        with self._lock:
            return list(self._memory)

    def network_history(self) -> list[int]:
        """Network byte totals, oldest first."""
        with self._lock:
            return list(self._network)

    def disk_history(self) -> list[int]:
        """Disk operation totals, oldest first."""
        with self._lock:
            return list(self._disk)

    @property
    def running(self) -> bool:
        """Whether periodic collection is active."""
        with self._lock:
            return self._running
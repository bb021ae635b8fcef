"""Network interface monitoring: counters, rates, connections, latency and alerts."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Sequence

import psutil

from fuzzwatch.procnet import (
    InterfaceCounters,
    NetworkConnection,
    measure_latency,
    parse_connections,
    read_interface_counters,
)

_log = logging.getLogger(__name__)

_UINT64 = 1 << 64
ACTIVE_CONNECTION_WINDOW = timedelta(minutes=5)

PROC_NET_DEV = "/proc/net/dev"
PROC_NET_TCP = "/proc/net/tcp"
PROC_NET_UDP = "/proc/net/udp"


class NetworkMetricType(str, Enum):
    """Kinds of network measurement."""

    BYTES_SENT = "bytes_sent"
    BYTES_RECEIVED = "bytes_received"
    PACKETS_SENT = "packets_sent"
    PACKETS_RECEIVED = "packets_received"
    CONNECTIONS = "connections"
    LATENCY = "latency"
    BANDWIDTH = "bandwidth"


@dataclass
class NetworkInterface:
    """A network interface found on the host."""

    name: str
    index: int = 0
    mtu: int = 0
    flags: str = ""
    addresses: list[Any] = field(default_factory=list)
    is_up: bool = False
    is_loopback: bool = False
    is_multicast: bool = False


@dataclass
class NetworkMetrics:
    """Counters and rates of one interface at one moment."""

    interface_name: str
    timestamp: datetime = field(default_factory=datetime.now)
    bytes_sent: int = 0
    bytes_received: int = 0
    packets_sent: int = 0
    packets_received: int = 0
    errors_in: int = 0
    errors_out: int = 0
    drops_in: int = 0
    drops_out: int = 0
    bandwidth_in: float = 0.0
    bandwidth_out: float = 0.0
    packet_rate_in: float = 0.0
    packet_rate_out: float = 0.0
    active_connections: int = 0
    latency: timedelta = timedelta(0)
    jitter: timedelta = timedelta(0)


@dataclass
class NetworkAlert:
    """A network performance problem, with evidence and advice."""

    type: str
    severity: str
    message: str
    interface: str
    value: float
    threshold: float
    confidence: float
    evidence: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    duration: timedelta = timedelta(0)
    id: str = ""


@dataclass
class NetworkMonitorConfig:
    """Settings for a NetworkMonitor."""

    enabled: bool = True
    collection_interval: float = 1.0
    history_size: int = 100
    interfaces: Sequence[str] = ()
    bandwidth_threshold: float = 10.0 * 1024 * 1024
    latency_threshold: timedelta = timedelta(seconds=1)
    error_threshold: int = 100
    connection_tracking: bool = False
    latency_monitoring: bool = False
    alert_threshold: float = 0.7


def _counter_delta(current: int, last: int) -> int:
    # Counters are unsigned 64-bit values; a decrease wraps around.
    return (current - last) % _UINT64


def calculate_rates(current: NetworkMetrics, last: NetworkMetrics) -> bool:
    """Fill in the bandwidth and packet rates of current; False if no time passed."""
    seconds = (current.timestamp - last.timestamp).total_seconds()
    if seconds == 0:
        return False
    current.bandwidth_in = _counter_delta(current.bytes_received, last.bytes_received) / seconds
    current.bandwidth_out = _counter_delta(current.bytes_sent, last.bytes_sent) / seconds
    current.packet_rate_in = (
        _counter_delta(current.packets_received, last.packets_received) / seconds
    )
    current.packet_rate_out = _counter_delta(current.packets_sent, last.packets_sent) / seconds
    return True


def check_network_alerts(
    metrics: NetworkMetrics, config: NetworkMonitorConfig
) -> list[NetworkAlert]:
    """Alerts for every threshold the metrics exceed."""
    alerts = []
    if metrics.bandwidth_in > config.bandwidth_threshold:
        alerts.append(
            NetworkAlert(
                type="bandwidth_high",
                severity="high",
                message=f"High bandwidth usage: {metrics.bandwidth_in:.2f} bytes/sec",
                interface=metrics.interface_name,
                value=metrics.bandwidth_in,
                threshold=config.bandwidth_threshold,
                confidence=0.8,
                evidence=["Bandwidth exceeds threshold", "High network activity"],
                recommendations=[
                    "Review network-intensive operations",
                    "Consider bandwidth throttling",
                    "Optimize data transfer protocols",
                    "Monitor for network congestion",
                ],
            )
        )
    if metrics.errors_in > config.error_threshold or metrics.errors_out > config.error_threshold:
        alerts.append(
            NetworkAlert(
                type="errors_high",
                severity="critical",
                message=(
                    f"High network errors: in={metrics.errors_in}, out={metrics.errors_out}"
                ),
                interface=metrics.interface_name,
                value=float(metrics.errors_in + metrics.errors_out),
                threshold=float(config.error_threshold),
                confidence=0.9,
                evidence=["Network errors exceed threshold", "Potential network issues"],
                recommendations=[
                    "Check network cable connections",
                    "Verify network configuration",
                    "Monitor for hardware issues",
                    "Consider network diagnostics",
                ],
            )
        )
    if metrics.latency > config.latency_threshold:
        millisecond = timedelta(milliseconds=1)
        alerts.append(
            NetworkAlert(
                type="latency_high",
                severity="medium",
                message=f"High network latency: {metrics.latency}",
                interface=metrics.interface_name,
                value=float(metrics.latency // millisecond),
                threshold=float(config.latency_threshold // millisecond),
                confidence=0.7,
                evidence=["Latency exceeds threshold", "Network congestion possible"],
                recommendations=[
                    "Check network congestion",
                    "Review routing configuration",
                    "Consider QoS settings",
                    "Monitor for bandwidth bottlenecks",
                ],
            )
        )
    return alerts


def average_jitter(history: Sequence[timedelta]) -> Optional[timedelta]:
    """Mean absolute change between successive latencies; None with fewer than two."""
    if len(history) < 2:
        return None
    total = sum((abs(b - a) for a, b in zip(history, history[1:])), timedelta(0))
    return total // (len(history) - 1)


def _metrics_from_counters(
    interface_name: str, counters: Optional[InterfaceCounters]
) -> NetworkMetrics:
    metrics = NetworkMetrics(interface_name=interface_name, timestamp=datetime.now())
    if counters is not None:
        metrics.bytes_received = counters.bytes_received
        metrics.packets_received = counters.packets_received
        metrics.errors_in = counters.errors_in
        metrics.drops_in = counters.drops_in
        metrics.bytes_sent = counters.bytes_sent
        metrics.packets_sent = counters.packets_sent
        metrics.errors_out = counters.errors_out
        metrics.drops_out = counters.drops_out
    return metrics


def _read_text(path: str) -> Optional[str]:
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            return handle.read()
    except OSError as exc:
        _log.debug("Failed to read %s: %s", path, exc)
        return None


class NetworkMonitor:
    """Samples network interfaces periodically and raises alerts on thresholds."""

    def __init__(
        self,
        config: Optional[NetworkMonitorConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config if config is not None else NetworkMonitorConfig()
        self._log = logger if logger is not None else _log
        self._lock = threading.RLock()
        self._interfaces: dict[str, NetworkInterface] = {}
        self._metrics: dict[str, deque[NetworkMetrics]] = {}
        self._last_metrics: dict[str, NetworkMetrics] = {}
        self._bandwidth_history: dict[str, deque[float]] = {}
        self._latency_history: dict[str, deque[timedelta]] = {}
        self._connections: dict[str, NetworkConnection] = {}
        self._alerts: list[NetworkAlert] = []
        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "NetworkMonitor":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        if self.running:
            self.stop()

    def should_monitor(self, name: str) -> bool:
        """Whether an interface is wanted; all are when no list is configured."""
        return not self.config.interfaces or name in self.config.interfaces

    def _new_history(self) -> deque:
        return deque(maxlen=self.config.history_size)

    def _ensure_histories(self, name: str) -> None:
        self._metrics.setdefault(name, self._new_history())
        self._bandwidth_history.setdefault(name, self._new_history())
        self._latency_history.setdefault(name, self._new_history())

    def _discover_interfaces(self) -> None:
        stats = psutil.net_if_stats()
        addrs = psutil.net_if_addrs()
        for name, stat in stats.items():
            flags = getattr(stat, "flags", "") or ""
            flag_set = set(flags.split(","))
            addresses = []
            for addr in addrs.get(name, []):
                if addr.family not in (socket.AF_INET, socket.AF_INET6):
                    continue
                try:
                    addresses.append(ipaddress.ip_address(addr.address.split("%")[0]))
                except ValueError:
                    continue
            is_loopback = "loopback" in flag_set or any(a.is_loopback for a in addresses)
            if is_loopback and not self.should_monitor(name):
                continue
            if not stat.isup and not self.should_monitor(name):
                continue
            try:
                index = socket.if_nametoindex(name)
            except (OSError, AttributeError):
                index = 0
            self._interfaces[name] = NetworkInterface(
                name=name,
                index=index,
                mtu=stat.mtu,
                flags=flags,
                addresses=addresses,
                is_up=stat.isup,
                is_loopback=is_loopback,
                is_multicast="multicast" in flag_set,
            )
            self._metrics[name] = self._new_history()
            self._bandwidth_history[name] = self._new_history()
            self._latency_history[name] = self._new_history()

    def start(self) -> None:
        """Discover interfaces and begin periodic collection."""
        with self._lock:
            if self._running:
                raise RuntimeError("network monitor already running")
            try:
                self._discover_interfaces()
            except (OSError, psutil.Error) as exc:
                raise RuntimeError(f"failed to discover interfaces: {exc}") from exc
            self._running = True
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._collection_loop, name="network-monitor", daemon=True
            )
            self._thread.start()
        self._log.info("Network monitor started")

    def stop(self) -> None:
        """Stop periodic collection and wait for the collector to finish."""
        with self._lock:
            if not self._running:
                raise RuntimeError("network monitor not running")
            self._running = False
            self._stop_event.set()
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()
        self._log.info("Network monitor stopped")

    def _collection_loop(self) -> None:
        while not self._stop_event.wait(self.config.collection_interval):
            self.collect()

    def collect(self) -> None:
        """Sample every monitored interface now, then connections and latency if enabled."""
        dev_text = _read_text(PROC_NET_DEV)
        with self._lock:
            for name in list(self._interfaces):
                counters = None
                if dev_text is not None:
                    counters = read_interface_counters(dev_text, name)
                self.record(_metrics_from_counters(name, counters))
            if self.config.connection_tracking:
                self._update_connections()
            if self.config.latency_monitoring:
                self._update_latency()

    def record(self, metrics: NetworkMetrics) -> list[NetworkAlert]:
        """Add one sample to its interface's history; return the alerts it raised."""
        with self._lock:
            name = metrics.interface_name
            self._ensure_histories(name)
            last = self._last_metrics.get(name)
            if last is not None and calculate_rates(metrics, last):
                self._bandwidth_history[name].append(metrics.bandwidth_in)
            self._metrics[name].append(metrics)
            self._last_metrics[name] = metrics
            raised = check_network_alerts(metrics, self.config)
            for alert in raised:
                alert.id = f"network_{alert.type}_{int(time.time())}"
                self._alerts.append(alert)
                self._log.warning("Network alert: %s - %s", alert.type, alert.message)
            return raised

    def _update_connections(self) -> None:
        connections: dict[str, NetworkConnection] = {}
        for path, protocol in ((PROC_NET_TCP, "tcp"), (PROC_NET_UDP, "udp")):
            text = _read_text(path)
            if text is not None:
                connections.update(parse_connections(text, protocol))
        self._connections = connections
        now = datetime.now()
        active = sum(
            1
            for conn in connections.values()
            if now - conn.last_activity < ACTIVE_CONNECTION_WINDOW
        )
        for metrics in self._last_metrics.values():
            metrics.active_connections = active

    def _update_latency(self) -> None:
        for name in list(self._interfaces):
            if name == "lo":
                continue
            latency = measure_latency(name)
            metrics = self._last_metrics.get(name)
            if metrics is None:
                continue
            metrics.latency = latency
            history = self._latency_history.setdefault(name, self._new_history())
            history.append(latency)
            jitter = average_jitter(list(history))
            if jitter is not None:
                metrics.jitter = jitter

    def interfaces(self) -> dict[str, NetworkInterface]:
        """The monitored interfaces, by name."""
        with self._lock:
            return dict(self._interfaces)

    def metrics(self, interface_name: str) -> list[NetworkMetrics]:
        """Samples held for an interface, oldest first; empty if it is unknown."""
        with self._lock:
            return list(self._metrics.get(interface_name, ()))

    def alerts(self) -> list[NetworkAlert]:
        """Every alert raised so far, oldest first."""
        with self._lock:
            return list(self._alerts)

    def bandwidth_history(self, interface_name: str) -> list[float]:
        """Incoming bandwidth readings of an interface, oldest first."""
        with self._lock:
            return list(self._bandwidth_history.get(interface_name, ()))

    def latency_history(self, interface_name: str) -> list[timedelta]:
        """Latency readings of an interface, oldest first."""
        with self._lock:
            return list(self._latency_history.get(interface_name, ()))

    def connections(self) -> dict[str, NetworkConnection]:
        """Connections seen at the last tracking pass, by key."""
        with self._lock:
            return dict(self._connections)

    @property
    def running(self) -> bool:
        """Whether periodic collection is active."""
        with self._lock:
            return self._running
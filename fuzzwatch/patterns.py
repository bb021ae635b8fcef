"""Performance pattern detection over series of system-wide metrics."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Sequence

from fuzzwatch.leaks import DetectionError

MIB = 1024 * 1024
GIB = 1 << 30


class RealTimeMetricType(str, Enum):
    """Kinds of real-time measurement."""

    CPU = "cpu"
    MEMORY = "memory"
    NETWORK = "network"
    DISK = "disk"
    SYSTEM = "system"


@dataclass
class RealTimeMetrics:
    """System-wide resource usage at one moment."""

    timestamp: datetime = field(default_factory=datetime.now)
    cpu_usage: float = 0.0
    memory_usage: int = 0
    network_bytes: int = 0
    disk_io: int = 0
    load_average: float = 0.0
    process_count: int = 0
    thread_count: int = 0
    context_switches: int = 0
    interrupts: int = 0
    uptime: timedelta = timedelta(0)


@dataclass
class PerformancePattern:
    """A performance pattern seen in the metrics, with its impact and advice."""

    type: str
    confidence: float
    start_time: datetime
    end_time: datetime
    description: str
    impact: str
    recommendations: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta:
        """Time from the start to the end of the pattern."""
        return self.end_time - self.start_time


def _require(metrics: Sequence[RealTimeMetrics], minimum: int, what: str) -> None:
    if len(metrics) < minimum:
        raise DetectionError(f"insufficient data for {what} detection")


def _share(metrics: Sequence[RealTimeMetrics], predicate) -> float:
    return sum(1 for metric in metrics if predicate(metric)) / len(metrics)


class PatternDetector(ABC):
    """A single performance pattern detection algorithm."""

    name: str = ""
    description: str = ""

    @abstractmethod
    def detect(self, metrics: Sequence[RealTimeMetrics]) -> Optional[PerformancePattern]:
        """Return a pattern if one is seen, None if not; raise DetectionError on too little data."""


class CPUSpikeDetector(PatternDetector):
    name = "CPUSpikeDetector"
    description = "Detects sudden CPU usage spikes and performance issues"

    def detect(self, metrics):
        _require(metrics, 5, "CPU spike")
        for prev, curr in zip(metrics, metrics[1:]):
            if curr.cpu_usage > prev.cpu_usage * 1.3 and curr.cpu_usage > 80.0:
                return PerformancePattern(
                    type="cpu_spike",
                    confidence=0.9,
                    start_time=prev.timestamp,
                    end_time=curr.timestamp,
                    description=(
                        f"CPU spike detected: {prev.cpu_usage:.1f}% -> {curr.cpu_usage:.1f}%"
                    ),
                    impact="High CPU usage may cause performance degradation",
                    recommendations=[
                        "Investigate CPU-intensive operations",
                        "Check for infinite loops or inefficient algorithms",
                        "Consider CPU throttling or load balancing",
                        "Monitor for resource contention",
                    ],
                )
        return None


class MemoryLeakPatternDetector(PatternDetector):
    name = "MemoryLeakPatternDetector"
    description = "Detects memory leak patterns by analyzing growth rate"

    def detect(self, metrics):
        _require(metrics, 10, "memory leak pattern")
        first, last = metrics[0], metrics[-1]
        seconds = (last.timestamp - first.timestamp).total_seconds()
        if seconds == 0:
            raise DetectionError("zero duration between metrics")
        growth_rate = (last.memory_usage - first.memory_usage) / seconds
        if growth_rate <= MIB:
            return None
        return PerformancePattern(
            type="memory_leak",
            confidence=0.8,
            start_time=first.timestamp,
            end_time=last.timestamp,
            description=f"Memory leak pattern detected: {growth_rate:.2f} bytes/sec growth",
            impact="Memory leak may cause system instability and crashes",
            recommendations=[
                "Review object lifecycle management",
                "Check for unclosed resources",
                "Implement proper cleanup in defer statements",
                "Use memory profiling to identify allocation sources",
            ],
        )


class NetworkCongestionDetector(PatternDetector):
    name = "NetworkCongestionDetector"
    description = "Detects network congestion patterns"

    def detect(self, metrics):
        _require(metrics, 5, "network congestion")
        if _share(metrics, lambda m: m.network_bytes > 100 * MIB) <= 0.8:
            return None
        return PerformancePattern(
            type="network_congestion",
            confidence=0.7,
            start_time=metrics[0].timestamp,
            end_time=metrics[-1].timestamp,
            description="Network congestion pattern detected",
            impact="High network usage may cause latency and packet loss",
            recommendations=[
                "Review network-intensive operations",
                "Consider bandwidth throttling",
                "Optimize data transfer protocols",
                "Monitor for network bottlenecks",
            ],
        )


class DiskBottleneckDetector(PatternDetector):
    name = "DiskBottleneckDetector"
    description = "Detects disk I/O bottlenecks"

    def detect(self, metrics):
        _require(metrics, 5, "disk bottleneck")
        if _share(metrics, lambda m: m.disk_io > 1000) <= 0.7:
            return None
        return PerformancePattern(
            type="disk_bottleneck",
            confidence=0.8,
            start_time=metrics[0].timestamp,
            end_time=metrics[-1].timestamp,
            description="Disk I/O bottleneck detected",
            impact="High disk I/O may cause performance degradation",
            recommendations=[
                "Review disk-intensive operations",
                "Consider using SSDs or faster storage",
                "Implement disk I/O optimization",
                "Monitor for disk space issues",
            ],
        )


class PerformanceDegradationDetector(PatternDetector):
    name = "PerformanceDegradationDetector"
    description = "Detects general performance degradation patterns"

    def detect(self, metrics):
        _require(metrics, 10, "performance degradation")
        cpu_ratio = _share(metrics, lambda m: m.cpu_usage > 80.0)
        memory_ratio = _share(metrics, lambda m: m.memory_usage > GIB)
        load_ratio = _share(metrics, lambda m: m.load_average > 5.0)
        if max(cpu_ratio, memory_ratio, load_ratio) <= 0.6:
            return None
        return PerformancePattern(
            type="performance_degradation",
            confidence=0.9,
            start_time=metrics[0].timestamp,
            end_time=metrics[-1].timestamp,
            description="General performance degradation detected",
            impact="System performance is degraded across multiple metrics",
            recommendations=[
                "Review overall system performance",
                "Check for resource contention",
                "Consider system optimization",
                "Monitor for hardware issues",
            ],
        )


class ResourceContentionDetector(PatternDetector):
    name = "ResourceContentionDetector"
    description = "Detects resource contention patterns"

    def detect(self, metrics):
        _require(metrics, 5, "resource contention")
        contended = _share(
            metrics, lambda m: m.context_switches > 1_000_000 or m.interrupts > 100_000
        )
        if contended <= 0.5:
            return None
        return PerformancePattern(
            type="resource_contention",
            confidence=0.8,
            start_time=metrics[0].timestamp,
            end_time=metrics[-1].timestamp,
            description="Resource contention pattern detected",
            impact="High resource contention may cause performance issues",
            recommendations=[
                "Review concurrent operations",
                "Check for lock contention",
                "Optimize resource usage",
                "Consider load balancing",
            ],
        )


def default_pattern_detectors() -> dict[str, PatternDetector]:
    """One detector for every pattern kind, keyed by pattern type."""
    return {
        "cpu_spike": CPUSpikeDetector(),
        "memory_leak": MemoryLeakPatternDetector(),
        "network_congestion": NetworkCongestionDetector(),
        "disk_bottleneck": DiskBottleneckDetector(),
        "performance_degradation": PerformanceDegradationDetector(),
        "resource_contention": ResourceContentionDetector(),
    }
"""Memory leak detection algorithms that work on series of memory snapshots."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Sequence

MIB = 1024 * 1024


class DetectionError(ValueError):
    """Raised when a detector cannot analyse the given snapshots."""


class MemoryLeakType(str, Enum):
    """Kinds of memory leak a detector can report."""

    GRADUAL = "gradual"
    SUDDEN = "sudden"
    CYCLIC = "cyclic"
    THREAD = "thread"
    HEAP = "heap"
    STACK = "stack"


@dataclass
class MemorySnapshot:
    """Memory usage of the process at one moment."""

    timestamp: datetime = field(default_factory=datetime.now)
    heap_alloc: int = 0
    heap_sys: int = 0
    heap_idle: int = 0
    heap_inuse: int = 0
    heap_released: int = 0
    heap_objects: int = 0
    stack_inuse: int = 0
    stack_sys: int = 0
    other_sys: int = 0
    threads: int = 0
    num_gc: int = 0
    pause_total_ns: int = 0
    gc_cpu_fraction: float = 0.0


@dataclass
class MemoryLeakAlert:
    """A suspected memory leak, with evidence and advice."""

    type: MemoryLeakType
    severity: str
    message: str
    current_usage: int
    peak_usage: int
    growth_rate: float
    duration: timedelta
    confidence: float
    evidence: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = ""
    timestamp: Optional[datetime] = None


@dataclass
class CycleInfo:
    """What was found about a cyclic memory pattern."""

    cycle_length: int
    cycle_count: int
    peak_count: int
    peak_value: int
    growth_rate: float
    pattern_type: str
    amplitude: int
    baseline_growth: float
    description: str


def _require(snapshots: Sequence[Any], minimum: int, what: str) -> None:
    if len(snapshots) < minimum:
        raise DetectionError(f"insufficient data for {what} detection")


def _span(first: MemorySnapshot, last: MemorySnapshot) -> timedelta:
    return last.timestamp - first.timestamp


class LeakDetector(ABC):
    """A single leak detection algorithm."""

    name: str = ""
    description: str = ""

    @abstractmethod
    def detect(self, snapshots: Sequence[MemorySnapshot]) -> Optional[MemoryLeakAlert]:
        """Return an alert if a leak is seen, None if not; raise DetectionError on too little data."""


class GradualLeakDetector(LeakDetector):
    name = "GradualLeakDetector"
    description = "Detects gradual memory leaks by analyzing growth rate over time"

    def detect(self, snapshots):
        _require(snapshots, 10, "gradual leak")
        first, last = snapshots[0], snapshots[-1]
        seconds = _span(first, last).total_seconds()
        if seconds == 0:
            raise DetectionError("zero duration between snapshots")
        growth_rate = (last.heap_alloc - first.heap_alloc) / seconds
        if growth_rate <= MIB:
            return None
        return MemoryLeakAlert(
            type=MemoryLeakType.GRADUAL,
            severity="high",
            message=f"Gradual memory leak detected: {growth_rate:.2f} bytes/sec growth",
            current_usage=last.heap_alloc,
            peak_usage=last.heap_alloc,
            growth_rate=growth_rate,
            duration=_span(first, last),
            confidence=0.8,
            evidence=["Consistent memory growth over time", "No corresponding GC activity"],
            recommendations=[
                "Review object lifecycle management",
                "Check for unclosed resources",
                "Implement proper cleanup in defer statements",
                "Use memory profiling to identify allocation sources",
            ],
        )


class SuddenLeakDetector(LeakDetector):
    name = "SuddenLeakDetector"
    description = "Detects sudden memory spikes and large allocations"

    def detect(self, snapshots):
        _require(snapshots, 5, "sudden leak")
        for prev, curr in zip(snapshots, snapshots[1:]):
            increase = curr.heap_alloc - prev.heap_alloc
            if prev.heap_alloc:
                percent = increase / prev.heap_alloc * 100
            else:
                percent = math.inf if increase > 0 else 0.0
            if percent > 50 and increase > 10 * MIB:
                return MemoryLeakAlert(
                    type=MemoryLeakType.SUDDEN,
                    severity="critical",
                    message=(
                        f"Sudden memory spike detected: {percent:.1f}% increase "
                        f"({increase} bytes)"
                    ),
                    current_usage=curr.heap_alloc,
                    peak_usage=curr.heap_alloc,
                    growth_rate=float(increase),
                    duration=_span(prev, curr),
                    confidence=0.9,
                    evidence=["Sudden memory increase", "Large allocation spike"],
                    recommendations=[
                        "Investigate recent code changes",
                        "Check for large data structure allocations",
                        "Review memory-intensive operations",
                        "Consider implementing memory limits",
                    ],
                )
        return None


def find_peaks(values: Sequence[int]) -> list[int]:
    """Indices of local maxima rising more than 5% above both neighbours."""

    def rise(peak: int, base: int) -> float:
        return (peak - base) / base if base else math.inf

    return [
        i
        for i in range(1, len(values) - 1)
        if values[i] > values[i - 1]
        and values[i] > values[i + 1]
        and rise(values[i], values[i - 1]) > 0.05
        and rise(values[i], values[i + 1]) > 0.05
    ]


def average_cycle_length(peaks: Sequence[int]) -> int:
    """Mean distance in samples between successive peaks, 0 with fewer than two."""
    if len(peaks) < 2:
        return 0
    return (peaks[-1] - peaks[0]) // (len(peaks) - 1)


def overall_growth_rate(values: Sequence[int], timestamps: Sequence[datetime]) -> float:
    """Growth from the first to the last value in bytes per second."""
    if len(values) < 2:
        return 0.0
    seconds = (timestamps[-1] - timestamps[0]).total_seconds()
    if seconds <= 0:
        return 0.0
    return (values[-1] - values[0]) / seconds


def baseline_growth_rate(values: Sequence[int], timestamps: Sequence[datetime]) -> float:
    """Growth of the local minima in bytes per second."""
    if len(values) < 2:
        return 0.0
    minima = [
        values[i]
        for i in range(1, len(values) - 1)
        if values[i] < values[i - 1] and values[i] < values[i + 1]
    ]
    if len(minima) < 2:
        return 0.0
    seconds = (timestamps[-1] - timestamps[0]).total_seconds()
    if seconds <= 0:
        return 0.0
    return (minima[-1] - minima[0]) / seconds


def classify_pattern(peak_values: Sequence[int], growth_rate: float) -> str:
    """Name the kind of cyclic pattern the peak values show."""
    if len(peak_values) < 3:
        return "unknown"
    if any(b <= a for a, b in zip(peak_values, peak_values[1:])):
        return "stable_cyclic"
    peak_growth = (peak_values[-1] - peak_values[0]) / (len(peak_values) - 1)
    if peak_growth > growth_rate * 2:
        return "accelerating_cyclic"
    if peak_growth > growth_rate * 0.5:
        return "linear_cyclic"
    return "gradual_cyclic"


def cycle_amplitude(values: Sequence[int], cycle_length: int) -> int:
    """Average spread between maximum and minimum inside each inner cycle."""
    if cycle_length <= 0 or len(values) < cycle_length * 2:
        return 0
    spans = [
        max(window) - min(window)
        for window in (
            values[i : i + cycle_length]
            for i in range(cycle_length, len(values) - cycle_length, cycle_length)
        )
    ]
    if not spans:
        return 0
    return sum(spans) // len(spans)


def describe_pattern(
    cycle_length: int, peak_values: Sequence[int], pattern_type: str, growth_rate: float
) -> str:
    """Human-readable summary of a cyclic pattern."""
    cycle_count = len(peak_values) - 1
    peak_growth = 0.0
    if len(peak_values) > 1:
        peak_growth = (peak_values[-1] - peak_values[0]) / (len(peak_values) - 1)
    text = f"{pattern_type} pattern with {cycle_count} cycles, cycle length: {cycle_length} samples"
    if peak_growth > 0:
        text += f", peak growth: {peak_growth:.0f} bytes/cycle"
    if growth_rate > 0:
        text += f", overall growth: {growth_rate:.0f} bytes/sec"
    return text


def cycle_confidence(info: CycleInfo) -> float:
    """Confidence in a cyclic detection, between 0.5 and 1.0."""
    confidence = 0.5
    if info.cycle_count >= 3:
        confidence += 0.2
    elif info.cycle_count >= 2:
        confidence += 0.1
    if info.amplitude > 0 and info.peak_value:
        ratio = info.amplitude / info.peak_value
        if ratio > 0.1:
            confidence += 0.15
        elif ratio > 0.05:
            confidence += 0.1
    if info.growth_rate > 0:
        confidence += 0.1
    if info.pattern_type == "accelerating_cyclic":
        confidence += 0.1
    elif info.pattern_type == "linear_cyclic":
        confidence += 0.05
    return min(confidence, 1.0)


def cycle_severity(info: CycleInfo, confidence: float) -> str:
    """Severity of a cyclic leak from its growth rate."""
    if confidence < 0.6:
        return "low"
    if info.growth_rate > 1e6:
        return "critical"
    if info.growth_rate > 1e5:
        return "high"
    if info.growth_rate > 1e4:
        return "medium"
    return "low"


def _cycle_evidence(info: CycleInfo) -> list[str]:
    evidence = [
        f"Detected {info.cycle_count} complete cycles",
        f"Cycle length: {info.cycle_length} samples",
        f"Pattern type: {info.pattern_type}",
    ]
    if info.growth_rate > 0:
        evidence.append(f"Overall growth rate: {info.growth_rate:.0f} bytes/sec")
    if info.amplitude > 0:
        evidence.append(f"Cycle amplitude: {info.amplitude} bytes")
    if info.baseline_growth > 0:
        evidence.append(f"Baseline growth: {info.baseline_growth:.0f} bytes/sec")
    return evidence


def _cycle_recommendations(info: CycleInfo) -> list[str]:
    recommendations = [
        "Review periodic operations and their memory usage",
        "Check for accumulating data structures in cycles",
        "Implement proper cleanup in periodic operations",
        "Consider memory pooling for repeated allocations",
    ]
    if info.pattern_type == "accelerating_cyclic":
        recommendations += [
            "Investigate exponential memory growth in cycles",
            "Check for nested loops or recursive operations",
            "Review data structure growth patterns",
        ]
    elif info.pattern_type == "linear_cyclic":
        recommendations += [
            "Look for linear memory accumulation in cycles",
            "Check for missing cleanup in loop iterations",
        ]
    if info.growth_rate > 1e5:
        recommendations += [
            "High growth rate detected - immediate investigation required",
            "Consider implementing memory limits and circuit breakers",
        ]
    return recommendations


class CyclicLeakDetector(LeakDetector):
    name = "CyclicLeakDetector"
    description = "Detects cyclic memory patterns with increasing peaks"

    def analyze(
        self, values: Sequence[int], timestamps: Sequence[datetime]
    ) -> Optional[CycleInfo]:
        """Look for a cyclic pattern; None if there is none."""
        peaks = find_peaks(values)
        if len(peaks) < 3:
            return None
        cycle_length = average_cycle_length(peaks)
        if cycle_length <= 0:
            return None
        peak_values = [values[p] for p in peaks]
        growth_rate = overall_growth_rate(values, timestamps)
        pattern_type = classify_pattern(peak_values, growth_rate)
        return CycleInfo(
            cycle_length=cycle_length,
            cycle_count=len(peaks) - 1,
            peak_count=len(peaks),
            peak_value=peak_values[-1],
            growth_rate=growth_rate,
            pattern_type=pattern_type,
            amplitude=cycle_amplitude(values, cycle_length),
            baseline_growth=baseline_growth_rate(values, timestamps),
            description=describe_pattern(cycle_length, peak_values, pattern_type, growth_rate),
        )

    def detect(self, snapshots):
        _require(snapshots, 20, "cyclic leak")
        values = [s.heap_alloc for s in snapshots]
        timestamps = [s.timestamp for s in snapshots]
        info = self.analyze(values, timestamps)
        if info is None:
            return None
        confidence = cycle_confidence(info)
        return MemoryLeakAlert(
            type=MemoryLeakType.CYCLIC,
            severity=cycle_severity(info, confidence),
            message=f"Cyclic memory pattern detected: {info.description}",
            current_usage=values[-1],
            peak_usage=info.peak_value,
            growth_rate=info.growth_rate,
            duration=timestamps[-1] - timestamps[0],
            confidence=confidence,
            evidence=_cycle_evidence(info),
            recommendations=_cycle_recommendations(info),
            metadata={
                "cycle_length": info.cycle_length,
                "cycle_count": info.cycle_count,
                "peak_count": info.peak_count,
                "growth_rate": info.growth_rate,
                "pattern_type": info.pattern_type,
                "amplitude": info.amplitude,
                "baseline_growth": info.baseline_growth,
            },
        )


class ThreadLeakDetector(LeakDetector):
    name = "ThreadLeakDetector"
    description = "Detects thread leaks by monitoring thread count"

    def detect(self, snapshots):
        _require(snapshots, 5, "thread leak")
        first, last = snapshots[0], snapshots[-1]
        if last.threads > first.threads * 2 and last.threads > 1000:
            return MemoryLeakAlert(
                type=MemoryLeakType.THREAD,
                severity="high",
                message=f"Thread leak detected: {first.threads} -> {last.threads}",
                current_usage=last.heap_alloc,
                peak_usage=last.heap_alloc,
                growth_rate=float(last.threads - first.threads),
                duration=_span(first, last),
                confidence=0.8,
                evidence=["Increasing thread count", "No corresponding cleanup"],
                recommendations=[
                    "Review thread lifecycle management",
                    "Ensure all threads have proper exit conditions",
                    "Use cancellation signals for thread cleanup",
                    "Implement thread pools for controlled concurrency",
                ],
            )
        return None


class HeapLeakDetector(LeakDetector):
    name = "HeapLeakDetector"
    description = "Detects heap memory leaks by analyzing heap growth vs GC activity"

    def detect(self, snapshots):
        _require(snapshots, 10, "heap leak")
        first, last = snapshots[0], snapshots[-1]
        heap_growth = last.heap_alloc - first.heap_alloc
        gc_increase = last.num_gc - first.num_gc
        if heap_growth > 100 * MIB and gc_increase < 5:
            return MemoryLeakAlert(
                type=MemoryLeakType.HEAP,
                severity="high",
                message=(
                    f"Heap memory leak detected: {heap_growth} bytes growth "
                    f"with {gc_increase} GCs"
                ),
                current_usage=last.heap_alloc,
                peak_usage=last.heap_alloc,
                growth_rate=float(heap_growth),
                duration=_span(first, last),
                confidence=0.9,
                evidence=["Large heap growth", "Insufficient garbage collection"],
                recommendations=[
                    "Review object allocation patterns",
                    "Check for unclosed resources",
                    "Implement proper cleanup",
                    "Consider manual garbage collection",
                ],
            )
        return None


class StackLeakDetector(LeakDetector):
    name = "StackLeakDetector"
    description = "Detects stack memory leaks by monitoring stack usage"

    def detect(self, snapshots):
        _require(snapshots, 5, "stack leak")
        first, last = snapshots[0], snapshots[-1]
        stack_growth = last.stack_inuse - first.stack_inuse
        if stack_growth > 10 * MIB:
            return MemoryLeakAlert(
                type=MemoryLeakType.STACK,
                severity="medium",
                message=f"Stack memory leak detected: {stack_growth} bytes growth",
                current_usage=last.stack_inuse,
                peak_usage=last.stack_inuse,
                growth_rate=float(stack_growth),
                duration=_span(first, last),
                confidence=0.7,
                evidence=["Increasing stack usage", "Deep call stacks"],
                recommendations=[
                    "Review recursive functions",
                    "Check for deep call stacks",
                    "Implement proper stack management",
                    "Consider iterative alternatives to recursion",
                ],
            )
        return None


def default_detectors() -> dict[MemoryLeakType, LeakDetector]:
    """One detector for every leak type."""
    return {
        MemoryLeakType.GRADUAL: GradualLeakDetector(),
        MemoryLeakType.SUDDEN: SuddenLeakDetector(),
        MemoryLeakType.CYCLIC: CyclicLeakDetector(),
        MemoryLeakType.THREAD: ThreadLeakDetector(),
        MemoryLeakType.HEAP: HeapLeakDetector(),
        MemoryLeakType.STACK: StackLeakDetector(),
    }
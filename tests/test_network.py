from datetime import datetime, timedelta

import pytest

from fuzzwatch.network import (
    NetworkMetricType,
    NetworkMetrics,
    NetworkMonitor,
    NetworkMonitorConfig,
    average_jitter,
    calculate_rates,
    check_network_alerts,
)

T0 = datetime(2024, 1, 1, 12, 0, 0)


def quiet_config(**overrides):
    values = dict(
        collection_interval=3600.0,
        history_size=3,
        bandwidth_threshold=1_000_000.0,
        latency_threshold=timedelta(seconds=1),
        error_threshold=10,
    )
    values.update(overrides)
    return NetworkMonitorConfig(**values)


def sample(name="eth0", seconds=0, **counters):
    return NetworkMetrics(interface_name=name, timestamp=T0 + timedelta(seconds=seconds), **counters)


def test_metric_type_values():
    assert NetworkMetricType("bandwidth") is NetworkMetricType.BANDWIDTH
    assert NetworkMetricType.BYTES_SENT.value == "bytes_sent"


def test_calculate_rates_uses_counter_differences():
    last = sample(bytes_received=1000, bytes_sent=500, packets_received=10, packets_sent=4)
    current = sample(
        seconds=2, bytes_received=3000, bytes_sent=900, packets_received=30, packets_sent=8
    )
    assert calculate_rates(current, last) is True
    assert current.bandwidth_in == (3000 - 1000) / 2
    assert current.bandwidth_out == (900 - 500) / 2
    assert current.packet_rate_in == (30 - 10) / 2
    assert current.packet_rate_out == (8 - 4) / 2


def test_calculate_rates_zero_duration_leaves_rates():
    last = sample(bytes_received=1000)
    current = sample(bytes_received=5000)
    assert calculate_rates(current, last) is False
    assert current.bandwidth_in == 0.0


def test_calculate_rates_wraps_like_unsigned_counter():
    last = sample(bytes_received=5000)
    current = sample(seconds=1, bytes_received=1000)
    calculate_rates(current, last)
    assert current.bandwidth_in > 1e18


def test_no_alerts_below_thresholds():
    config = quiet_config()
    metrics = sample(errors_in=10, errors_out=10)
    metrics.bandwidth_in = 1_000_000.0
    metrics.latency = timedelta(seconds=1)
    assert check_network_alerts(metrics, config) == []


def test_all_alerts_above_thresholds():
    config = quiet_config()
    metrics = sample(errors_in=11, errors_out=2)
    metrics.bandwidth_in = 2_000_000.0
    metrics.latency = timedelta(seconds=2)
    alerts = check_network_alerts(metrics, config)
    assert [a.type for a in alerts] == ["bandwidth_high", "errors_high", "latency_high"]
    assert [a.severity for a in alerts] == ["high", "critical", "medium"]
    bandwidth, errors, latency = alerts
    assert bandwidth.value == 2_000_000.0
    assert bandwidth.threshold == config.bandwidth_threshold
    assert errors.value == float(11 + 2)
    assert errors.message == "High network errors: in=11, out=2"
    assert latency.value == float(timedelta(seconds=2) // timedelta(milliseconds=1))
    assert all(a.interface == "eth0" for a in alerts)


def test_average_jitter():
    history = [timedelta(milliseconds=10), timedelta(milliseconds=30), timedelta(milliseconds=20)]
    assert average_jitter(history) == timedelta(milliseconds=15)


def test_average_jitter_needs_two_readings():
    assert average_jitter([timedelta(milliseconds=5)]) is None
    assert average_jitter([]) is None


def test_average_jitter_constant_latency_is_zero():
    assert average_jitter([timedelta(milliseconds=7)] * 4) == timedelta(0)


def test_should_monitor_with_and_without_list():
    assert NetworkMonitor(quiet_config()).should_monitor("anything") is True
    monitor = NetworkMonitor(quiet_config(interfaces=("eth0",)))
    assert monitor.should_monitor("eth0") is True
    assert monitor.should_monitor("wlan0") is False


def test_record_computes_rates_and_bandwidth_history():
    monitor = NetworkMonitor(quiet_config())
    monitor.record(sample(bytes_received=100))
    monitor.record(sample(seconds=1, bytes_received=300))
    history = monitor.bandwidth_history("eth0")
    assert history == [float(300 - 100)]
    assert len(monitor.metrics("eth0")) == 2


def test_record_bounds_history():
    monitor = NetworkMonitor(quiet_config(history_size=3))
    for second in range(6):
        monitor.record(sample(seconds=second, bytes_received=second))
    held = monitor.metrics("eth0")
    assert len(held) == 3
    assert [m.bytes_received for m in held] == [3, 4, 5]
    assert len(monitor.bandwidth_history("eth0")) == 3


def test_record_raises_alerts_with_ids():
    monitor = NetworkMonitor(quiet_config())
    raised = monitor.record(sample(errors_in=50))
    assert [a.type for a in raised] == ["errors_high"]
    assert raised[0].id.startswith("network_errors_high_")
    assert monitor.alerts() == raised


def test_unknown_interface_has_no_history():
    monitor = NetworkMonitor(quiet_config())
    assert monitor.metrics("nope") == []
    assert monitor.bandwidth_history("nope") == []
    assert monitor.latency_history("nope") == []
    assert monitor.connections() == {}


def test_stop_without_start_raises():
    monitor = NetworkMonitor(quiet_config())
    with pytest.raises(RuntimeError):
        monitor.stop()


def test_start_twice_raises_and_stop_clears_running():
    monitor = NetworkMonitor(quiet_config())
    monitor.start()
    try:
        assert monitor.running is True
        with pytest.raises(RuntimeError):
            monitor.start()
        assert all(name == iface.name for name, iface in monitor.interfaces().items())
    finally:
        monitor.stop()
    assert monitor.running is False


def test_context_manager_stops_monitor():
    with NetworkMonitor(quiet_config()) as monitor:
        assert monitor.running is True
    assert monitor.running is False
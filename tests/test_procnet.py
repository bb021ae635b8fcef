import subprocess
from datetime import datetime, timedelta
from unittest import mock

import pytest

from fuzzwatch.procnet import (
    InterfaceCounters,
    connection_state,
    measure_latency,
    parse_connection,
    parse_connections,
    parse_hex_address,
    parse_ping_latency,
    ping_target,
    program_name,
    read_interface_counters,
)

TCP_HEADER = (
    "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when "
    "retrnsmt   uid  timeout inode"
)


def _encode(ip: str, port: int) -> str:
    octets = [int(part) for part in ip.split(".")]
    return "".join(f"{octet:02X}" for octet in reversed(octets)) + f":{port:04X}"


def _row(local: str, remote: str, state: str, sent: str = "0", received: str = "0") -> str:
    fields = [
        "0:", local, remote, state, "00000000:00000000", "00:00000000",
        "00000000", sent, received, "-", "1", "0000000000000000", "100", "0", "0", "10", "0",
    ]
    return "   " + " ".join(fields)


def test_parse_hex_address_loopback():
    assert parse_hex_address("0100007F:0050") == "127.0.0.1:80"


@pytest.mark.parametrize(
    "ip, port", [("10.0.0.1", 8080), ("192.168.1.20", 443), ("0.0.0.0", 0), ("255.1.2.3", 65535)]
)
def test_parse_hex_address_round_trip(ip, port):
    assert parse_hex_address(_encode(ip, port)) == f"{ip}:{port}"


@pytest.mark.parametrize(
    "text", ["0100007F", "7F:0050", "0100007F:10000", "0100007G:0050", "0100007F:zz", "a:b:c"]
)
def test_parse_hex_address_rejects_malformed(text):
    assert parse_hex_address(text) is None


@pytest.mark.parametrize(
    "state, protocol, expected",
    [
        ("01", "tcp", "ESTABLISHED"),
        ("06", "tcp", "TIME_WAIT"),
        ("0A", "tcp", "LISTEN"),
        ("0B", "tcp", "CLOSING"),
        ("0C", "tcp", "UNKNOWN"),
        ("07", "udp", "ACTIVE"),
        ("zz", "tcp", "unknown"),
        ("zz", "udp", "unknown"),
    ],
)
def test_connection_state(state, protocol, expected):
    assert connection_state(state, protocol) == expected


def test_parse_connection_reads_fields():
    before = datetime.now()
    fields = _row(_encode("10.0.0.1", 22), _encode("10.0.0.2", 5000), "01", "10").split()
    conn = parse_connection(fields, "tcp")
    assert conn.local_addr == "10.0.0.1:22"
    assert conn.remote_addr == "10.0.0.2:5000"
    assert conn.state == "ESTABLISHED"
    assert conn.protocol == "tcp"
    assert conn.pid == 0
    assert conn.program == ""
    assert conn.bytes_sent == 0x10
    assert conn.bytes_received == 0
    assert conn.last_activity >= before


def test_parse_connection_bad_address_gives_none():
    fields = _row("garbage", _encode("10.0.0.2", 5000), "01").split()
    assert parse_connection(fields, "tcp") is None


def test_parse_connection_too_few_fields():
    with pytest.raises(ValueError):
        parse_connection(["0:", "0100007F:0050"], "tcp")


def test_parse_connections_table():
    local = _encode("127.0.0.1", 631)
    remote = _encode("0.0.0.0", 0)
    other = _encode("10.1.2.3", 9000)
    text = "\n".join(
        [
            TCP_HEADER,
            _row(local, remote, "0A"),
            _row(local, remote, "0A"),
            _row(other, remote, "01"),
            "   1: short line",
            "",
        ]
    )
    connections = parse_connections(text, "tcp")
    assert set(connections) == {
        "tcp-127.0.0.1:631-0.0.0.0:0",
        "tcp-10.1.2.3:9000-0.0.0.0:0",
    }
    assert connections["tcp-127.0.0.1:631-0.0.0.0:0"].state == "LISTEN"
    for key, conn in connections.items():
        assert conn.key == key


def test_parse_connections_udp_are_active():
    text = "\n".join([TCP_HEADER, _row(_encode("0.0.0.0", 53), _encode("0.0.0.0", 0), "07")])
    connections = parse_connections(text, "udp")
    assert [c.state for c in connections.values()] == ["ACTIVE"]


def test_parse_connections_skips_header_only():
    assert parse_connections(TCP_HEADER, "tcp") == {}


NET_DEV = "\n".join(
    [
        "Inter-|   Receive                                                |  Transmit",
        " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed",
        "    lo: 500 5 0 0 0 0 0 0 500 5 0 0 0 0 0 0",
        "  eth0: 1001 11 1 2 0 0 0 0 2002 22 3 4 0 0 0 0",
        "  eth1: x 7 0 0 0 0 0 0 9 y 0 0 0 0 0 0",
    ]
)


def test_read_interface_counters():
    counters = read_interface_counters(NET_DEV, "eth0")
    assert counters == InterfaceCounters(
        bytes_received=1001,
        packets_received=11,
        errors_in=1,
        drops_in=2,
        bytes_sent=2002,
        packets_sent=22,
        errors_out=3,
        drops_out=4,
    )


def test_read_interface_counters_unparsable_fields_stay_zero():
    counters = read_interface_counters(NET_DEV, "eth1")
    assert counters.bytes_received == 0
    assert counters.packets_received == 7
    assert counters.bytes_sent == 9
    assert counters.packets_sent == 0


def test_read_interface_counters_missing_interface():
    assert read_interface_counters(NET_DEV, "wlan0") is None


@pytest.mark.parametrize(
    "name, target",
    [
        ("eth0", "8.8.8.8"),
        ("enp3s0", "8.8.8.8"),
        ("wlan0", "1.1.1.1"),
        ("wlp2s0", "1.1.1.1"),
        ("lo", "127.0.0.1"),
        ("docker0", "127.0.0.1"),
    ],
)
def test_ping_target(name, target):
    assert ping_target(name) == target


def test_parse_ping_latency():
    output = (
        "PING 8.8.8.8 (8.8.8.8) 56(84) bytes of data.\n"
        "64 bytes from 8.8.8.8: icmp_seq=1 ttl=117 time=12.5 ms\n"
    )
    assert parse_ping_latency(output) == timedelta(milliseconds=12.5)


def test_parse_ping_latency_skips_unreadable_lines():
    output = "time=abc ms\ntime=7\n64 bytes: time=3.25 ms\n"
    assert parse_ping_latency(output) == timedelta(milliseconds=3.25)


def test_parse_ping_latency_without_time_is_zero():
    assert parse_ping_latency("no reply\n") == timedelta(0)


def test_measure_latency_runs_ping():
    completed = subprocess.CompletedProcess(
        args=[], returncode=0, stdout="64 bytes from 1.1.1.1: time=4.5 ms\n", stderr=""
    )
    with mock.patch("fuzzwatch.procnet.subprocess.run", return_value=completed) as run:
        latency = measure_latency("wlan0")
    assert latency == timedelta(milliseconds=4.5)
    args = run.call_args.args[0]
    assert args[0] == "ping"
    assert args[-1] == "1.1.1.1"


def test_measure_latency_ping_missing():
    with mock.patch("fuzzwatch.procnet.subprocess.run", side_effect=FileNotFoundError("ping")):
        assert measure_latency("eth0") == timedelta(0)


def test_measure_latency_ping_fails():
    error = subprocess.CalledProcessError(1, ["ping"])
    with mock.patch("fuzzwatch.procnet.subprocess.run", side_effect=error):
        assert measure_latency("eth0") == timedelta(0)


def test_program_name_unknown_pid():
    assert program_name(2**31 - 1) == "unknown"
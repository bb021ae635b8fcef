"""Readers for the Linux /proc network tables and for ping output."""

from __future__ import annotations

import ipaddress
import os
import re
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

_DEC = re.compile(r"[0-9]+")
_HEX = re.compile(r"[0-9a-fA-F]+")
_INT = re.compile(r"[+-]?[0-9]+")

_TCP_STATES = {
    1: "ESTABLISHED",
    2: "SYN_SENT",
    3: "SYN_RECV",
    4: "FIN_WAIT1",
    5: "FIN_WAIT2",
    6: "TIME_WAIT",
    7: "CLOSE",
    8: "CLOSE_WAIT",
    9: "LAST_ACK",
    10: "LISTEN",
    11: "CLOSING",
}

PING_TIMEOUT = 10.0


def _parse_uint(text: str, base: int = 10, bits: int = 64) -> Optional[int]:
    pattern = _HEX if base == 16 else _DEC
    if not pattern.fullmatch(text):
        return None
    value = int(text, base)
    return value if value < 1 << bits else None


@dataclass
class InterfaceCounters:
    """Cumulative counters of one interface as listed in /proc/net/dev."""

    bytes_received: int = 0
    packets_received: int = 0
    errors_in: int = 0
    drops_in: int = 0
    bytes_sent: int = 0
    packets_sent: int = 0
    errors_out: int = 0
    drops_out: int = 0


@dataclass
class NetworkConnection:
    """One socket listed in /proc/net/tcp or /proc/net/udp."""

    local_addr: str
    remote_addr: str
    protocol: str
    state: str
    pid: int = 0
    program: str = ""
    bytes_sent: int = 0
    bytes_received: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    last_activity: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        """Identifier of the connection: protocol, local and remote address."""
        return f"{self.protocol}-{self.local_addr}-{self.remote_addr}"


def parse_hex_address(hex_addr: str) -> Optional[str]:
    """Turn a little-endian "AABBCCDD:PPPP" address into "a.b.c.d:port"; None if malformed."""
    parts = hex_addr.split(":")
    if len(parts) != 2:
        return None
    ip_hex, port_hex = parts
    if len(ip_hex) != 8:
        return None
    octets = [_parse_uint(ip_hex[i : i + 2], 16, 8) for i in (6, 4, 2, 0)]
    if any(octet is None for octet in octets):
        return None
    port = _parse_uint(port_hex, 16, 16)
    if port is None:
        return None
    address = ipaddress.IPv4Address(bytes(octets))
    return f"{address}:{port}"


def connection_state(hex_state: str, protocol: str) -> str:
    """Name of the connection state coded in hex; UDP sockets are always "ACTIVE"."""
    state = _parse_uint(hex_state, 16, 32)
    if state is None:
        return "unknown"
    if protocol == "tcp":
        return _TCP_STATES.get(state, "UNKNOWN")
    return "ACTIVE"


def program_name(pid: int) -> str:
    """Base name of the executable of a process, or "unknown"."""
    try:
        target = os.readlink(f"/proc/{pid}/exe")
    except OSError:
        return "unknown"
    return target.split("/")[-1]


def parse_connection(fields: Sequence[str], protocol: str) -> Optional[NetworkConnection]:
    """Build a connection from the fields of one table row; None if an address is malformed."""
    if len(fields) < 4:
        raise ValueError(f"connection row needs at least 4 fields, got {len(fields)}")
    local_addr = parse_hex_address(fields[1])
    if local_addr is None:
        return None
    remote_addr = parse_hex_address(fields[2])
    if remote_addr is None:
        return None
    state = connection_state(fields[3], protocol)

    pid = 0
    program = ""
    if len(fields) >= 10:
        pid_text = fields[9].strip()
        if pid_text != "-" and _INT.fullmatch(pid_text):
            pid = int(pid_text)
            program = program_name(pid)

    bytes_sent = 0
    bytes_received = 0
    if len(fields) >= 9:
        sent = _parse_uint(fields[7], 16)
        if sent is not None:
            bytes_sent = sent
        received = _parse_uint(fields[8], 16)
        if received is not None:
            bytes_received = received

    now = datetime.now()
    return NetworkConnection(
        local_addr=local_addr,
        remote_addr=remote_addr,
        protocol=protocol,
        state=state,
        pid=pid,
        program=program,
        bytes_sent=bytes_sent,
        bytes_received=bytes_received,
        start_time=now,
        last_activity=now,
    )


def parse_connections(text: str, protocol: str) -> dict[str, NetworkConnection]:
    """All connections of a /proc/net/tcp or /proc/net/udp table, keyed by NetworkConnection.key."""
    connections: dict[str, NetworkConnection] = {}
    for line in text.split("\n")[1:]:
        fields = line.split()
        if len(fields) < 15:
            continue
        connection = parse_connection(fields, protocol)
        if connection is not None:
            connections[connection.key] = connection
    return connections


def read_interface_counters(text: str, interface_name: str) -> Optional[InterfaceCounters]:
    """Counters of one interface from /proc/net/dev text; None if it is not listed."""
    for line in text.split("\n"):
        fields = line.split()
        if len(fields) < 17:
            continue
        name = fields[0][:-1] if fields[0].endswith(":") else fields[0]
        if name != interface_name:
            continue
        counters = InterfaceCounters()
        columns = {
            "bytes_received": 1,
            "packets_received": 2,
            "errors_in": 3,
            "drops_in": 4,
            "bytes_sent": 9,
            "packets_sent": 10,
            "errors_out": 11,
            "drops_out": 12,
        }
        for attribute, column in columns.items():
            value = _parse_uint(fields[column])
            if value is not None:
                setattr(counters, attribute, value)
        return counters
    return None


def ping_target(interface_name: str) -> str:
    """Host to ping when measuring the latency of an interface."""
    if interface_name.startswith(("eth", "en")):
        return "8.8.8.8"
    if interface_name.startswith(("wlan", "wl")):
        return "1.1.1.1"
    return "127.0.0.1"


def parse_ping_latency(output: str) -> timedelta:
    """Round-trip time from the first readable "time=... ms" in ping output; zero if none."""
    for line in output.split("\n"):
        index = line.find("time=")
        if index == -1:
            continue
        rest = line[index + 5 :]
        space = rest.find(" ")
        if space == -1:
            continue
        try:
            millis = float(rest[:space])
        except ValueError:
            continue
        if millis != millis or millis in (float("inf"), float("-inf")):
            continue
        return timedelta(milliseconds=millis)
    return timedelta(0)


def measure_latency(interface_name: str) -> timedelta:
    """Ping the interface's target once; zero if ping fails."""
    target = ping_target(interface_name)
    try:
        result = subprocess.run(
            ["ping", "-c", "1", "-W", "1", target],
            capture_output=True,
            text=True,
            check=True,
            timeout=PING_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError):
        return timedelta(0)
    return parse_ping_latency(result.stdout)
"""Memory leak detection, network monitoring and real-time performance patterns for fuzzing sessions."""

__version__ = "0.1.0"

__all__ = ["leaks", "procnet", "network", "patterns", "realtime"]
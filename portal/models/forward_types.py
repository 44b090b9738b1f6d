"""
Forwarder Types.

Data structures shared by the stream and datagram forwarders.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

from portal.exceptions import ConfigurationError


class ForwardProtocol(str, Enum):
    """Transport used by a forwarder."""

    TCP = "TCP"
    UDP = "UDP"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value == value.upper():
                    return member
        return None

    @classmethod
    def parse(cls, value: "str | ForwardProtocol") -> "ForwardProtocol":
        """Parse a protocol tag case-insensitively."""
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown protocol: {value!r} (expected TCP or UDP)") from None


@dataclass(frozen=True)
class ForwardingEndpoint:
    """Source and destination of one forwarder, as ``host:port`` text."""

    src: str
    dst: str

    def describe(self, protocol: ForwardProtocol) -> str:
        return f"{self.src} -> {self.dst} ({protocol.value})"


class LiveConnectionCounter:
    """
    Thread-safe count of currently active flows.

    Incremented when a stream connection or datagram session begins and
    decremented (or overwritten) when it ends. Reads never take part in
    the data path's locking.
    """

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            return self._value

    def decrement(self) -> int:
        with self._lock:
            if self._value > 0:
                self._value -= 1
            return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = max(0, value)

    @contextmanager
    def track(self):
        """Count one flow for the duration of the block."""
        self.increment()
        try:
            yield self
        finally:
            self.decrement()

    def __int__(self):
        return self._value

    def __repr__(self):
        return f"LiveConnectionCounter({self._value})"

"""
Datagram sessions for the UDP forwarder.

UDP has no connections, so each client address gets a virtual session:
a dedicated socket connected to the destination, through which that
client's datagrams are sent and from which replies are relayed back to
the client over the shared inbound socket.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

from portal.util.logging_helper import get_logger

logger = get_logger(__name__)

# Largest datagram read or relayed
MAX_DATAGRAM_SIZE = 65536


class SessionProtocol(asyncio.DatagramProtocol):
    """
    Receive side of one session.

    Replies from the destination refresh the session's activity and are
    sent back to the client through the inbound transport.
    """

    def __init__(self, client_address: tuple, inbound: asyncio.DatagramTransport):
        self.client_address = client_address
        self.inbound = inbound
        self.session: "DatagramSession | None" = None
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple):
        if self.session is not None:
            self.session.touch()
            self.session.bytes_received += len(data)

        logger.debug("Forwarding %d bytes to %s", len(data), self.client_address)
        if self.inbound.is_closing():
            return
        try:
            self.inbound.sendto(data, self.client_address)
        except OSError as e:
            logger.error("Error sending to client %s: %s", self.client_address, e)

    def error_received(self, exc: Exception):
        # ICMP errors (e.g. port unreachable) from the destination
        logger.warning("Session %s error: %s", self.client_address, exc)

    def connection_lost(self, exc: Exception | None):
        logger.debug("Session socket for %s closed", self.client_address)


class DatagramSession:
    """One client's forwarding state."""

    def __init__(self, client_address: tuple, forward_transport: asyncio.DatagramTransport):
        self.client_address = client_address
        self.forward_transport = forward_transport
        self.created_at = time.monotonic()
        self.last_activity = self.created_at
        self.bytes_sent = 0
        self.bytes_received = 0

    @classmethod
    async def open(
        cls,
        client_address: tuple,
        dst_addr: tuple,
        inbound: asyncio.DatagramTransport,
    ) -> "DatagramSession":
        """Create a socket connected to ``dst_addr`` on behalf of ``client_address``."""
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: SessionProtocol(client_address, inbound),
            remote_addr=dst_addr,
        )
        session = cls(client_address, transport)
        protocol.session = session
        return session

    def touch(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_activity

    def is_stale(self, timeout_seconds: float) -> bool:
        """Check if this session has been inactive for too long."""
        return self.idle_for() > timeout_seconds

    def send(self, data: bytes) -> bool:
        """Send a client datagram to the destination. Returns False on failure."""
        if self.forward_transport.is_closing():
            logger.warning("Dropping %d bytes from %s: session closed", len(data), self.client_address)
            return False
        try:
            self.forward_transport.sendto(data)
        except OSError as e:
            logger.error("Error forwarding from %s: %s", self.client_address, e)
            return False
        self.bytes_sent += len(data)
        self.touch()
        return True

    def close(self) -> None:
        self.forward_transport.close()

    @property
    def closed(self) -> bool:
        return self.forward_transport.is_closing()

    def __repr__(self):
        return f"<DatagramSession {self.client_address} idle={self.idle_for():.1f}s>"


SessionFactory = Callable[[tuple], Awaitable[DatagramSession]]


class SessionTable:
    """
    Client address -> session mapping.

    Every mutation, and the idle scan, runs under one lock so that
    concurrent first datagrams from a client can never create two sessions.
    """

    def __init__(self):
        self._sessions: dict[tuple, DatagramSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, client_address: tuple):
        return client_address in self._sessions

    def get(self, client_address: tuple) -> DatagramSession | None:
        return self._sessions.get(client_address)

    def addresses(self) -> list[tuple]:
        return list(self._sessions)

    async def get_or_create(self, client_address: tuple, factory: SessionFactory) -> tuple[DatagramSession, bool]:
        """
        Return the client's session, creating it with ``factory`` if absent.

        Returns:
            Tuple of (session, created).
        """
        async with self._lock:
            session = self._sessions.get(client_address)
            if session is not None:
                return session, False

            session = await factory(client_address)
            self._sessions[client_address] = session
            return session, True

    async def remove(self, client_address: tuple) -> DatagramSession | None:
        """Remove and close one session."""
        async with self._lock:
            session = self._sessions.pop(client_address, None)
        if session is not None:
            session.close()
        return session

    async def evict_idle(self, timeout_seconds: float) -> list[DatagramSession]:
        """Remove and close every session idle longer than ``timeout_seconds``."""
        async with self._lock:
            stale = [s for s in self._sessions.values() if s.is_stale(timeout_seconds)]
            for session in stale:
                del self._sessions[session.client_address]
                session.close()
        return stale

    async def clear(self) -> int:
        """Close every session. Returns how many were closed."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        return len(sessions)

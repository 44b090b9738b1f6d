"""
UDP Port Forwarder.

Relays datagrams from clients on the source address to the destination
address. Each client address gets its own session (see udp_sessions) so
replies can be routed back to the right client. An idle reaper evicts
sessions that have gone quiet, since UDP never signals that a client left.
"""

import asyncio
import socket

from portal.exceptions import BindError
from portal.models.forward_types import ForwardProtocol
from portal.servers.base_forwarder import PortForwarder
from portal.servers.udp_sessions import DatagramSession, SessionTable
from portal.util.addresses import resolve_address
from portal.util.logging_helper import format_hex, get_logger

logger = get_logger(__name__)

DEFAULT_SESSION_TIMEOUT = 60.0
DEFAULT_CHECK_INTERVAL = 5.0
DEFAULT_QUEUE_SIZE = 1024


class InboundProtocol(asyncio.DatagramProtocol):
    """
    Protocol handler for the shared inbound socket.

    Queues each datagram for the forwarder's receive loop.
    """

    def __init__(self, queue: asyncio.Queue):
        self.queue = queue
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple):
        try:
            self.queue.put_nowait((data, addr))
        except asyncio.QueueFull:
            logger.warning("Inbound queue full, dropping %d bytes from %s", len(data), addr)

    def error_received(self, exc: Exception):
        logger.error("Inbound socket error: %s", exc)


class UdpPortForwarder(PortForwarder):
    """
    Datagram relay between one source and one destination address.

    The live connection count is owned by the forwarder: it is incremented
    when a session is created and republished from the table size on each
    reaper tick.
    """

    protocol = ForwardProtocol.UDP

    def __init__(
        self,
        src: str,
        dst: str,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Initialize the forwarder.

        Args:
            src: Address to receive client datagrams on, host:port.
            dst: Address to relay to, host:port.
            session_timeout: Seconds of inactivity before a session is evicted.
            check_interval: Seconds between idle scans.
            queue_size: Datagrams buffered for the receive loop before dropping.
        """
        super().__init__(src, dst)
        self.session_timeout = session_timeout
        self.check_interval = check_interval
        self.queue_size = queue_size
        self.sessions = SessionTable()
        self._dst_addr: tuple | None = None
        self._inbound: asyncio.DatagramTransport | None = None

    async def _serve(self) -> None:
        src_addr = await resolve_address(self.src, socket.SOCK_DGRAM)
        self._dst_addr = await resolve_address(self.dst, socket.SOCK_DGRAM)

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: InboundProtocol(queue),
                local_addr=src_addr[:2],
            )
        except OSError as e:
            raise BindError(self.src, e) from e

        self._inbound = transport
        try:
            self._spawn(self._receive_loop(queue), name=f"udp-recv:{self.src}")
            self._spawn(self._reap_loop(), name=f"udp-reaper:{self.src}")
            self._mark_started(transport.get_extra_info("sockname"))
            await self._wait_stopped()
        finally:
            await self._cancel_tasks()
            closed = await self.sessions.clear()
            transport.close()
            self._inbound = None
            logger.debug("Closed %d sessions for %s", closed, self)

    async def _receive_loop(self, queue: asyncio.Queue) -> None:
        """Route queued client datagrams through their sessions."""
        while True:
            data, client_addr = await queue.get()
            logger.debug("Received %d bytes from %s: %s", len(data), client_addr, format_hex(data))
            try:
                await self._forward(data, client_addr)
            except OSError as e:
                logger.error("Error opening session for %s: %s", client_addr, e)
            except Exception as e:
                logger.exception("Error forwarding datagram from %s: %s", client_addr, e)

    async def _forward(self, data: bytes, client_addr: tuple) -> None:
        session, created = await self.sessions.get_or_create(client_addr, self._open_session)
        if created:
            self._conn_cnt.increment()
            logger.debug("New session for %s to %s", client_addr, self.dst)
        else:
            logger.debug("Reuse session for %s to %s", client_addr, self.dst)

        if not session.send(data) and session.closed:
            await self.sessions.remove(client_addr)
            self._conn_cnt.set(len(self.sessions))

    async def _open_session(self, client_addr: tuple) -> DatagramSession:
        return await DatagramSession.open(client_addr, self._dst_addr, self._inbound)

    async def _reap_loop(self) -> None:
        """Periodically evict idle sessions and publish the session count."""
        logger.debug("Starting cleanup task for %s", self)
        while True:
            await asyncio.sleep(self.check_interval)
            await self.reap_idle()

    async def reap_idle(self) -> int:
        """Run one idle scan. Returns how many sessions were evicted."""
        evicted = await self.sessions.evict_idle(self.session_timeout)
        remaining = len(self.sessions)
        self._conn_cnt.set(remaining)

        for session in evicted:
            logger.info(
                "Evicted idle session %s (idle %.1fs, sent %d bytes, received %d bytes)",
                session.client_address,
                session.idle_for(),
                session.bytes_sent,
                session.bytes_received,
            )
        if evicted:
            logger.debug("Cleaned up %d/%d sessions", len(evicted), remaining + len(evicted))
        return len(evicted)

    @property
    def session_count(self) -> int:
        return len(self.sessions)

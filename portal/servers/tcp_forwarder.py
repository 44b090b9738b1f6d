"""
TCP Port Forwarder.

Accepts connections on the source address and relays each one to a fresh
connection to the destination address, copying bytes in both directions
until either side closes.
"""

import asyncio
import socket
from contextlib import suppress

from portal.exceptions import BindError
from portal.models.forward_types import ForwardProtocol
from portal.servers.base_forwarder import PortForwarder
from portal.util.addresses import format_address, resolve_address
from portal.util.logging_helper import get_logger

logger = get_logger(__name__)

DEFAULT_BUFFER_SIZE = 65536
DEFAULT_HALF_CLOSE_TIMEOUT = 30.0


class TcpPortForwarder(PortForwarder):
    """
    Stream relay between one source and one destination address.

    A failed outbound connect drops only that inbound connection. Only a
    bind failure stops the forwarder. Outbound connects rely on the OS
    connect timeout.
    """

    protocol = ForwardProtocol.TCP

    def __init__(
        self,
        src: str,
        dst: str,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        half_close_timeout: float | None = DEFAULT_HALF_CLOSE_TIMEOUT,
    ):
        """
        Initialize the forwarder.

        Args:
            src: Address to listen on, host:port.
            dst: Address to relay to, host:port.
            buffer_size: Maximum bytes read per copy step.
            half_close_timeout: Seconds the remaining direction may run after
                the other one reached EOF. None waits indefinitely.
        """
        super().__init__(src, dst)
        self.buffer_size = buffer_size
        self.half_close_timeout = half_close_timeout
        self._dst_addr: tuple | None = None

    async def _serve(self) -> None:
        src_addr = await resolve_address(self.src, socket.SOCK_STREAM)
        self._dst_addr = await resolve_address(self.dst, socket.SOCK_STREAM)

        try:
            server = await asyncio.start_server(self._handle_client, src_addr[0], src_addr[1])
        except OSError as e:
            raise BindError(self.src, e) from e

        try:
            self._mark_started(server.sockets[0].getsockname())
            await self._wait_stopped()
        finally:
            server.close()
            # Handlers must be gone before wait_closed, which waits for them
            await self._cancel_tasks()
            await server.wait_closed()

    async def _handle_client(self, client_reader: asyncio.StreamReader, client_writer: asyncio.StreamWriter):
        peer = client_writer.get_extra_info("peername")
        if self._stop_event is None or self._stop_event.is_set():
            # Accepted just before shutdown
            await _close_writer(client_writer)
            return

        self._track(asyncio.current_task())
        logger.debug("Accepted connection from %s", peer)

        try:
            try:
                target_reader, target_writer = await asyncio.open_connection(self._dst_addr[0], self._dst_addr[1])
            except OSError as e:
                logger.error("Error connecting to target %s for %s: %s", self.dst, peer, e)
                return

            with self._conn_cnt.track():
                try:
                    await self._relay(client_reader, client_writer, target_reader, target_writer)
                finally:
                    await _close_writer(target_writer)
            logger.debug("Connection from %s closed", peer)
        finally:
            await _close_writer(client_writer)

    async def _relay(
        self,
        client_reader: asyncio.StreamReader,
        client_writer: asyncio.StreamWriter,
        target_reader: asyncio.StreamReader,
        target_writer: asyncio.StreamWriter,
    ) -> None:
        upstream = asyncio.create_task(self._pipe(client_reader, target_writer), name="client->target")
        downstream = asyncio.create_task(self._pipe(target_reader, client_writer), name="target->client")
        copies = {upstream, downstream}

        try:
            done, pending = await asyncio.wait(copies, return_when=asyncio.FIRST_COMPLETED)
            failed = any(t.exception() is not None for t in done)
            if pending and not failed:
                _, pending = await asyncio.wait(pending, timeout=self.half_close_timeout)
        finally:
            for task in copies:
                task.cancel()
            await asyncio.gather(*copies, return_exceptions=True)

        for task in copies:
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Relay %s for %s failed: %s", task.get_name(), self.dst, task.exception())

    async def _pipe(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> int:
        """Copy until EOF, then half-close the writer. Returns bytes copied."""
        total = 0
        while data := await reader.read(self.buffer_size):
            writer.write(data)
            await writer.drain()
            total += len(data)

        if writer.can_write_eof():
            with suppress(OSError):
                writer.write_eof()
        return total


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()


async def start_tcp_forwarder(src: str, dst: str, **kwargs) -> tuple[TcpPortForwarder, asyncio.Task]:
    """
    Start a TCP forwarder in a background task.

    Returns:
        The forwarder and the task running it, once the source is bound.
    """
    forwarder = TcpPortForwarder(src, dst, **kwargs)
    task = asyncio.create_task(forwarder.start())
    bound = await forwarder.wait_started(task)
    logger.info("TCP forwarder ready on %s", format_address(bound))
    return forwarder, task

"""
Echo responders for exercising a forwarder.

Run one as a destination with:

    python -m portal.servers.echo_server 127.0.0.1:9000 udp
"""

import asyncio
import logging
import sys

from portal.util.addresses import parse_address
from portal.util.logging_helper import get_logger, setup_logging

logger = get_logger(__name__)


class UdpEchoProtocol(asyncio.DatagramProtocol):
    """Sends every datagram back to its sender."""

    def __init__(self):
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.DatagramTransport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple):
        logger.debug("Received %d bytes from %s", len(data), addr)
        self.transport.sendto(data, addr)

    def error_received(self, exc: Exception):
        logger.error("Error receiving from socket: %s", exc)


async def _echo_stream(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    try:
        while data := await reader.read(65536):
            writer.write(data)
            await writer.drain()
    except ConnectionError as e:
        logger.debug("Echo connection ended: %s", e)
    finally:
        writer.close()


async def start_udp_echo_server(host: str, port: int) -> asyncio.DatagramTransport:
    """Start a UDP echo responder. Returns its transport."""
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(UdpEchoProtocol, local_addr=(host, port))
    logger.info("UDP echo server listening on %s", transport.get_extra_info("sockname"))
    return transport


async def start_tcp_echo_server(host: str, port: int) -> asyncio.Server:
    """Start a TCP echo responder."""
    server = await asyncio.start_server(_echo_stream, host, port)
    logger.info("TCP echo server listening on %s", server.sockets[0].getsockname())
    return server


async def _run(address: str, proto: str):
    host, port = parse_address(address)
    if proto == "tcp":
        server = await start_tcp_echo_server(host, port)
        async with server:
            await server.serve_forever()
    else:
        transport = await start_udp_echo_server(host, port)
        try:
            await asyncio.Event().wait()
        finally:
            transport.close()


def main():
    if len(sys.argv) < 2:
        print("usage: python -m portal.servers.echo_server host:port [tcp|udp]")
        sys.exit(2)

    proto = sys.argv[2].lower() if len(sys.argv) > 2 else "udp"
    setup_logging(level=logging.DEBUG)
    try:
        asyncio.run(_run(sys.argv[1], proto))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

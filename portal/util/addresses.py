"""
Address parsing for forwarding endpoints.

Addresses are given as ``host:port`` text. IPv6 literals must be
bracketed (``[::1]:8080``). Resolution goes through the running event
loop so it never blocks other tasks.
"""

import asyncio
import socket

from portal.exceptions import ConfigurationError


def parse_address(address: str) -> tuple[str, int]:
    """
    Split ``host:port`` text into its parts.

    Raises:
        ConfigurationError: If the text is not a valid ``host:port`` pair.
    """
    text = address.strip()
    host, sep, port_text = text.rpartition(":")
    if not sep or not host:
        raise ConfigurationError(f"Invalid address {address!r}: expected host:port")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigurationError(f"Invalid address {address!r}: IPv6 hosts must be bracketed")

    if not host:
        raise ConfigurationError(f"Invalid address {address!r}: empty host")

    try:
        port = int(port_text)
    except ValueError:
        raise ConfigurationError(f"Invalid address {address!r}: port is not a number") from None

    if not 0 <= port <= 65535:
        raise ConfigurationError(f"Invalid address {address!r}: port out of range")

    return host, port


async def resolve_address(address: str, socktype: int = socket.SOCK_STREAM) -> tuple:
    """
    Resolve ``host:port`` text to a socket address.

    Returns the first result of ``getaddrinfo``, e.g. ``("127.0.0.1", 80)``
    or a 4-tuple for IPv6.

    Raises:
        ConfigurationError: If the text is malformed or the host does not resolve.
    """
    host, port = parse_address(address)
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socktype)
    except (socket.gaierror, UnicodeError) as e:
        raise ConfigurationError(f"Cannot resolve {address!r}: {e}") from e

    if not infos:
        raise ConfigurationError(f"Cannot resolve {address!r}: no addresses")

    return infos[0][4]


def format_address(sockaddr: tuple) -> str:
    """Format a socket address tuple back into ``host:port`` text."""
    host, port = sockaddr[0], sockaddr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"

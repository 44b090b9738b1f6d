"""Build a forwarder for a protocol tag."""

from portal.config.app_settings import AppSettings
from portal.models.forward_types import ForwardProtocol
from portal.servers.base_forwarder import PortForwarder
from portal.servers.tcp_forwarder import TcpPortForwarder
from portal.servers.udp_forwarder import UdpPortForwarder


def create_forwarder(
    protocol: "ForwardProtocol | str",
    src: str,
    dst: str,
    settings: AppSettings | None = None,
) -> PortForwarder:
    """
    Create a TCP or UDP forwarder.

    Args:
        protocol: "TCP" or "UDP", case-insensitive.
        src: Source address, host:port.
        dst: Destination address, host:port.
        settings: Optional settings supplying per-transport tuning.

    Raises:
        ConfigurationError: If the protocol is unknown.
    """
    protocol = ForwardProtocol.parse(protocol)

    if protocol is ForwardProtocol.TCP:
        if settings is None:
            return TcpPortForwarder(src, dst)
        return TcpPortForwarder(
            src,
            dst,
            buffer_size=settings.tcp.buffer_size,
            half_close_timeout=settings.tcp.half_close_timeout,
        )

    if settings is None:
        return UdpPortForwarder(src, dst)
    return UdpPortForwarder(
        src,
        dst,
        session_timeout=settings.udp.session_timeout,
        check_interval=settings.udp.check_interval,
        queue_size=settings.udp.queue_size,
    )

"""
Exceptions raised by the forwarding engine.

Only startup failures surface to callers; per-connection and per-session
errors are logged and absorbed by the forwarders.
"""


class PortalError(Exception):
    """Base exception for forwarder errors."""


class ConfigurationError(PortalError):
    """An address or protocol could not be parsed or resolved."""


class BindError(PortalError):
    """The source address could not be bound."""

    def __init__(self, address: str, reason: OSError):
        self.address = address
        self.reason = reason
        super().__init__(f"Failed to bind {address}: {reason}")

from pydantic import BaseModel, Field, field_validator

from portal.models.forward_types import ForwardProtocol


class ForwardRequest(BaseModel):
    """Body of a start request."""

    src: str = Field(description="Source address to listen on, host:port")
    dst: str = Field(description="Destination address to relay to, host:port")
    protocol: ForwardProtocol = Field(default=ForwardProtocol.TCP)

    @field_validator("protocol", mode="before")
    @classmethod
    def _upper_protocol(cls, value):
        return value.upper() if isinstance(value, str) else value


class ForwardStatus(BaseModel):
    """Snapshot of the controller's forwarder."""

    running: bool
    status: str | None = None
    src: str | None = None
    dst: str | None = None
    protocol: ForwardProtocol | None = None
    bound_address: str | None = None
    connections: int = 0
    last_error: str | None = None

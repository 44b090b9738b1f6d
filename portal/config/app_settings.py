import os

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, JsonConfigSettingsSource, SettingsConfigDict

from portal.models.forward_types import ForwardProtocol
from portal.util.logging_helper import get_logger
from portal.util.paths import get_runtime_path, resolve_runtime_file

logger = get_logger(__name__)


class ForwardSettings(BaseModel):
    """The forwarding pair and whether to start it with the control API."""

    src: str = Field(default="127.0.0.1:8080")
    dst: str = Field(default="127.0.0.1:80")
    protocol: ForwardProtocol = Field(default=ForwardProtocol.TCP)
    autostart: bool = Field(default=False)

    @field_validator("protocol", mode="before")
    @classmethod
    def _upper_protocol(cls, value):
        return value.upper() if isinstance(value, str) else value


class TcpSettings(BaseModel):
    """Stream relay settings."""

    buffer_size: int = Field(default=65536, gt=0)
    # Seconds the other direction may keep going after one side sends EOF, None waits indefinitely
    half_close_timeout: float | None = Field(default=30.0, ge=0)


class UdpSettings(BaseModel):
    """Datagram relay settings."""

    session_timeout: float = Field(default=60.0, gt=0)  # Seconds of inactivity before a session is evicted
    check_interval: float = Field(default=5.0, gt=0)  # Seconds between idle scans
    queue_size: int = Field(default=1024, gt=0)  # Inbound datagrams waiting for the receive loop


class ApiSettings(BaseModel):
    """HTTP control API settings."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8765, gt=0, lt=65536)


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    debug_modules: list[str] = Field(default_factory=list, description="Loggers forced to DEBUG, e.g. portal.servers.udp_forwarder")


# Compute config path at module load time for frozen executable support
_config_path = os.path.join(get_runtime_path(), "config.json")


class AppSettings(BaseSettings):
    forward: ForwardSettings = Field(default_factory=ForwardSettings)
    tcp: TcpSettings = Field(default_factory=TcpSettings)
    udp: UdpSettings = Field(default_factory=UdpSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cache_file: str = Field(default=".tiny_portal_cache.json")

    model_config = SettingsConfigDict(
        json_file=_config_path,
        json_file_encoding="utf-8",
        env_prefix="PORTAL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls),
            dotenv_settings,
            file_secret_settings,
        )

    @property
    def cache_path(self) -> str:
        return resolve_runtime_file(self.cache_file)


def load_last_used(path: str) -> ForwardSettings | None:
    """
    Load the last-used forwarding pair.

    Returns None if the file is missing or unreadable.
    """
    if not os.path.exists(path):
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return ForwardSettings.model_validate_json(f.read())
    except (OSError, ValidationError) as e:
        logger.warning("Ignoring unreadable last-used config %s: %s", path, e)
        return None


def save_last_used(settings: ForwardSettings, path: str) -> None:
    """Persist the forwarding pair so the next session can restore it."""
    with open(path, "w", encoding="utf-8") as f:
        f.write(settings.model_dump_json(indent=2))
    logger.debug("Saved last-used config to %s", path)


app_config = AppSettings()

"""
Start/stop control over a single forwarder.

Holds at most one running forwarder at a time, the way a start/stop
button would, and remembers the last forwarding pair that started.
"""

import asyncio

from portal.config.app_settings import AppSettings, ForwardSettings, load_last_used, save_last_used
from portal.exceptions import PortalError
from portal.models.api_models import ForwardStatus
from portal.models.forward_types import ForwardProtocol
from portal.servers.base_forwarder import PortForwarder
from portal.servers.factory import create_forwarder
from portal.util.addresses import format_address
from portal.util.logging_helper import get_logger

logger = get_logger(__name__)


class PortalController:
    def __init__(self, settings: AppSettings):
        self.settings = settings
        self.forwarder: PortForwarder | None = None
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()
        self.last_error: str | None = None

    def is_busy(self) -> bool:
        """True while a forwarder task is alive."""
        return self._task is not None and not self._task.done()

    async def start(self, src: str, dst: str, protocol: "ForwardProtocol | str") -> ForwardStatus:
        """
        Start forwarding ``src`` to ``dst``.

        Raises:
            PortalError: If a forwarder is already running, or a
                ConfigurationError/BindError from the forwarder's startup.
        """
        async with self._lock:
            if self.is_busy():
                raise PortalError(f"Already forwarding {self.forwarder}")

            forwarder = create_forwarder(protocol, src, dst, self.settings)
            task = asyncio.create_task(forwarder.start(), name=f"portal:{forwarder}")
            try:
                await forwarder.wait_started(task)
            except PortalError as e:
                self.last_error = str(e)
                logger.error("Port forwarder failed to start: %s", e)
                raise

            self.forwarder = forwarder
            self._task = task
            self.last_error = None
            task.add_done_callback(self._on_forwarder_done)

            self._remember(ForwardSettings(src=src, dst=dst, protocol=forwarder.protocol))
            return self.snapshot()

    async def stop(self) -> ForwardStatus:
        """Stop the running forwarder. A no-op if nothing is running."""
        async with self._lock:
            task, forwarder = self._task, self.forwarder
            if task is None:
                return self.snapshot()

            forwarder.stop()
            try:
                await task
            except PortalError:
                # Already recorded by _on_forwarder_done
                pass
            self._task = None
            return self.snapshot()

    def _on_forwarder_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info("Port forwarder cancelled")
        elif task.exception() is not None:
            self.last_error = str(task.exception())
            logger.error("Port forwarder stopped: %s", task.exception())
        else:
            logger.info("Port forwarder stopped")

    def _remember(self, forward: ForwardSettings) -> None:
        try:
            save_last_used(forward, self.settings.cache_path)
        except OSError as e:
            logger.warning("Could not save last-used config: %s", e)

    def last_used(self) -> ForwardSettings:
        """The last forwarding pair that started, falling back to the configured one."""
        return load_last_used(self.settings.cache_path) or self.settings.forward

    def snapshot(self) -> ForwardStatus:
        forwarder = self.forwarder
        if forwarder is None:
            return ForwardStatus(running=False, last_error=self.last_error)

        bound = forwarder.bound_address
        return ForwardStatus(
            running=forwarder.is_running(),
            status=forwarder.status(),
            src=forwarder.src,
            dst=forwarder.dst,
            protocol=forwarder.protocol,
            bound_address=format_address(bound) if bound else None,
            connections=forwarder.connection_count(),
            last_error=self.last_error,
        )

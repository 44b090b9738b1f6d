"""
Common lifecycle for port forwarders.

Both transports share the same control contract: ``start()`` runs until
``stop()`` is requested or startup fails, ``is_running()`` reports whether
a ``start()`` call is in flight, and ``connection_count()`` reads the live
flow counter. Every background task a forwarder spawns is registered
here and cancelled when ``start()`` unwinds, so nothing outlives it.
"""

import abc
import asyncio
from collections.abc import Coroutine
from contextlib import asynccontextmanager

from portal.exceptions import PortalError
from portal.models.forward_types import ForwardingEndpoint, ForwardProtocol, LiveConnectionCounter
from portal.util.addresses import format_address
from portal.util.logging_helper import get_logger

logger = get_logger(__name__)


class PortForwarder(abc.ABC):
    """
    Base class for a single source -> destination forwarder.

    Subclasses implement ``_serve()``: bind the source, call
    ``_mark_started()``, wait for ``_stop_event`` and release their own
    resources on the way out. A forwarder instance belongs to one event loop.
    """

    protocol: ForwardProtocol

    def __init__(self, src: str, dst: str):
        self.endpoint = ForwardingEndpoint(src, dst)
        self._conn_cnt = LiveConnectionCounter()
        self._tasks: set[asyncio.Task] = set()
        self._started = asyncio.Event()
        self._stop_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._bound_address: tuple | None = None

    @property
    def src(self) -> str:
        return self.endpoint.src

    @property
    def dst(self) -> str:
        return self.endpoint.dst

    @property
    def bound_address(self) -> tuple | None:
        """Socket address actually bound, None unless running."""
        return self._bound_address

    def __str__(self):
        return self.endpoint.describe(self.protocol)

    def __repr__(self):
        return f"<{type(self).__name__} {self}>"

    def status(self) -> str:
        return str(self)

    def is_running(self) -> bool:
        return self._running

    def connection_count(self) -> int:
        return self._conn_cnt.value

    async def start(self) -> None:
        """
        Run the forwarder until ``stop()`` is called.

        Raises:
            ConfigurationError: If an address cannot be parsed or resolved.
            BindError: If the source address cannot be bound.
            PortalError: If this forwarder is already running.
        """
        if self._running:
            raise PortalError(f"{self} is already running")

        self._running = True
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._started.clear()
        logger.info("Running %s", self)

        try:
            await self._serve()
        finally:
            await self._cancel_tasks()
            self._conn_cnt.set(0)
            self._bound_address = None
            self._started.clear()
            self._stop_event = None
            self._running = False
            logger.info("Stopped %s", self)

    def stop(self) -> None:
        """Request shutdown. A no-op if not running or already stopping."""
        event, loop = self._stop_event, self._loop
        if event is None or event.is_set():
            return

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if current is loop:
            event.set()
        else:
            loop.call_soon_threadsafe(event.set)

    async def wait_started(self, task: asyncio.Task) -> tuple:
        """
        Wait until the forwarder started by ``task`` is bound.

        Returns the bound address. Re-raises the startup error if ``task``
        finished first.
        """
        started = asyncio.ensure_future(self._started.wait())
        try:
            await asyncio.wait({started, task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            started.cancel()

        if task.done():
            task.result()
            raise PortalError(f"{self} stopped before it started")

        return self._bound_address

    @asynccontextmanager
    async def running(self):
        """Run the forwarder in a background task for the duration of the block."""
        task = asyncio.create_task(self.start(), name=f"portal:{self}")
        try:
            await self.wait_started(task)
        except BaseException:
            task.cancel()
            raise

        try:
            yield self
        finally:
            self.stop()
            await task

    @abc.abstractmethod
    async def _serve(self) -> None:
        """Bind, serve until the stop event is set, then release resources."""

    def _mark_started(self, sockaddr: tuple) -> None:
        self._bound_address = sockaddr
        self._started.set()
        logger.info("%s listening on %s", self.protocol.value, format_address(sockaddr))

    async def _wait_stopped(self) -> None:
        await self._stop_event.wait()

    def _spawn(self, coro: Coroutine, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._track(task)
        return task

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @property
    def active_tasks(self) -> int:
        """Number of background tasks still registered."""
        return len(self._tasks)

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

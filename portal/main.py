from contextlib import asynccontextmanager

from fastapi import FastAPI

from portal._version import __version__
from portal.config.app_settings import app_config
from portal.exceptions import PortalError
from portal.rest.routes import router as forward_router
from portal.servers.controller import PortalController
from portal.util.logging_helper import get_logger, parse_level, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(
        level=parse_level(app_config.logging.level),
        debug_modules=app_config.logging.debug_modules,
    )

    controller = PortalController(app_config)
    app.state.controller = controller

    if app_config.forward.autostart:
        forward = app_config.forward
        logger.info("Autostarting %s -> %s (%s)", forward.src, forward.dst, forward.protocol.value)
        try:
            await controller.start(forward.src, forward.dst, forward.protocol)
        except PortalError as e:
            logger.error("Autostart failed: %s", e)

    yield

    # Shutdown
    logger.info("Application shutdown...")
    await controller.stop()


app = FastAPI(
    title="Tiny Portal",
    description="TCP/UDP port forwarder with a start/stop control API.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(forward_router, prefix="/api")


@app.get("/health")
async def health_check():
    return {"status": "healthy"}

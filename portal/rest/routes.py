from fastapi import APIRouter, Depends, HTTPException, Request, status

from portal.config.app_settings import ForwardSettings
from portal.exceptions import ConfigurationError, PortalError
from portal.models.api_models import ForwardRequest, ForwardStatus
from portal.servers.controller import PortalController

# The router prefix will be /api, so these endpoints will be
# /api/forward, /api/forward/start, ...
router = APIRouter(prefix="/forward", tags=["Forward"])


def get_controller(request: Request) -> PortalController:
    return request.app.state.controller


@router.get("", response_model=ForwardStatus)
async def forward_status(controller: PortalController = Depends(get_controller)):
    """
    Current forwarder status and live connection count.
    """
    return controller.snapshot()


@router.post("/start", response_model=ForwardStatus)
async def start_forward(body: ForwardRequest, controller: PortalController = Depends(get_controller)):
    """
    Start forwarding.

    Bad addresses give 400; a bind failure or an already running forwarder gives 409.
    """
    try:
        return await controller.start(body.src, body.dst, body.protocol)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PortalError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.post("/stop", response_model=ForwardStatus)
async def stop_forward(controller: PortalController = Depends(get_controller)):
    """
    Stop forwarding. Stopping when nothing runs is not an error.
    """
    return await controller.stop()


@router.get("/last", response_model=ForwardSettings)
async def last_used_forward(controller: PortalController = Depends(get_controller)):
    """
    The last forwarding pair that was started.
    """
    return controller.last_used()

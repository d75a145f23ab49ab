from __future__ import annotations

from fastapi import APIRouter, Depends

from stompdeck.app.api.deps import get_container
from stompdeck.app.core.container import AppContainer
from stompdeck.app.models.surface import PollModeRequest, PollModeResponse

router = APIRouter(prefix="/surface/poll-mode", tags=["poll-mode"])


@router.get("", response_model=PollModeResponse)
async def get_poll_mode(container: AppContainer = Depends(get_container)) -> PollModeResponse:
    return container.surface_service.poll_mode_status()


@router.put("", response_model=PollModeResponse)
async def set_poll_mode(
    request: PollModeRequest,
    container: AppContainer = Depends(get_container),
) -> PollModeResponse:
    return await container.surface_service.set_poll_mode(request.mode)

from __future__ import annotations

from fastapi import APIRouter, Depends

from stompdeck.app.api.deps import get_container
from stompdeck.app.core.container import AppContainer
from stompdeck.app.models.surface import ShadowChannelState, ShadowValueRequest

router = APIRouter(prefix="/surface/shadow", tags=["shadow"])


@router.get("", response_model=list[ShadowChannelState])
async def list_shadow_channels(container: AppContainer = Depends(get_container)) -> list[ShadowChannelState]:
    return container.surface_service.shadow.states()


@router.post("/{channel}/mute", response_model=ShadowChannelState)
async def mute_channel(channel: str, container: AppContainer = Depends(get_container)) -> ShadowChannelState:
    return await container.surface_service.mute_shadow(channel)


@router.post("/{channel}/unmute", response_model=ShadowChannelState)
async def unmute_channel(channel: str, container: AppContainer = Depends(get_container)) -> ShadowChannelState:
    return await container.surface_service.unmute_shadow(channel)


@router.post("/{channel}/value", response_model=ShadowChannelState)
async def set_channel_value(
    channel: str,
    request: ShadowValueRequest,
    container: AppContainer = Depends(get_container),
) -> ShadowChannelState:
    return await container.surface_service.set_shadow_value(channel, request.value)

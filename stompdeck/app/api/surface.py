from __future__ import annotations

from fastapi import APIRouter, Depends

from stompdeck.app.api.deps import get_container
from stompdeck.app.core.container import AppContainer
from stompdeck.app.models.surface import (
    ChainAddRequest,
    ChainMoveRequest,
    ChainRemoveRequest,
    FileParamWriteRequest,
    ParamWriteRequest,
    PluginEnabledWriteRequest,
    PresetLoadRequest,
    PresetSaveRequest,
    SurfaceSnapshot,
)

router = APIRouter(prefix="/surface", tags=["surface"])


@router.get("", response_model=SurfaceSnapshot)
async def get_surface(container: AppContainer = Depends(get_container)) -> SurfaceSnapshot:
    return container.surface_service.snapshot()


@router.post("/refresh", response_model=SurfaceSnapshot)
async def refresh_surface(container: AppContainer = Depends(get_container)) -> SurfaceSnapshot:
    return await container.surface_service.refresh()


@router.post("/params", response_model=SurfaceSnapshot)
async def set_param(
    request: ParamWriteRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.set_param(request.plugin, request.param, request.value)


@router.post("/params/file", response_model=SurfaceSnapshot)
async def set_file_param(
    request: FileParamWriteRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.set_file_param(request.plugin, request.param, request.value)


@router.post("/plugins/{plugin}/enabled", response_model=SurfaceSnapshot)
async def set_plugin_enabled(
    plugin: str,
    request: PluginEnabledWriteRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.set_plugin_enabled(plugin, request.enabled)


@router.post("/presets/load", response_model=SurfaceSnapshot)
async def load_preset(
    request: PresetLoadRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.load_preset(request.name)


@router.post("/presets/save", response_model=SurfaceSnapshot)
async def save_preset(
    request: PresetSaveRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.save_preset(request.name)


@router.post("/presets/save-as", response_model=SurfaceSnapshot)
async def save_preset_as(
    request: PresetLoadRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.save_preset_as(request.name)


@router.post("/presets/delete", response_model=SurfaceSnapshot)
async def delete_preset(
    request: PresetLoadRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.delete_preset(request.name)


@router.post("/chains/{chain}/add", response_model=SurfaceSnapshot)
async def add_plugin(
    chain: str,
    request: ChainAddRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.add_plugin(chain, request.plugin)


@router.post("/chains/{chain}/remove", response_model=SurfaceSnapshot)
async def remove_plugin(
    chain: str,
    request: ChainRemoveRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.remove_plugin(chain, request.index)


@router.post("/chains/{chain}/move", response_model=SurfaceSnapshot)
async def move_plugin(
    chain: str,
    request: ChainMoveRequest,
    container: AppContainer = Depends(get_container),
) -> SurfaceSnapshot:
    return await container.surface_service.move_plugin(chain, request.index, request.offset)

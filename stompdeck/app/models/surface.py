from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from stompdeck.app.models.gateway import SystemSnapshot
from stompdeck.app.models.program import EngineConfig, Program


class PollMode(StrEnum):
    LIVE = "live"
    RESEARCH = "research"


class UpdateOrigin(StrEnum):
    USER = "user"
    REFRESH = "refresh"
    PRESET_WATCH = "preset_watch"
    MODE_SWITCH = "mode_switch"


class ShadowChannelState(BaseModel):
    key: str
    plugin: str
    param: str
    value: float
    last_value: float | None = None
    muted: bool = False
    min: float | None = None
    max: float | None = None


class SurfaceSnapshot(BaseModel):
    program: Program
    config: EngineConfig
    presets: list[str] = Field(default_factory=list)
    selected_preset: str | None = None
    status: str
    error: str | None = None
    origin: UpdateOrigin
    poll_mode: PollMode
    system: SystemSnapshot | None = None
    shadow: list[ShadowChannelState] = Field(default_factory=list)
    fetched_at: str | None = None
    durations: dict[str, str | None] = Field(default_factory=dict)
    revision: int = 0


class SurfaceEvent(BaseModel):
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    type: str
    payload: dict[str, str | int | float | bool | None] = Field(default_factory=dict)


class ParamWriteRequest(BaseModel):
    plugin: str = Field(min_length=1)
    param: str = Field(min_length=1)
    value: float | str


class FileParamWriteRequest(BaseModel):
    plugin: str = Field(min_length=1)
    param: str = Field(min_length=1)
    value: str = Field(min_length=1)


class PluginEnabledWriteRequest(BaseModel):
    enabled: bool


class PresetLoadRequest(BaseModel):
    name: str


class PresetSaveRequest(BaseModel):
    name: str | None = None


class ChainAddRequest(BaseModel):
    plugin: str = Field(min_length=1)


class ChainRemoveRequest(BaseModel):
    index: int = Field(ge=0)


class ChainMoveRequest(BaseModel):
    index: int = Field(ge=0)
    offset: Literal[-1, 1]


class PollModeRequest(BaseModel):
    mode: PollMode


class PollModeResponse(BaseModel):
    mode: PollMode
    status_task_active: bool
    preset_watch_active: bool
    last_preset: str | None = None


class ShadowValueRequest(BaseModel):
    value: float | str

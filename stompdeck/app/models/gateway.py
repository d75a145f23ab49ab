from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DumpSection(BaseModel):
    raw: str = ""
    duration: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.error


class StateMeta(BaseModel):
    now: str | None = None


class StatePayload(BaseModel):
    """Body of ``GET /api/state``: one raw dump per section plus timing metadata."""

    model_config = ConfigDict(populate_by_name=True)

    meta: StateMeta = Field(default_factory=StateMeta)
    dump_config: DumpSection = Field(default_factory=DumpSection, alias="dumpConfig")
    program: DumpSection = Field(default_factory=DumpSection)
    presets: DumpSection = Field(default_factory=DumpSection)


class CurrentPresetPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_preset: str = Field(default="", alias="currentPreset")
    error: str | None = None


class JackStatus(BaseModel):
    running: bool = False
    driver: str = ""
    device: str = ""
    sr: int = 0
    buf: int = 0
    xruns: int = 0
    xruns_delta: int = 0
    last_xrun: str | None = None
    latency_rt_ms: float = 0.0


class RoutingStatus(BaseModel):
    ok: bool = False
    missing: list[str] = Field(default_factory=list)
    ports: int = 0
    edges: int = 0


class MidiStatus(BaseModel):
    connected: bool = False
    details: str = ""
    alsa: list[str] = Field(default_factory=list)
    jack: list[str] = Field(default_factory=list)


class AudioInterfaceStatus(BaseModel):
    asound_cards: list[str] = Field(default_factory=list)


class SystemSnapshot(BaseModel):
    ts: int = 0
    jack: JackStatus = Field(default_factory=JackStatus)
    routing: RoutingStatus = Field(default_factory=RoutingStatus)
    midi: MidiStatus = Field(default_factory=MidiStatus)
    audioif: AudioInterfaceStatus = Field(default_factory=AudioInterfaceStatus)
    errors: list[str] = Field(default_factory=list)


class ParamSetRequest(BaseModel):
    plugin: str = Field(min_length=1)
    param: str = Field(min_length=1)
    value: float


class FileParamSetRequest(BaseModel):
    plugin: str = Field(min_length=1)
    param: str = Field(min_length=1)
    value: str = Field(min_length=1)


class PluginEnabledRequest(BaseModel):
    enabled: bool


class PresetNameRequest(BaseModel):
    name: str


class ChainSetRequest(BaseModel):
    plugins: list[str] = Field(default_factory=list)

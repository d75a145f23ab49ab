from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

_INSTANCE_SUFFIX = re.compile(r"_\d+$")


def base_type(plugin: str) -> str:
    """Strip the disambiguating ``_<digits>`` suffix from a plugin instance name."""
    return _INSTANCE_SUFFIX.sub("", plugin)


class Program(BaseModel):
    model_config = ConfigDict(frozen=True)

    preset: str | None = None
    chains: dict[str, list[str]] = Field(default_factory=dict)
    slots: dict[str, str] = Field(default_factory=dict)
    params: dict[str, dict[str, str]] = Field(default_factory=dict)

    def param(self, plugin: str, param: str) -> str | None:
        return self.params.get(plugin, {}).get(param)

    def with_param(self, plugin: str, param: str, value: str) -> Program:
        params = {name: dict(values) for name, values in self.params.items()}
        params.setdefault(plugin, {})[param] = value
        return self.model_copy(update={"params": params})

    def without_param(self, plugin: str, param: str) -> Program:
        params = {name: dict(values) for name, values in self.params.items()}
        params.get(plugin, {}).pop(param, None)
        return self.model_copy(update={"params": params})


class ParameterMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str | None = None
    min: float | None = None
    max: float | None = None
    default: float | None = None
    step: float = 0.01
    is_output: bool = False
    value_format: str | None = None

    @property
    def is_bool(self) -> bool:
        return (self.type or "").lower() in {"bool", "boolean", "toggle"}

    @property
    def is_file(self) -> bool:
        return (self.type or "").lower() == "file"

    def clamp(self, value: float) -> float:
        if self.min is not None:
            value = max(self.min, value)
        if self.max is not None:
            value = min(self.max, value)
        return value


class PluginTypeMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    background_color: str | None = None
    foreground_color: str | None = None
    description: str = ""
    selectable: bool = False


FileOptionTree = dict[str, list[str]]


class EngineConfig(BaseModel):
    """Decoded config dump: per-type metadata shared by every plugin instance."""

    model_config = ConfigDict(frozen=True)

    plugins: dict[str, PluginTypeMeta] = Field(default_factory=dict)
    params: dict[str, dict[str, ParameterMeta]] = Field(default_factory=dict)
    file_trees: FileOptionTree = Field(default_factory=dict)

    def plugin_meta(self, plugin: str) -> PluginTypeMeta | None:
        return self.plugins.get(base_type(plugin)) or self.plugins.get(plugin)

    def param_meta(self, plugin: str, param: str) -> ParameterMeta | None:
        by_type = self.params.get(base_type(plugin)) or self.params.get(plugin) or {}
        return by_type.get(param)

    def file_options(self, plugin: str, param: str) -> list[str]:
        return self.file_trees.get(f"{base_type(plugin)}.{param}") or self.file_trees.get(f"{plugin}.{param}") or []

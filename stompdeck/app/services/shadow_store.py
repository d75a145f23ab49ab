from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from stompdeck.app.models.program import EngineConfig
from stompdeck.app.models.surface import ShadowChannelState

logger = logging.getLogger(__name__)

NEUTRAL_VALUE = 0.0


class ShadowChannelNotFoundError(KeyError):
    pass


@dataclass(slots=True)
class ShadowChannel:
    plugin: str
    param: str
    value: float = NEUTRAL_VALUE
    last_value: float | None = None
    muted: bool = False
    min: float | None = None
    max: float | None = None

    @property
    def key(self) -> str:
        return f"{self.plugin}.{self.param}"

    def clamp(self, value: float) -> float:
        if self.min is not None:
            value = max(self.min, value)
        if self.max is not None:
            value = min(self.max, value)
        return value

    def to_state(self) -> ShadowChannelState:
        return ShadowChannelState(
            key=self.key,
            plugin=self.plugin,
            param=self.param,
            value=self.value,
            last_value=self.last_value,
            muted=self.muted,
            min=self.min,
            max=self.max,
        )


class SessionShadowStore:
    """UI-side state for engine stages that never appear in the program dump.

    Values are seeded once from config metadata and afterwards change only
    through user actions; decoding a dump never touches them.
    """

    def __init__(self, channels: list[tuple[str, str]], *, mute_floor: float = -60.0) -> None:
        self._channels = {
            f"{plugin}.{param}": ShadowChannel(plugin=plugin, param=param) for plugin, param in channels
        }
        self._mute_floor = mute_floor
        self._initialized = False

    def initialize(self, config: EngineConfig) -> bool:
        if self._initialized:
            return False
        for channel in self._channels.values():
            meta = config.param_meta(channel.plugin, channel.param)
            channel.min = meta.min if meta else None
            channel.max = meta.max if meta else None
            default = meta.default if meta and meta.default is not None else NEUTRAL_VALUE
            channel.value = channel.clamp(default)
            channel.last_value = None
            channel.muted = False
        self._initialized = True
        logger.debug("Shadow channels initialized: %s", ", ".join(self._channels))
        return True

    def get(self, key: str) -> ShadowChannel:
        channel = self._channels.get(key)
        if channel is None:
            raise ShadowChannelNotFoundError(key)
        return channel

    def checkpoint(self, key: str) -> ShadowChannel:
        return replace(self.get(key))

    def restore(self, saved: ShadowChannel) -> None:
        self._channels[saved.key] = replace(saved)

    def set_value(self, key: str, value: float) -> ShadowChannel:
        channel = self.get(key)
        channel.value = channel.clamp(value)
        # Moving the fader is an explicit level choice, so it ends a mute.
        channel.muted = False
        return channel

    def mute(self, key: str) -> ShadowChannel:
        channel = self.get(key)
        if channel.muted:
            return channel
        channel.last_value = channel.value
        channel.value = channel.min if channel.min is not None else self._mute_floor
        channel.muted = True
        return channel

    def unmute(self, key: str) -> ShadowChannel:
        channel = self.get(key)
        if not channel.muted:
            return channel
        channel.value = channel.last_value if channel.last_value is not None else NEUTRAL_VALUE
        channel.muted = False
        return channel

    def states(self) -> list[ShadowChannelState]:
        return [channel.to_state() for channel in self._channels.values()]

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from stompdeck.app.models.gateway import (
    ChainSetRequest,
    CurrentPresetPayload,
    FileParamSetRequest,
    ParamSetRequest,
    PluginEnabledRequest,
    PresetNameRequest,
    StatePayload,
    SystemSnapshot,
)
from stompdeck.app.protocol.dump_decoder import decode_current_preset

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """A gateway request failed: non-success status, network failure, or an undecodable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayTransport(Protocol):
    async def fetch_state(self) -> StatePayload: ...

    async def fetch_system(self) -> SystemSnapshot: ...

    async def fetch_current_preset(self) -> str | None: ...

    async def set_param(self, plugin: str, param: str, value: float) -> None: ...

    async def set_file_param(self, plugin: str, param: str, value: str) -> None: ...

    async def set_plugin_enabled(self, plugin: str, enabled: bool) -> None: ...

    async def load_preset(self, name: str) -> None: ...

    async def save_preset(self, name: str) -> None: ...

    async def save_preset_as(self, name: str) -> None: ...

    async def delete_preset(self, name: str) -> None: ...

    async def set_chain(self, chain: str, plugins: list[str]) -> None: ...

    async def aclose(self) -> None: ...


class HttpGatewayClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 3.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
            headers={"Accept": "application/json, text/plain, */*"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_state(self) -> StatePayload:
        response = await self._request("GET", "/api/state", headers={"Cache-Control": "no-store"})
        return self._decode(response, StatePayload)

    async def fetch_system(self) -> SystemSnapshot:
        response = await self._request("GET", "/api/system")
        return self._decode(response, SystemSnapshot)

    async def fetch_current_preset(self) -> str | None:
        try:
            response = await self._request("GET", "/api/preset/current")
        except GatewayError as exc:
            if exc.status_code not in {404, 405}:
                raise
            # Older gateways lack the lightweight lookup; derive it from the program dump.
            state = await self.fetch_state()
            if state.program.error:
                raise GatewayError(state.program.error) from exc
            return decode_current_preset(state.program.raw)

        payload = self._decode(response, CurrentPresetPayload)
        if payload.error:
            raise GatewayError(payload.error)
        return payload.current_preset.strip() or None

    async def set_param(self, plugin: str, param: str, value: float) -> None:
        await self._post("/api/param/set", ParamSetRequest(plugin=plugin, param=param, value=value))

    async def set_file_param(self, plugin: str, param: str, value: str) -> None:
        await self._post("/api/param/file", FileParamSetRequest(plugin=plugin, param=param, value=value))

    async def set_plugin_enabled(self, plugin: str, enabled: bool) -> None:
        await self._post(f"/api/plugins/{quote(plugin, safe='')}/enabled", PluginEnabledRequest(enabled=enabled))

    async def load_preset(self, name: str) -> None:
        await self._post("/api/preset/load", PresetNameRequest(name=name))

    async def save_preset(self, name: str) -> None:
        await self._post("/api/preset/save", PresetNameRequest(name=name))

    async def save_preset_as(self, name: str) -> None:
        await self._post("/api/preset/save-as", PresetNameRequest(name=name))

    async def delete_preset(self, name: str) -> None:
        await self._post("/api/preset/delete", PresetNameRequest(name=name))

    async def set_chain(self, chain: str, plugins: list[str]) -> None:
        await self._post(f"/api/chains/{quote(chain, safe='')}/set", ChainSetRequest(plugins=plugins))

    async def _post(self, path: str, body: Any) -> None:
        await self._request("POST", path, json=body.model_dump())

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise GatewayError(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            message = self._error_message(response)
            logger.debug("Gateway %s %s returned HTTP %s: %s", method, path, response.status_code, message)
            raise GatewayError(message, status_code=response.status_code)
        return response

    @staticmethod
    def _decode(response: httpx.Response, model: type[Any]) -> Any:
        try:
            return model.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise GatewayError(f"Undecodable response from {response.request.url.path}: {exc}") from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        fallback = f"HTTP {response.status_code}"
        try:
            payload = response.json()
        except ValueError:
            return response.text.strip() or fallback

        if isinstance(payload, dict):
            for key in ("error", "detail", "message"):
                value = payload.get(key)
                if isinstance(value, str) and value:
                    return value
        return response.text.strip() or fallback

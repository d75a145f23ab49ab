from __future__ import annotations

import asyncio
import contextlib
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from stompdeck.app.core.container import AppContainer
from stompdeck.app.models.surface import SurfaceEvent

router = APIRouter(tags=["ws"])


@router.websocket("/ws/surface")
async def surface_events(websocket: WebSocket) -> None:
    await websocket.accept()

    container: AppContainer = websocket.app.state.container
    queue = await container.event_bus.subscribe()

    snapshot = container.surface_service.snapshot()
    await websocket.send_json(
        SurfaceEvent(
            type="hello",
            payload={
                "poll_mode": snapshot.poll_mode.value,
                "preset": snapshot.program.preset,
                "revision": snapshot.revision,
            },
        ).model_dump(mode="json")
    )

    async def send_loop() -> None:
        while True:
            event = await queue.get()
            await websocket.send_json(event.model_dump(mode="json"))

    async def receive_loop() -> None:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if not isinstance(payload, dict):
                continue
            if payload.get("type") == "ping":
                await websocket.send_json(SurfaceEvent(type="pong").model_dump(mode="json"))

    try:
        sender_task = asyncio.create_task(send_loop(), name="ws-surface-send")
        receiver_task = asyncio.create_task(receive_loop(), name="ws-surface-recv")
        done, pending = await asyncio.wait({sender_task, receiver_task}, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect):
                await task

        for task in done:
            exception = task.exception()
            if exception is None or isinstance(exception, WebSocketDisconnect):
                continue
            raise exception
    except asyncio.CancelledError:
        raise
    except WebSocketDisconnect:
        pass
    finally:
        await container.event_bus.unsubscribe(queue)

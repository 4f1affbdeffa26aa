from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState


def register_hub_routes(
    app: FastAPI,
    *,
    state: Any,
    logger: logging.Logger,
) -> None:
    @app.get("/health")
    def api_health() -> dict[str, Any]:
        return state.health_service.health_payload()

    @app.post("/health/probe")
    async def api_health_probe() -> dict[str, Any]:
        await state.health_service.refresh()
        return state.health_service.health_payload()

    @app.get("/threads")
    def api_list_threads() -> dict[str, Any]:
        return state.thread_service.list_threads()

    @app.post("/threads")
    async def api_create_thread(request: Request) -> JSONResponse:
        payload: Any = None
        body = await request.body()
        if body.strip():
            try:
                payload = json.loads(body)
            except json.JSONDecodeError:
                payload = None
        title = payload.get("title") if isinstance(payload, dict) else None
        return JSONResponse(status_code=201, content=state.thread_service.create_thread(title))

    @app.get("/threads/{thread_id}/messages")
    def api_thread_messages(thread_id: str) -> dict[str, Any]:
        return state.thread_service.thread_messages(thread_id)

    @app.delete("/threads/{thread_id}")
    def api_delete_thread(thread_id: str) -> dict[str, Any]:
        return state.thread_service.delete_thread(thread_id)

    @app.websocket("/chat")
    async def ws_chat(websocket: WebSocket) -> None:
        await websocket.accept()
        logger.debug("Chat websocket connected.", extra={"component": "chat", "operation": "connect"})

        async def send_frame(frame: dict[str, Any]) -> None:
            if websocket.application_state != WebSocketState.CONNECTED:
                return
            if websocket.client_state != WebSocketState.CONNECTED:
                return
            try:
                await websocket.send_text(json.dumps(frame))
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("Dropped chat frame for a closed websocket.", extra={"component": "chat", "operation": "send"})

        session = state.chat_service.open_session(send_frame)
        try:
            while True:
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await session.handle_frame(raw)
        except WebSocketDisconnect:
            pass
        finally:
            await session.wait_idle()
            logger.debug("Chat websocket disconnected.", extra={"component": "chat", "operation": "disconnect"})

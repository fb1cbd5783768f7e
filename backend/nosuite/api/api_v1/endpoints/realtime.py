"""
Realtime transport over a WebSocket

Client messages:
    {"event": "register", "token", "app", "device_id", "client_id"}
    {"event": "storage", "id", "cmds": [{type, path, content?, chunk?, final?,
                                          token, app, device_id, client_id}]}

Server messages:
    {"event": "register", "success": true} or {"event": "register", "error"}
    {"event": "storage", "id", "responses": [...]}, one entry per command
    {"event": "file-change", "data": {path, action, content, app, client_id, by_self}}

A connection joins the change feed of a user when it registers or when one
of its storage commands authenticates.
"""

import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from nosuite.core.errors import InvalidToken, NosuiteError
from nosuite.schemas.storage import RegisterMessage, StorageMessage
from nosuite.services import ServiceContainer
from nosuite.services.storage import StorageContext

logger = logging.getLogger(__name__)

router = APIRouter()

# Close code for "try again later"
SERVICE_NOT_READY_CLOSE = 1013


async def _authenticate(
    services: ServiceContainer,
    websocket: WebSocket,
    token: Any,
    app: Any,
    device_id: Any,
    client_id: Any,
) -> StorageContext:
    """Validate the token of a message and join the user's change feed"""
    if not token:
        raise InvalidToken("No token provided")

    check = await run_in_threadpool(services.tokens.validate_token, token, app, device_id)
    if not check.valid:
        raise InvalidToken()

    data = check.data
    services.registry.register(websocket, data.email, app, client_id)
    key = await run_in_threadpool(services.credentials.user_key, data.email, data.hashed_password)
    return services.storage.context(data.email, app, key, client_id)


async def _handle_storage(services: ServiceContainer, websocket: WebSocket, message: dict) -> dict:
    try:
        batch = StorageMessage(**message)
    except ValidationError as e:
        logger.info(f"Rejected malformed storage message: {e.error_count()} errors")
        return {"event": "storage", "id": message.get("id"), "error": "Invalid message"}

    responses = []
    for cmd in batch.cmds:
        try:
            ctx = await _authenticate(services, websocket, cmd.token, cmd.app, cmd.device_id, cmd.client_id)
            responses.append(await services.storage.execute(ctx, cmd))
        except NosuiteError as e:
            responses.append({"error": e.message})
        except OSError as e:
            logger.error(f"Storage command {cmd.type} failed: {e.strerror}")
            responses.append({"error": "Operation failed"})

    return {"event": "storage", "id": batch.id, "responses": responses}


async def _handle_register(services: ServiceContainer, websocket: WebSocket, message: dict) -> dict:
    try:
        registration = RegisterMessage(**message)
    except ValidationError as e:
        logger.info(f"Rejected malformed register message: {e.error_count()} errors")
        return {"event": "register", "error": "Invalid message"}

    try:
        await _authenticate(
            services,
            websocket,
            registration.token,
            registration.app,
            registration.device_id,
            registration.client_id,
        )
    except NosuiteError as e:
        return {"event": "register", "error": e.message}
    return {"event": "register", "success": True}


MESSAGE_HANDLERS = {
    "storage": _handle_storage,
    "register": _handle_register,
}


@router.websocket("/ws")
async def realtime(websocket: WebSocket):
    services: ServiceContainer = websocket.app.state.services

    if not services.bootstrap.unlocked:
        await websocket.close(code=SERVICE_NOT_READY_CLOSE)
        return

    await websocket.accept()
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"error": "Invalid JSON"})
                continue

            event = message.get("event") if isinstance(message, dict) else None
            handler = MESSAGE_HANDLERS.get(event) if isinstance(event, str) else None
            if handler is None:
                await websocket.send_json({"error": "Unknown event"})
                continue

            await websocket.send_json(await handler(services, websocket, message))
    except WebSocketDisconnect:
        logger.debug("Realtime connection closed")
    finally:
        services.registry.unregister(websocket)

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def events_ws(websocket: WebSocket):
    manager = websocket.app.state.services.manager
    await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug("Ignoring malformed websocket message")
                continue
            if not isinstance(message, dict):
                continue
            action = message.get("action")
            disaster_id = message.get("disaster_id")
            if not disaster_id:
                continue
            if action == "join-disaster":
                manager.join(websocket, str(disaster_id))
            elif action == "leave-disaster":
                manager.leave(websocket, str(disaster_id))
            else:
                logger.debug("Ignoring websocket action %r", action)
    except WebSocketDisconnect:
        logger.debug("Websocket client went away")
    finally:
        manager.disconnect(websocket)

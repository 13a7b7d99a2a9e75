from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from constants import WS_PATH
from logging_config import get_logger

logger = get_logger(__name__)

relay_router = APIRouter(tags=["relay"])


@relay_router.websocket(WS_PATH)
async def relay_endpoint(websocket: WebSocket):
    """Live relay: authenticate with an `auth` frame, then send `private_message` / `chat_message` frames."""
    relay = websocket.app.state.relay
    client_host = websocket.client.host if websocket.client else "unknown"

    await websocket.accept()
    handler = relay.open(websocket)
    connection_id = handler.connection.connection_id
    logger.info(f"WebSocket connection {connection_id} accepted from {client_host}")

    frame_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(code=message.get("code", 1000))

            data = message.get("text")
            if data is None:
                data = message.get("bytes") or b""
            frame_count += 1
            logger.debug(f"Received frame #{frame_count} on connection {connection_id}")
            await handler.handle_text(data)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for connection {connection_id} (user {handler.user_id})")
    except Exception as e:
        logger.error(f"WebSocket error on connection {connection_id}: {e}", exc_info=True)
    finally:
        await handler.close()
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket {connection_id}: {e}")

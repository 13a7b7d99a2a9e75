"""Client side of the relay: one logical connection that survives network drops.

The client re-authenticates after every reconnect. Subscriptions registered
with on_message() stay in place across reconnects, so callers subscribe once.
"""

import asyncio
import json
from typing import Any, Callable, Dict, Optional, Set

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from constants import RECONNECT_DELAY_SECONDS, RELAY_URL
from logging_config import get_logger
from schemas.frames import ChatMessageFrame, FrameType, PrivateMessageFrame, dump_frame
from schemas.messages import CamelModel, MediaType

logger = get_logger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Any]
ConnectionStatusHandler = Callable[[bool], Any]


class RelayClient:
    def __init__(self, url: str = RELAY_URL, reconnect_delay: float = RECONNECT_DELAY_SECONDS, connect=None):
        self.url = url
        self.reconnect_delay = reconnect_delay
        self._connect = connect or websockets.connect
        self._socket = None
        self._authenticated = False
        self._user_id: Optional[int] = None
        self._message_handlers: Dict[str, Set[MessageHandler]] = {}
        self._connection_status_handlers: Set[ConnectionStatusHandler] = set()
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def init(self, user_id: int) -> None:
        """Start connecting as user_id. Must be called from a running event loop.

        A client that is already connected or reconnecting keeps its single
        connection; a second call is ignored.
        """
        if self._is_active():
            logger.warning(f"Relay client already started for user {self._user_id}, ignoring init for user {user_id}")
            return
        self._user_id = user_id
        self._closing = False
        self._start()

    def _is_active(self) -> bool:
        if self._closing:
            return False
        running = self._task is not None and not self._task.done()
        return running or self._socket is not None or self._reconnect_handle is not None

    def _start(self) -> None:
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        try:
            socket = await self._connect(self.url)
        except Exception as e:
            logger.error(f"Error connecting to relay at {self.url}: {e}")
            self._handle_close()
            return

        if self._closing:
            await socket.close()
            return

        self._socket = socket
        self._cancel_reconnect()
        logger.info(f"Connected to relay at {self.url}")
        self._notify_connection_status(True)

        if self._user_id is not None:
            await self._authenticate(self._user_id)

        try:
            async for raw in socket:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.info(f"Relay connection closed: {e}")
        except Exception as e:
            logger.error(f"Error reading from relay: {e}", exc_info=True)
        finally:
            if self._socket is socket:
                self._handle_close()

    async def _authenticate(self, user_id: int) -> None:
        try:
            await self._socket.send(json.dumps({"type": FrameType.AUTH.value, "userId": user_id}))
        except Exception as e:
            logger.error(f"Error sending auth for user {user_id}: {e}")

    def _handle_close(self) -> None:
        self._socket = None
        self._authenticated = False
        logger.info("Disconnected from relay")
        self._notify_connection_status(False)

        if self._closing or self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect)
        logger.debug(f"Reconnect scheduled in {self.reconnect_delay}s")

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closing:
            return
        logger.info(f"Reconnecting to relay at {self.url}")
        self._start()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _handle_frame(self, raw) -> None:
        try:
            data = json.loads(raw)
            frame_type = data["type"]
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"Error parsing relay frame: {e}")
            return

        if frame_type == FrameType.AUTH_SUCCESS.value:
            self._authenticated = True
            logger.info(f"Authenticated with relay as user {self._user_id}")

        self._notify_message_handlers(frame_type, data)

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting."""
        self._closing = True
        self._cancel_reconnect()
        socket, self._socket = self._socket, None
        self._authenticated = False
        if socket is not None:
            try:
                await socket.close()
            except Exception as e:
                logger.debug(f"Error closing relay socket: {e}")
            self._notify_connection_status(False)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def is_connected(self) -> bool:
        return self._socket is not None

    def is_authenticated(self) -> bool:
        return self._authenticated

    async def send(self, envelope) -> bool:
        """Send a frame on the live channel.

        Returns False without queueing when the channel is down or not yet
        authenticated; callers fall back to the durable-write HTTP API.
        """
        if not self.is_connected() or not self.is_authenticated():
            logger.error("Cannot send message: relay not connected or not authenticated")
            return False

        payload = dump_frame(envelope) if isinstance(envelope, CamelModel) else envelope
        try:
            await self._socket.send(json.dumps(payload))
        except Exception as e:
            logger.error(f"Error sending {payload.get('type')} frame: {e}")
            return False
        return True

    async def send_private_message(self, receiver_id: int, content: str, media_type=MediaType.TEXT, media_url: str = "") -> bool:
        try:
            frame = PrivateMessageFrame(receiver_id=receiver_id, content=content, media_type=media_type, media_url=media_url)
        except ValidationError as e:
            logger.error(f"Refusing to send invalid private message to {receiver_id}: {e}")
            return False
        return await self.send(frame)

    async def send_chat_room_message(self, room_id: int, content: str, media_type=MediaType.TEXT, media_url: str = "") -> bool:
        try:
            frame = ChatMessageFrame(room_id=room_id, content=content, media_type=media_type, media_url=media_url)
        except ValidationError as e:
            logger.error(f"Refusing to send invalid message to room {room_id}: {e}")
            return False
        return await self.send(frame)

    def on_message(self, frame_type: str, handler: MessageHandler) -> Callable[[], None]:
        """Subscribe to frames of one type. Returns a function that removes exactly this handler."""
        self._message_handlers.setdefault(frame_type, set()).add(handler)

        def unsubscribe() -> None:
            handlers = self._message_handlers.get(frame_type)
            if handlers is not None:
                handlers.discard(handler)

        return unsubscribe

    def on_connection_status(self, handler: ConnectionStatusHandler) -> Callable[[], None]:
        self._connection_status_handlers.add(handler)
        handler(self.is_connected())

        def unsubscribe() -> None:
            self._connection_status_handlers.discard(handler)

        return unsubscribe

    def _notify_message_handlers(self, frame_type: str, data: Dict[str, Any]) -> None:
        for handler in list(self._message_handlers.get(frame_type, ())):
            try:
                handler(data)
            except Exception as e:
                logger.error(f"Error in message handler for type {frame_type}: {e}", exc_info=True)

    def _notify_connection_status(self, connected: bool) -> None:
        for handler in list(self._connection_status_handlers):
            try:
                handler(connected)
            except Exception as e:
                logger.error(f"Error in connection status handler: {e}", exc_info=True)

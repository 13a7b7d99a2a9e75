"""Per-connection protocol state machine and the relay that ties it to the store.

Lifecycle of a connection: UNAUTHENTICATED -> AUTHENTICATED -> CLOSED.
Messages are always persisted before they are pushed to anyone; a store
failure is reported to the sender and nothing is delivered.
"""

import asyncio
import json
import uuid
from enum import Enum
from functools import partial
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from constants import OUTBOX_MAX_FRAMES
from fanout import ConnectionClosedError, FanoutEngine
from logging_config import get_logger
from registry import SessionRegistry
from schemas.frames import (
    CLIENT_FRAME_TYPES,
    AuthFrame,
    ChatMessageFrame,
    FrameType,
    PrivateMessageFrame,
    auth_success_frame,
    chat_message_frame,
    error_frame,
    parse_client_frame,
    private_message_frame,
)
from schemas.messages import DirectMessage, RoomMessage

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


class Connection:
    """One live WebSocket session.

    Outbound frames go through a FIFO outbox drained by a single writer task, so
    push() never blocks the caller and frames reach the socket in push order.
    A peer that stops reading fills the outbox; the connection is then closed
    instead of buffering without limit.
    """

    def __init__(self, websocket, max_queued: int = OUTBOX_MAX_FRAMES):
        self.connection_id = str(uuid.uuid4())
        self.websocket = websocket
        self.state = ConnectionState.UNAUTHENTICATED
        self.user_id: Optional[int] = None
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max_queued)
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"Connection({self.connection_id!r}, state={self.state.value}, user_id={self.user_id})"

    @property
    def is_open(self) -> bool:
        return self.state != ConnectionState.CLOSED

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def push(self, frame: Dict[str, Any]) -> None:
        if not self.is_open:
            raise ConnectionClosedError(f"Connection {self.connection_id} is closed")
        try:
            self._outbox.put_nowait(json.dumps(frame))
        except asyncio.QueueFull:
            logger.warning(f"Outbox of connection {self.connection_id} is full ({self._outbox.maxsize} frames), closing it")
            self._abort()
            raise ConnectionClosedError(f"Connection {self.connection_id} stopped reading")

    def _abort(self) -> None:
        self.state = ConnectionState.CLOSED
        if self._writer is not None:
            self._writer.cancel()
        self._closer = asyncio.ensure_future(self._close_transport())

    async def _close_transport(self) -> None:
        try:
            await self.websocket.close(code=1008)
        except Exception as e:
            logger.debug(f"Error closing stalled connection {self.connection_id}: {e}")

    async def _drain(self) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                logger.warning(f"Write to connection {self.connection_id} failed, dropping queued frames: {e}")
                self.state = ConnectionState.CLOSED
                return

    async def close(self) -> None:
        """Close immediately; frames still queued are dropped."""
        self.state = ConnectionState.CLOSED
        writer, self._writer = self._writer, None
        if writer is not None and not writer.done():
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass


class ConnectionHandler:
    """Parses inbound frames for one connection and dispatches them by type."""

    def __init__(self, connection: Connection, relay: "Relay"):
        self.connection = connection
        self.relay = relay
        self._handlers = {
            FrameType.PRIVATE_MESSAGE.value: self._handle_private_message,
            FrameType.CHAT_MESSAGE.value: self._handle_chat_message,
        }

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def user_id(self) -> Optional[int]:
        return self.connection.user_id

    async def handle_text(self, raw: Union[str, bytes]) -> None:
        if not self.connection.is_open:
            return

        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            logger.debug(f"Unparseable frame on connection {self.connection.connection_id}")
            self._send_error("Invalid message format")
            return

        if not isinstance(data, dict):
            self._send_error("Invalid message format")
            return

        frame_type = data.get("type")
        if not isinstance(frame_type, str) or frame_type not in CLIENT_FRAME_TYPES:
            logger.debug(f"Unknown frame type {frame_type!r} on connection {self.connection.connection_id}")
            self._send_error(f"Unknown message type: {frame_type}")
            return

        if frame_type == FrameType.AUTH.value:
            self._authenticate(data)
            return

        if self.state != ConnectionState.AUTHENTICATED:
            self._send_error("Not authenticated")
            return

        try:
            frame = parse_client_frame(data)
        except ValidationError as e:
            reason = e.errors()[0].get("msg", "invalid field") if e.errors() else "invalid field"
            logger.info(f"Rejected {frame_type} from user {self.user_id}: {reason}")
            self._send_error(f"Invalid {frame_type}: {reason}")
            return

        await self._handlers[frame_type](frame)

    def _authenticate(self, data: Dict[str, Any]) -> None:
        try:
            frame = AuthFrame.model_validate(data)
        except ValidationError:
            # TODO: decide whether repeated malformed auth attempts should close the connection.
            logger.warning(
                f"Ignoring malformed auth on connection {self.connection.connection_id}: userId={data.get('userId')!r}"
            )
            return

        registry = self.relay.registry
        previous = self.connection.user_id
        if previous is not None and previous != frame.user_id:
            registry.unregister(previous, self.connection)
            logger.info(f"Connection {self.connection.connection_id} re-authenticating from user {previous} to {frame.user_id}")

        registry.register(frame.user_id, self.connection)
        self.connection.user_id = frame.user_id
        self.connection.state = ConnectionState.AUTHENTICATED
        self.connection.push(auth_success_frame())
        logger.info(f"Connection {self.connection.connection_id} authenticated as user {frame.user_id}")

    async def _handle_private_message(self, frame: PrivateMessageFrame) -> None:
        sender_id = self.connection.user_id
        try:
            message = await self.relay.run_store(
                self.relay.store.create_message,
                sender_id,
                frame.receiver_id,
                frame.content,
                frame.media_type,
                frame.media_url,
            )
        except Exception as e:
            logger.error(f"Failed to persist private message from {sender_id} to {frame.receiver_id}: {e}", exc_info=True)
            self._send_error("Failed to process message")
            return

        self.relay.deliver_direct(message)

    async def _handle_chat_message(self, frame: ChatMessageFrame) -> None:
        sender_id = self.connection.user_id
        try:
            message = await self.relay.run_store(
                self.relay.store.create_chat_message,
                frame.room_id,
                sender_id,
                frame.content,
                frame.media_type,
                frame.media_url,
            )
        except Exception as e:
            logger.error(f"Failed to persist room message from {sender_id} in room {frame.room_id}: {e}", exc_info=True)
            self._send_error("Failed to process message")
            return

        try:
            await self.relay.deliver_room(message)
        except Exception as e:
            logger.error(f"Failed to resolve members of room {frame.room_id} for message {message.id}: {e}", exc_info=True)
            self._send_error("Message saved but could not be delivered")

    def _send_error(self, message: str) -> None:
        try:
            self.connection.push(error_frame(message))
        except ConnectionClosedError:
            logger.debug(f"Dropped error frame for closed connection {self.connection.connection_id}")

    async def close(self) -> None:
        """Unregister and close. Safe to call more than once."""
        if self.connection.user_id is not None:
            self.relay.registry.unregister(self.connection.user_id, self.connection)
        await self.connection.close()
        logger.info(f"Connection {self.connection.connection_id} closed (user {self.connection.user_id})")


class Relay:
    """Owns the session registry and fan-out engine, and reaches the store for persistence."""

    def __init__(self, store, registry: Optional[SessionRegistry] = None):
        self.store = store
        self.registry = registry if registry is not None else SessionRegistry()
        self.fanout = FanoutEngine(self.registry)

    def open(self, websocket) -> ConnectionHandler:
        connection = Connection(websocket)
        connection.start()
        logger.debug(f"Opened connection {connection.connection_id}")
        return ConnectionHandler(connection, self)

    async def run_store(self, func, *args):
        """Run a blocking store call off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    def deliver_direct(self, message: DirectMessage) -> int:
        return self.fanout.deliver(private_message_frame(message), [message.receiver_id])

    async def deliver_room(self, message: RoomMessage, exclude_user_id: Optional[int] = None) -> int:
        # Membership is read fresh for every message; it can change between messages.
        members = await self.run_store(self.store.get_room_members, message.room_id)
        if exclude_user_id is not None:
            members = [user_id for user_id in members if user_id != exclude_user_id]
        return self.fanout.deliver(chat_message_frame(message), members)

from typing import List

from fastapi import APIRouter, HTTPException, Request

from logging_config import get_logger
from schemas.messages import (
    CreateChatMessageRequest,
    CreateMessageRequest,
    DirectMessage,
    RoomMessage,
    UnreadCountResponse,
)

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/api", tags=["messages"])


@messages_router.post("/messages", status_code=201, response_model=DirectMessage)
async def create_message(payload: CreateMessageRequest, request: Request):
    """Durable-write path for direct messages, used when the live channel is unavailable.

    The message is persisted first and then pushed to the receiver's live
    connections. The sender's own view is not pushed; the caller inserts the
    returned message itself.
    """
    store = request.app.state.store
    relay = request.app.state.relay
    logger.info(f"Durable direct message from {payload.sender_id} to {payload.receiver_id}")

    try:
        message = store.create_message(
            payload.sender_id,
            payload.receiver_id,
            payload.content,
            payload.media_type,
            payload.media_url,
        )
    except Exception as e:
        logger.error(f"Error creating message from {payload.sender_id} to {payload.receiver_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create message")

    relay.deliver_direct(message)
    return message


@messages_router.get("/messages/unread-count/{user_id}", response_model=UnreadCountResponse)
async def get_unread_count(user_id: int, request: Request):
    store = request.app.state.store
    try:
        count = store.get_unread_message_count(user_id)
    except Exception as e:
        logger.error(f"Error counting unread messages for {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get unread message count")
    return UnreadCountResponse(count=count)


@messages_router.get("/messages/{user_id}/{other_user_id}", response_model=List[DirectMessage])
async def get_conversation(user_id: int, other_user_id: int, request: Request):
    """Conversation between two users; messages received by user_id are marked read."""
    store = request.app.state.store
    try:
        messages = store.get_messages_between_users(user_id, other_user_id)
        store.mark_messages_as_read(user_id, other_user_id)
    except Exception as e:
        logger.error(f"Error loading conversation {user_id}/{other_user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get messages")
    return messages


@messages_router.post("/chat-messages", status_code=201, response_model=RoomMessage)
async def create_chat_message(payload: CreateChatMessageRequest, request: Request):
    """Durable-write path for room messages.

    Fans out to the other current members after persisting. The sender inserts
    the returned message into its own view, so none of its connections get a push.
    """
    store = request.app.state.store
    relay = request.app.state.relay
    logger.info(f"Durable room message from {payload.user_id} in room {payload.room_id}")

    try:
        message = store.create_chat_message(
            payload.room_id,
            payload.user_id,
            payload.content,
            payload.media_type,
            payload.media_url,
        )
    except Exception as e:
        logger.error(f"Error creating chat message in room {payload.room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create chat message")

    try:
        await relay.deliver_room(message, exclude_user_id=payload.user_id)
    except Exception as e:
        # Already persisted; live delivery is best-effort.
        logger.error(f"Error delivering chat message {message.id} in room {payload.room_id}: {e}", exc_info=True)
    return message


@messages_router.get("/chat-messages/{room_id}", response_model=List[RoomMessage])
async def get_chat_messages(room_id: int, request: Request):
    store = request.app.state.store
    try:
        return store.get_chat_messages_by_room_id(room_id)
    except Exception as e:
        logger.error(f"Error loading messages for room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get chat messages")

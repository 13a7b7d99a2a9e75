import json
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_DB
from redis_keys import (
    REDIS_MESSAGE_KEY,
    REDIS_MESSAGE_ID_KEY,
    REDIS_CONVERSATION_KEY,
    REDIS_UNREAD_KEY,
    REDIS_CHAT_MESSAGE_KEY,
    REDIS_CHAT_MESSAGE_ID_KEY,
    REDIS_ROOM_MESSAGES_KEY,
    REDIS_ROOM_META_KEY,
    REDIS_ROOM_ID_KEY,
    REDIS_ROOM_MEMBERS_KEY,
    REDIS_ROOM_MEMBER_KEY,
    REDIS_ROOMS_KEY,
    REDIS_USER_ROOMS_KEY,
)
from logging_config import get_logger
from schemas.messages import DirectMessage, MediaType, RoomMessage
from schemas.rooms import ChatRoom, RoomMember

logger = get_logger(__name__)

# The connection is opened lazily on first command; RedisBackend.ping() checks it at startup.
redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, db=REDIS_DB, decode_responses=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_hash(data: dict) -> dict:
    """Convert a record into redis hash fields, skipping None values."""
    fields = {}
    for k, v in data.items():
        if v is None:
            continue
        if isinstance(v, bool):
            fields[k] = "1" if v else "0"
        elif isinstance(v, Enum):
            fields[k] = v.value
        elif isinstance(v, datetime):
            fields[k] = v.isoformat()
        elif isinstance(v, (dict, list)):
            fields[k] = json.dumps(v)
        else:
            fields[k] = str(v)
    return fields


class RedisBackend:
    """Durable store for direct messages, room messages, rooms and memberships."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client if client is not None else redis_client
        logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        return True

    # Direct messages

    @staticmethod
    def _conversation_key(user_id: int, other_user_id: int) -> str:
        low, high = sorted((int(user_id), int(other_user_id)))
        return REDIS_CONVERSATION_KEY.format(low=low, high=high)

    def create_message(self, sender_id: int, receiver_id: int, content: str, media_type="text", media_url: str = "") -> DirectMessage:
        message_id = self.redis_client.incr(REDIS_MESSAGE_ID_KEY)
        message = DirectMessage(
            id=message_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content or "",
            media_type=MediaType(media_type or MediaType.TEXT),
            media_url=media_url or "",
            read=False,
            created_at=_utcnow(),
        )
        key = REDIS_MESSAGE_KEY.format(message_id=message_id)
        # MULTI/EXEC: the message and its indexes are written together or not at all.
        with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=_to_hash(message.model_dump()))
            pipe.rpush(self._conversation_key(sender_id, receiver_id), message_id)
            pipe.sadd(REDIS_UNREAD_KEY.format(user_id=receiver_id), message_id)
            pipe.execute()
        logger.debug(f"Stored direct message {message_id} from {sender_id} to {receiver_id}")
        return message

    def get_message(self, message_id: int) -> Optional[DirectMessage]:
        data = self.redis_client.hgetall(REDIS_MESSAGE_KEY.format(message_id=message_id))
        if not data:
            return None
        return DirectMessage.model_validate(data)

    def get_messages_between_users(self, user_id: int, other_user_id: int) -> List[DirectMessage]:
        message_ids = self.redis_client.lrange(self._conversation_key(user_id, other_user_id), 0, -1)
        messages = []
        for message_id in message_ids:
            message = self.get_message(message_id)
            if message is None:
                logger.warning(f"Conversation {user_id}/{other_user_id} references missing message {message_id}")
                continue
            messages.append(message)
        messages.sort(key=lambda m: (m.created_at, m.id))
        return messages

    def mark_messages_as_read(self, user_id: int, other_user_id: int) -> int:
        """Mark messages received by user_id from other_user_id as read. Returns how many changed."""
        unread = [
            message
            for message in self.get_messages_between_users(user_id, other_user_id)
            if message.receiver_id == user_id and message.sender_id == other_user_id and not message.read
        ]
        if unread:
            with self.redis_client.pipeline(transaction=True) as pipe:
                for message in unread:
                    pipe.hset(REDIS_MESSAGE_KEY.format(message_id=message.id), "read", "1")
                    pipe.srem(REDIS_UNREAD_KEY.format(user_id=user_id), message.id)
                pipe.execute()
        logger.debug(f"Marked {len(unread)} messages from {other_user_id} to {user_id} as read")
        return len(unread)

    def get_unread_message_count(self, user_id: int) -> int:
        return int(self.redis_client.scard(REDIS_UNREAD_KEY.format(user_id=user_id)))

    # Room messages

    def create_chat_message(self, room_id: int, user_id: int, content: str, media_type="text", media_url: str = "") -> RoomMessage:
        message_id = self.redis_client.incr(REDIS_CHAT_MESSAGE_ID_KEY)
        message = RoomMessage(
            id=message_id,
            room_id=room_id,
            user_id=user_id,
            content=content or "",
            media_type=MediaType(media_type or MediaType.TEXT),
            media_url=media_url or "",
            created_at=_utcnow(),
        )
        key = REDIS_CHAT_MESSAGE_KEY.format(message_id=message_id)
        with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=_to_hash(message.model_dump()))
            pipe.rpush(REDIS_ROOM_MESSAGES_KEY.format(room_id=room_id), message_id)
            pipe.execute()
        logger.debug(f"Stored room message {message_id} from {user_id} in room {room_id}")
        return message

    def get_chat_messages_by_room_id(self, room_id: int) -> List[RoomMessage]:
        message_ids = self.redis_client.lrange(REDIS_ROOM_MESSAGES_KEY.format(room_id=room_id), 0, -1)
        messages = []
        for message_id in message_ids:
            data = self.redis_client.hgetall(REDIS_CHAT_MESSAGE_KEY.format(message_id=message_id))
            if not data:
                logger.warning(f"Room {room_id} references missing message {message_id}")
                continue
            messages.append(RoomMessage.model_validate(data))
        messages.sort(key=lambda m: (m.created_at, m.id))
        return messages

    # Rooms and membership

    @staticmethod
    def _queue_membership(pipe, member: RoomMember) -> None:
        pipe.sadd(REDIS_ROOM_MEMBERS_KEY.format(room_id=member.room_id), member.user_id)
        pipe.hset(
            REDIS_ROOM_MEMBER_KEY.format(room_id=member.room_id, user_id=member.user_id),
            mapping=_to_hash(member.model_dump()),
        )
        pipe.sadd(REDIS_USER_ROOMS_KEY.format(user_id=member.user_id), member.room_id)

    def create_chat_room(self, name: str, description: str = "", created_by: int = 0, is_private: bool = False) -> ChatRoom:
        room_id = self.redis_client.incr(REDIS_ROOM_ID_KEY)
        room = ChatRoom(
            id=room_id,
            name=name,
            description=description or "",
            created_by=created_by,
            is_private=bool(is_private),
            created_at=_utcnow(),
        )
        with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(REDIS_ROOM_META_KEY.format(room_id=room_id), mapping=_to_hash(room.model_dump()))
            pipe.sadd(REDIS_ROOMS_KEY, room_id)
            # Rooms created by the system (created_by=0) start empty.
            if created_by > 0:
                self._queue_membership(pipe, RoomMember(room_id=room_id, user_id=created_by, joined_at=room.created_at))
            pipe.execute()
        logger.info(f"Created room {room_id} ({name}) by user {created_by}")
        return room

    def get_chat_room(self, room_id: int) -> Optional[ChatRoom]:
        data = self.redis_client.hgetall(REDIS_ROOM_META_KEY.format(room_id=room_id))
        if not data:
            logger.debug(f"Room {room_id} not found in Redis")
            return None
        return ChatRoom.model_validate(data)

    def get_chat_rooms(self) -> List[ChatRoom]:
        rooms = []
        for room_id in sorted(int(r) for r in self.redis_client.smembers(REDIS_ROOMS_KEY)):
            room = self.get_chat_room(room_id)
            if room is None:
                logger.warning(f"Room index references missing room {room_id}")
                continue
            rooms.append(room)
        return rooms

    def get_chat_rooms_for_user(self, user_id: int) -> List[ChatRoom]:
        """Rooms the user belongs to, plus every public room."""
        member_of = {int(r) for r in self.redis_client.smembers(REDIS_USER_ROOMS_KEY.format(user_id=user_id))}
        return [room for room in self.get_chat_rooms() if room.id in member_of or not room.is_private]

    def add_user_to_room(self, room_id: int, user_id: int, role: str = "member") -> RoomMember:
        member = RoomMember(room_id=room_id, user_id=user_id, role=role or "member", joined_at=_utcnow())
        with self.redis_client.pipeline(transaction=True) as pipe:
            self._queue_membership(pipe, member)
            added = pipe.execute()[0]
        if added:
            logger.debug(f"User {user_id} added to room {room_id} as {member.role}")
        else:
            logger.debug(f"User {user_id} already a member of room {room_id}")
        return member

    def remove_user_from_room(self, room_id: int, user_id: int) -> bool:
        with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.srem(REDIS_ROOM_MEMBERS_KEY.format(room_id=room_id), user_id)
            pipe.delete(REDIS_ROOM_MEMBER_KEY.format(room_id=room_id, user_id=user_id))
            pipe.srem(REDIS_USER_ROOMS_KEY.format(user_id=user_id), room_id)
            removed = pipe.execute()[0]
        logger.debug(f"User {user_id} removed from room {room_id}: member_set={removed}")
        return bool(removed)

    def get_room_members(self, room_id: int) -> List[int]:
        """Current member ids of a room, read fresh on every call."""
        members = self.redis_client.smembers(REDIS_ROOM_MEMBERS_KEY.format(room_id=room_id))
        return sorted(int(user_id) for user_id in members)

    def get_room_member_role(self, room_id: int, user_id: int) -> Optional[str]:
        return self.redis_client.hget(REDIS_ROOM_MEMBER_KEY.format(room_id=room_id, user_id=user_id), "role")

    def update_room_member_role(self, room_id: int, user_id: int, role: str) -> bool:
        """Change a member's role. Returns False when the user is not in the room."""
        if not self.redis_client.sismember(REDIS_ROOM_MEMBERS_KEY.format(room_id=room_id), user_id):
            return False
        self.redis_client.hset(REDIS_ROOM_MEMBER_KEY.format(room_id=room_id, user_id=user_id), "role", role)
        logger.info(f"User {user_id} in room {room_id} is now {role}")
        return True


redis_backend = RedisBackend()

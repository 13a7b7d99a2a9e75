from typing import List

from fastapi import APIRouter, HTTPException, Request, Response

from logging_config import get_logger
from schemas.rooms import (
    AddRoomMemberRequest,
    ChatRoom,
    CreateChatRoomRequest,
    RoomMember,
    RoomRoleResponse,
    UpdateRoomRoleRequest,
)

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api", tags=["rooms"])


@rooms_router.post("/chat-rooms", status_code=201, response_model=ChatRoom)
async def create_room(room: CreateChatRoomRequest, request: Request):
    client_host = request.client.host if request.client else "unknown"
    logger.info(f"Room creation request from {client_host}, name: {room.name}, created_by: {room.created_by}")
    store = request.app.state.store
    try:
        return store.create_chat_room(room.name, room.description or "", room.created_by, bool(room.is_private))
    except Exception as e:
        logger.error(f"Error creating room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to create chat room")


@rooms_router.get("/chat-rooms/{room_id}", response_model=ChatRoom)
async def get_room(room_id: int, request: Request):
    store = request.app.state.store
    try:
        room = store.get_chat_room(room_id)
    except Exception as e:
        logger.error(f"Error fetching room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get chat room")
    if not room:
        logger.warning(f"Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Chat room not found")
    return room


@rooms_router.get("/chat-rooms", response_model=List[ChatRoom])
async def list_rooms(request: Request):
    store = request.app.state.store
    try:
        return store.get_chat_rooms()
    except Exception as e:
        logger.error(f"Error listing rooms: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get chat rooms")


@rooms_router.get("/chat-rooms/user/{user_id}", response_model=List[ChatRoom])
async def list_rooms_for_user(user_id: int, request: Request):
    """Rooms a user can subscribe to: their memberships plus all public rooms."""
    store = request.app.state.store
    try:
        return store.get_chat_rooms_for_user(user_id)
    except Exception as e:
        logger.error(f"Error listing rooms for user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get chat rooms")


# Membership changes take effect on the next room message: fan-out reads members fresh each time.

@rooms_router.post("/room-members", status_code=201, response_model=RoomMember)
async def add_room_member(member: AddRoomMemberRequest, request: Request):
    logger.info(f"Adding user {member.user_id} to room {member.room_id}")
    store = request.app.state.store
    try:
        return store.add_user_to_room(member.room_id, member.user_id, member.role or "member")
    except Exception as e:
        logger.error(f"Error adding user {member.user_id} to room {member.room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to add room member")


@rooms_router.delete("/room-members/{room_id}/{user_id}", status_code=204)
async def remove_room_member(room_id: int, user_id: int, request: Request):
    logger.info(f"Removing user {user_id} from room {room_id}")
    store = request.app.state.store
    try:
        store.remove_user_from_room(room_id, user_id)
    except Exception as e:
        logger.error(f"Error removing user {user_id} from room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to remove room member")
    return Response(status_code=204)


@rooms_router.get("/room-members/{room_id}", response_model=List[int])
async def get_room_members(room_id: int, request: Request):
    store = request.app.state.store
    try:
        return store.get_room_members(room_id)
    except Exception as e:
        logger.error(f"Error listing members of room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get room members")


@rooms_router.get("/room-members/{room_id}/{user_id}/role", response_model=RoomRoleResponse)
async def get_member_role(room_id: int, user_id: int, request: Request):
    store = request.app.state.store
    try:
        role = store.get_room_member_role(room_id, user_id)
    except Exception as e:
        logger.error(f"Error fetching role of user {user_id} in room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get member role")
    if not role:
        raise HTTPException(status_code=404, detail="Member not found in room")
    return RoomRoleResponse(room_id=room_id, user_id=user_id, role=role)


@rooms_router.patch("/room-members/{room_id}/{user_id}/role", response_model=RoomRoleResponse)
async def update_member_role(room_id: int, user_id: int, update: UpdateRoomRoleRequest, request: Request):
    logger.info(f"Setting role of user {user_id} in room {room_id} to {update.role}")
    store = request.app.state.store
    try:
        updated = store.update_room_member_role(room_id, user_id, update.role)
    except Exception as e:
        logger.error(f"Error updating role of user {user_id} in room {room_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update role")
    if not updated:
        raise HTTPException(status_code=404, detail="Member not found in room")
    return RoomRoleResponse(room_id=room_id, user_id=user_id, role=update.role)

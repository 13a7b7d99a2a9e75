from datetime import datetime
from typing import Optional

from pydantic import Field, StrictInt

from schemas.messages import CamelModel


class CreateChatRoomRequest(CamelModel):
    name: str = Field(min_length=1)
    description: Optional[str] = ""
    created_by: StrictInt = 0
    is_private: Optional[bool] = False


class ChatRoom(CamelModel):
    id: int
    name: str
    description: str = ""
    created_by: int
    is_private: bool = False
    created_at: datetime


class AddRoomMemberRequest(CamelModel):
    room_id: StrictInt = Field(gt=0)
    user_id: StrictInt = Field(gt=0)
    role: Optional[str] = "member"


class RoomMember(CamelModel):
    room_id: int
    user_id: int
    role: str = "member"
    joined_at: datetime


class UpdateRoomRoleRequest(CamelModel):
    role: str = Field(min_length=1)


class RoomRoleResponse(CamelModel):
    room_id: int
    user_id: int
    role: str

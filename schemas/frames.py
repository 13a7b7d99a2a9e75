"""Wire frames exchanged over the relay WebSocket.

Client -> server frames form a closed set parsed as a discriminated union on
``type``. Server -> client frames are plain dicts built by the helpers below so
they can be queued and serialized once per connection.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Union

from pydantic import Field, StrictInt, TypeAdapter

from schemas.messages import CamelModel, DirectMessage, MessageBody, RoomMessage


class FrameType(str, Enum):
    AUTH = "auth"
    AUTH_SUCCESS = "auth_success"
    PRIVATE_MESSAGE = "private_message"
    CHAT_MESSAGE = "chat_message"
    ERROR = "error"


CLIENT_FRAME_TYPES = frozenset({FrameType.AUTH.value, FrameType.PRIVATE_MESSAGE.value, FrameType.CHAT_MESSAGE.value})


class AuthFrame(CamelModel):
    type: Literal["auth"] = "auth"
    user_id: StrictInt = Field(gt=0)


class PrivateMessageFrame(MessageBody):
    type: Literal["private_message"] = "private_message"
    receiver_id: StrictInt = Field(gt=0)


class ChatMessageFrame(MessageBody):
    type: Literal["chat_message"] = "chat_message"
    room_id: StrictInt = Field(gt=0)


ClientFrame = Annotated[Union[AuthFrame, PrivateMessageFrame, ChatMessageFrame], Field(discriminator="type")]

client_frame_adapter = TypeAdapter(ClientFrame)


def parse_client_frame(data: Any) -> Union[AuthFrame, PrivateMessageFrame, ChatMessageFrame]:
    """Validate a decoded JSON payload. Raises pydantic.ValidationError."""
    return client_frame_adapter.validate_python(data)


def dump_frame(frame: CamelModel) -> Dict[str, Any]:
    return frame.model_dump(mode="json", by_alias=True)


def auth_success_frame() -> Dict[str, Any]:
    return {"type": FrameType.AUTH_SUCCESS.value}


def private_message_frame(message: DirectMessage) -> Dict[str, Any]:
    return {"type": FrameType.PRIVATE_MESSAGE.value, "message": message.model_dump(mode="json", by_alias=True)}


def chat_message_frame(message: RoomMessage) -> Dict[str, Any]:
    return {"type": FrameType.CHAT_MESSAGE.value, "message": message.model_dump(mode="json", by_alias=True)}


def error_frame(message: str) -> Dict[str, Any]:
    return {"type": FrameType.ERROR.value, "message": message}

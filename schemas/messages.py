from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes to camelCase on the wire, accepts either case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"


class MessageBody(CamelModel):
    content: str = ""
    media_type: MediaType = MediaType.TEXT
    media_url: str = ""

    @model_validator(mode="after")
    def check_payload(self):
        if not self.content and not self.media_url:
            raise ValueError("Message must have content or a media URL")
        if self.media_type == MediaType.TEXT and self.media_url:
            raise ValueError("mediaUrl must be empty for text messages")
        return self


class CreateMessageRequest(MessageBody):
    sender_id: StrictInt = Field(gt=0)
    receiver_id: StrictInt = Field(gt=0)


class CreateChatMessageRequest(MessageBody):
    room_id: StrictInt = Field(gt=0)
    user_id: StrictInt = Field(gt=0)


class DirectMessage(CamelModel):
    id: int
    sender_id: int
    receiver_id: int
    content: str
    media_type: MediaType = MediaType.TEXT
    media_url: str = ""
    read: bool = False
    created_at: datetime


class RoomMessage(CamelModel):
    id: int
    room_id: int
    user_id: int
    content: str
    media_type: MediaType = MediaType.TEXT
    media_url: str = ""
    created_at: datetime


class UnreadCountResponse(BaseModel):
    count: int

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

Language = Literal["javascript", "python", "html"]
RoomId = Annotated[str, Field(min_length=1)]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CursorPosition(BaseModel):
    line: int = Field(ge=0)
    column: int = Field(ge=0)


# Inbound (client -> server)

class JoinMessage(BaseModel):
    type: Literal["join"]
    room_id: RoomId
    display_name: Optional[str] = None


class BufferEditMessage(BaseModel):
    type: Literal["buffer_edit"]
    room_id: RoomId
    buffer: str
    language: Optional[Language] = None


class LanguageChangeMessage(BaseModel):
    type: Literal["language_change"]
    room_id: RoomId
    language: Language


class CursorMoveMessage(BaseModel):
    type: Literal["cursor_move"]
    room_id: RoomId
    position: CursorPosition


class LeaveMessage(BaseModel):
    type: Literal["leave"]
    room_id: RoomId


class PingMessage(BaseModel):
    type: Literal["ping"]


InboundMessage = Annotated[
    Union[JoinMessage, BufferEditMessage, LanguageChangeMessage, CursorMoveMessage, LeaveMessage, PingMessage],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundMessage)


# Outbound (server -> client)

class OutboundMessage(BaseModel):
    timestamp: str = Field(default_factory=_now)


class WelcomeNotice(OutboundMessage):
    type: Literal["welcome"] = "welcome"
    connection_id: str


class RoomStateNotice(OutboundMessage):
    type: Literal["room_state"] = "room_state"
    room_id: str
    buffer: str
    language: str
    member_count: int


class MemberJoinedNotice(OutboundMessage):
    type: Literal["member_joined"] = "member_joined"
    room_id: str
    connection_id: str
    display_name: str
    member_count: int


class MemberLeftNotice(OutboundMessage):
    type: Literal["member_left"] = "member_left"
    room_id: str
    connection_id: str
    display_name: str
    member_count: int


class BufferUpdatedNotice(OutboundMessage):
    type: Literal["buffer_updated"] = "buffer_updated"
    room_id: str
    buffer: str
    language: Optional[str] = None
    origin: str


class LanguageUpdatedNotice(OutboundMessage):
    type: Literal["language_updated"] = "language_updated"
    room_id: str
    language: str
    origin: str


class CursorUpdatedNotice(OutboundMessage):
    type: Literal["cursor_updated"] = "cursor_updated"
    room_id: str
    origin: str
    position: CursorPosition


class PongNotice(OutboundMessage):
    type: Literal["pong"] = "pong"


class ErrorNotice(OutboundMessage):
    type: Literal["error"] = "error"
    message: str
    detail: Optional[Union[str, list]] = None

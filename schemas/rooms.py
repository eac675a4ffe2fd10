from pydantic import BaseModel, Field
from typing import List


class CreateRoomResponse(BaseModel):
    room_id: str
    ws_url: str


class RoomSummaryResponse(BaseModel):
    room_id: str
    language: str
    member_count: int
    created_at: str
    last_activity: str


class RoomListResponse(BaseModel):
    rooms: List[RoomSummaryResponse]


class RoomDetailsResponse(BaseModel):
    room_id: str
    buffer: str
    language: str
    member_count: int
    created_at: str
    last_activity: str
    reap_pending: bool


class ExecuteRequest(BaseModel):
    source: str
    language: str = Field(min_length=1)


class HealthResponse(BaseModel):
    status: str
    timestamp: str

import secrets
import string

from fastapi import APIRouter, HTTPException, Request

from constants import ROOM_ID_LENGTH
from logging_config import get_logger
from room_store import RoomStore
from schemas.rooms import CreateRoomResponse, RoomDetailsResponse, RoomListResponse, RoomSummaryResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api/rooms", tags=["rooms"])

ROOM_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


def generate_room_id(length: int = ROOM_ID_LENGTH) -> str:
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


def get_store(request: Request) -> RoomStore:
    return request.app.state.store


@rooms_router.post("", response_model=CreateRoomResponse, status_code=201)
async def create_room(request: Request):
    # The id is only reserved in name: the room itself is created lazily on first join.
    room_id = generate_room_id()
    base_url = str(request.base_url).rstrip('/')
    ws_base = base_url.replace("http://", "ws://").replace("https://", "wss://")
    logger.info(f"Generated room id {room_id} for {request.client.host if request.client else 'unknown'}")
    return CreateRoomResponse(room_id=room_id, ws_url=f"{ws_base}/ws")


@rooms_router.get("", response_model=RoomListResponse)
async def list_rooms(request: Request):
    """Diagnostics listing of every live room."""
    rooms = [
        RoomSummaryResponse(
            room_id=summary.room_id,
            language=summary.language,
            member_count=summary.member_count,
            created_at=summary.created_at.isoformat(),
            last_activity=summary.last_activity.isoformat(),
        )
        for summary in get_store(request).list_rooms()
    ]
    logger.debug(f"Listing {len(rooms)} room(s)")
    return RoomListResponse(rooms=rooms)


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str, request: Request):
    store = get_store(request)
    room = store.get(room_id)
    if room is None:
        logger.info(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room_id=room_id,
        buffer=room.buffer,
        language=room.language,
        member_count=room.member_count,
        created_at=room.created_at.isoformat(),
        last_activity=room.last_activity.isoformat(),
        reap_pending=store.reaper.is_pending(room_id),
    )

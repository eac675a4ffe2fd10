"""In-memory room registry.

RoomStore owns every Room. Its methods are synchronous and never await, so
within one event loop each call runs to completion before any other message
or timer callback is processed. Conflicts are resolved last-writer-wins: an
edit replaces the whole buffer with no merge.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Iterator, List, Optional

from constants import DEFAULT_LANGUAGE, DEFAULT_TEMPLATES, GRACE_PERIOD_SECONDS
from logging_config import get_logger
from reaper import GracePeriodReaper

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MembershipTracker:
    """Set of participant ids attached to one room."""

    def __init__(self):
        self._ids = set()

    def add(self, participant_id: str) -> bool:
        if participant_id in self._ids:
            return False
        self._ids.add(participant_id)
        return True

    def remove(self, participant_id: str) -> bool:
        if participant_id not in self._ids:
            return False
        self._ids.discard(participant_id)
        return True

    def ids(self) -> FrozenSet[str]:
        return frozenset(self._ids)

    def __contains__(self, participant_id) -> bool:
        return participant_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))


@dataclass
class Room:
    room_id: str
    buffer: str
    language: str
    members: MembershipTracker = field(default_factory=MembershipTracker)
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

    @property
    def member_count(self) -> int:
        return len(self.members)

    def touch(self):
        self.last_activity = utcnow()


@dataclass(frozen=True)
class RoomSnapshot:
    room_id: str
    buffer: str
    language: str
    member_count: int


@dataclass(frozen=True)
class RoomSummary:
    room_id: str
    language: str
    member_count: int
    created_at: datetime
    last_activity: datetime


class RoomStore:
    def __init__(self, grace_period: float = GRACE_PERIOD_SECONDS,
                 default_language: str = DEFAULT_LANGUAGE,
                 loop: Optional[asyncio.AbstractEventLoop] = None,
                 clock: Callable[[], float] = time.monotonic):
        if default_language not in DEFAULT_TEMPLATES:
            raise ValueError(f"No template for default language {default_language!r}")
        self.default_language = default_language
        self._rooms: Dict[str, Room] = {}
        self.reaper = GracePeriodReaper(grace_period, self._reap, loop=loop, clock=clock)

    def get(self, room_id: str) -> Optional[Room]:
        self.reaper.expire_due()
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        self.reaper.expire_due()
        room = self._rooms.get(room_id)
        if room is None:
            logger.info(f"Creating new room: {room_id}")
            room = Room(
                room_id=room_id,
                buffer=DEFAULT_TEMPLATES[self.default_language],
                language=self.default_language,
            )
            self._rooms[room_id] = room
        return room

    def join(self, room_id: str, participant_id: str) -> Room:
        room = self.get_or_create(room_id)
        added = room.members.add(participant_id)
        room.touch()
        self.reaper.cancel(room_id)
        if added:
            logger.info(f"Participant {participant_id} joined room {room_id}. Members: {room.member_count}")
        else:
            logger.debug(f"Participant {participant_id} already in room {room_id}")
        return room

    def leave(self, room_id: str, participant_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            logger.info(f"Room {room_id} not found for participant {participant_id}")
            return None

        removed = room.members.remove(participant_id)
        room.touch()
        if not removed:
            logger.debug(f"Participant {participant_id} was not in room {room_id}")
            return room
        logger.info(f"Participant {participant_id} left room {room_id}. Members: {room.member_count}")

        if room.member_count == 0:
            logger.info(f"Room {room_id} is empty, scheduling cleanup")
            self.reaper.arm(room_id)
        return room

    def update_buffer(self, room_id: str, buffer: str, language: Optional[str] = None) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            logger.info(f"Cannot update buffer, room {room_id} not found")
            return None

        room.buffer = buffer
        if language:
            room.language = language
        room.touch()
        logger.debug(f"Room {room_id} buffer updated ({len(buffer)} chars, language={room.language})")
        return room

    def snapshot(self, room_id: str) -> Optional[RoomSnapshot]:
        self.reaper.expire_due()
        room = self._rooms.get(room_id)
        if room is None:
            return None
        return RoomSnapshot(
            room_id=room_id,
            buffer=room.buffer,
            language=room.language,
            member_count=room.member_count,
        )

    def member_count(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return room.member_count if room else 0

    def members(self, room_id: str) -> FrozenSet[str]:
        room = self._rooms.get(room_id)
        return room.members.ids() if room else frozenset()

    def find_room_of(self, participant_id: str) -> Optional[str]:
        for room_id, room in self._rooms.items():
            if participant_id in room.members:
                return room_id
        return None

    def list_rooms(self) -> List[RoomSummary]:
        self.reaper.expire_due()
        return [
            RoomSummary(
                room_id=room_id,
                language=room.language,
                member_count=room.member_count,
                created_at=room.created_at,
                last_activity=room.last_activity,
            )
            for room_id, room in self._rooms.items()
        ]

    def close(self):
        self.reaper.cancel_all()

    def __contains__(self, room_id) -> bool:
        return room_id in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    def _reap(self, room_id: str):
        room = self._rooms.get(room_id)
        if room is None:
            return
        if room.member_count > 0:
            logger.debug(f"Skipping reap of room {room_id}, {room.member_count} member(s) rejoined")
            return
        del self._rooms[room_id]
        logger.info(f"Room {room_id} cleaned up")

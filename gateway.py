"""Session gateway: routes protocol messages between connections and rooms.

Every handler here is synchronous. Outbound notices are handed to
``Connection.send``, which must only enqueue, so a room mutation and the
notices it produces happen in one uninterrupted step. Per-recipient delivery
order therefore matches the order in which originating messages arrived.
"""
import json
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from pydantic import ValidationError

from logging_config import get_logger
from room_store import RoomStore
from schemas.messages import (
    BufferEditMessage,
    BufferUpdatedNotice,
    CursorMoveMessage,
    CursorUpdatedNotice,
    ErrorNotice,
    JoinMessage,
    LanguageChangeMessage,
    LanguageUpdatedNotice,
    LeaveMessage,
    MemberJoinedNotice,
    MemberLeftNotice,
    OutboundMessage,
    PingMessage,
    PongNotice,
    RoomStateNotice,
    WelcomeNotice,
    inbound_adapter,
)

logger = get_logger(__name__)


class Connection(Protocol):
    connection_id: str

    def send(self, message: dict) -> None:
        """Queue a message for delivery. Must not block."""


@dataclass
class Session:
    connection: Connection
    display_name: str
    room_id: Optional[str] = None

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id


def default_display_name(connection_id: str) -> str:
    return f"User_{connection_id[:8]}"


class SessionGateway:
    def __init__(self, store: RoomStore):
        self.store = store
        self._sessions: Dict[str, Session] = {}

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    def session(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def connect(self, connection: Connection, display_name: Optional[str] = None) -> Session:
        name = display_name.strip() if display_name and display_name.strip() else default_display_name(connection.connection_id)
        session = Session(connection=connection, display_name=name)
        self._sessions[connection.connection_id] = session
        logger.info(f"Client connected: {connection.connection_id} ({name})")
        self._send(session, WelcomeNotice(connection_id=connection.connection_id))
        return session

    def disconnect(self, connection_id: str, reason: str = "closed"):
        session = self._sessions.pop(connection_id, None)
        if session is None:
            return
        logger.info(f"Client disconnected: {connection_id}, reason: {reason}")
        room_id = session.room_id or self.store.find_room_of(connection_id)
        if room_id:
            self._leave_room(session, room_id)

    def handle_text(self, connection_id: str, data: str):
        session = self._sessions.get(connection_id)
        if session is None:
            logger.warning(f"Message from unknown connection {connection_id} dropped")
            return
        try:
            payload = json.loads(data)
        except (ValueError, RecursionError):
            logger.warning(f"Non-JSON message from {connection_id}")
            self._send(session, ErrorNotice(message="Message is not valid JSON"))
            return
        self.handle(connection_id, payload)

    def handle_bytes(self, connection_id: str, data: bytes):
        session = self._sessions.get(connection_id)
        if session is None:
            logger.warning(f"Message from unknown connection {connection_id} dropped")
            return
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Binary message from {connection_id} is not UTF-8")
            self._send(session, ErrorNotice(message="Binary messages must be UTF-8 encoded JSON"))
            return
        self.handle_text(connection_id, text)

    def handle(self, connection_id: str, payload):
        session = self._sessions.get(connection_id)
        if session is None:
            logger.warning(f"Message from unknown connection {connection_id} dropped")
            return

        try:
            message = inbound_adapter.validate_python(payload)
        except ValidationError as e:
            logger.warning(f"Malformed message from {connection_id}: {e.error_count()} error(s)")
            self._send(session, ErrorNotice(
                message="Malformed message",
                detail=e.errors(include_url=False, include_context=False, include_input=False),
            ))
            return

        try:
            if isinstance(message, JoinMessage):
                self.on_join(session, message)
            elif isinstance(message, BufferEditMessage):
                self.on_buffer_edit(session, message)
            elif isinstance(message, LanguageChangeMessage):
                self.on_language_change(session, message)
            elif isinstance(message, CursorMoveMessage):
                self.on_cursor_move(session, message)
            elif isinstance(message, LeaveMessage):
                self.on_leave(session, message)
            elif isinstance(message, PingMessage):
                self._send(session, PongNotice())
        except Exception as e:
            logger.error(f"Error handling {message.type} from {connection_id}: {e}", exc_info=True)
            self._send(session, ErrorNotice(message=f"Failed to handle {message.type}"))

    def on_join(self, session: Session, message: JoinMessage):
        room_id = message.room_id
        logger.info(f"join: connection={session.connection_id}, room={room_id}")

        if message.display_name and message.display_name.strip():
            session.display_name = message.display_name.strip()

        previous = session.room_id or self.store.find_room_of(session.connection_id)
        if previous and previous != room_id:
            self._leave_room(session, previous)

        already_member = session.connection_id in self.store.members(room_id)
        self.store.join(room_id, session.connection_id)
        session.room_id = room_id

        state = self.store.snapshot(room_id)
        self._send(session, RoomStateNotice(
            room_id=room_id,
            buffer=state.buffer,
            language=state.language,
            member_count=state.member_count,
        ))

        if not already_member:
            self._broadcast(room_id, MemberJoinedNotice(
                room_id=room_id,
                connection_id=session.connection_id,
                display_name=session.display_name,
                member_count=state.member_count,
            ), exclude=session.connection_id)

    def on_buffer_edit(self, session: Session, message: BufferEditMessage):
        if not self._check_bound(session, message.room_id):
            return
        room = self.store.update_buffer(message.room_id, message.buffer, message.language)
        if room is None:
            self._send(session, ErrorNotice(message=f"Room {message.room_id} not found"))
            return
        self._broadcast(message.room_id, BufferUpdatedNotice(
            room_id=message.room_id,
            buffer=message.buffer,
            language=message.language,
            origin=session.display_name,
        ), exclude=session.connection_id)

    def on_language_change(self, session: Session, message: LanguageChangeMessage):
        if not self._check_bound(session, message.room_id):
            return
        logger.info(f"language_change: room={message.room_id}, language={message.language}")
        self._broadcast(message.room_id, LanguageUpdatedNotice(
            room_id=message.room_id,
            language=message.language,
            origin=session.display_name,
        ), exclude=session.connection_id)

    def on_cursor_move(self, session: Session, message: CursorMoveMessage):
        if not self._check_bound(session, message.room_id):
            return
        self._broadcast(message.room_id, CursorUpdatedNotice(
            room_id=message.room_id,
            origin=session.display_name,
            position=message.position,
        ), exclude=session.connection_id)

    def on_leave(self, session: Session, message: LeaveMessage):
        if session.room_id != message.room_id:
            logger.warning(f"leave for room {message.room_id} from {session.connection_id}, bound to {session.room_id}")
            self._send(session, ErrorNotice(message=f"Not joined to room {message.room_id}"))
            return
        self._leave_room(session, message.room_id)

    def _check_bound(self, session: Session, room_id: str) -> bool:
        if room_id not in self.store:
            logger.info(f"{session.connection_id} referenced unknown room {room_id}")
            self._send(session, ErrorNotice(message=f"Room {room_id} not found"))
            return False
        if session.room_id != room_id:
            logger.warning(f"{session.connection_id} sent to room {room_id} while bound to {session.room_id}")
            self._send(session, ErrorNotice(message=f"Not joined to room {room_id}"))
            return False
        return True

    def _leave_room(self, session: Session, room_id: str):
        logger.debug(f"leave: connection={session.connection_id}, room={room_id}")
        room = self.store.leave(room_id, session.connection_id)
        if session.room_id == room_id:
            session.room_id = None
        if room is None:
            return
        self._broadcast(room_id, MemberLeftNotice(
            room_id=room_id,
            connection_id=session.connection_id,
            display_name=session.display_name,
            member_count=room.member_count,
        ), exclude=session.connection_id)
        logger.debug(f"Broadcast member_left to room {room_id}, remaining: {room.member_count}")

    def _send(self, session: Session, notice: OutboundMessage):
        try:
            session.connection.send(notice.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Failed to queue {notice.type} for {session.connection_id}: {e}")

    def _broadcast(self, room_id: str, notice: OutboundMessage, exclude: Optional[str] = None):
        recipients = 0
        for member_id in self.store.members(room_id):
            if member_id == exclude:
                continue
            session = self._sessions.get(member_id)
            if session is None:
                continue
            self._send(session, notice)
            recipients += 1
        logger.debug(f"Broadcast {notice.type} to {recipients} connection(s) in room {room_id}")

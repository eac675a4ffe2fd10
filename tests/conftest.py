import pytest

from gateway import SessionGateway
from room_store import RoomStore

GRACE = 0.05


class RecordingConnection:
    """In-memory stand-in for a socket: records every queued message."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.messages = []

    def send(self, message: dict):
        self.messages.append(message)

    def of_type(self, message_type: str):
        return [m for m in self.messages if m["type"] == message_type]

    @property
    def last(self):
        return self.messages[-1]

    def clear(self):
        self.messages.clear()


@pytest.fixture
def store():
    store = RoomStore(grace_period=GRACE)
    yield store
    store.close()


@pytest.fixture
def gateway(store):
    return SessionGateway(store)


@pytest.fixture
def connect(gateway):
    def _connect(connection_id: str, display_name: str = None) -> RecordingConnection:
        connection = RecordingConnection(connection_id)
        gateway.connect(connection, display_name)
        connection.clear()
        return connection
    return _connect

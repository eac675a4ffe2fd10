from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import asyncio
import json
import uuid

from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, OUTBOX_MAX_MESSAGES, STATS_INTERVAL_SECONDS
from executors import ExecutorRegistry, build_registry
from gateway import SessionGateway
from logging_config import get_logger, setup_logging
from room_store import RoomStore
from routers.execute import execute_router
from routers.rooms import rooms_router
from schemas.rooms import HealthResponse

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


class WebSocketConnection:
    """Adapts a WebSocket to the gateway's non-blocking ``send``.

    Messages are queued and written by a single writer task, so each socket
    receives them in exactly the order the gateway produced them. A peer that
    stops reading until the queue fills is cut off rather than buffered
    without bound.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None,
                 max_queued: int = OUTBOX_MAX_MESSAGES):
        self.websocket = websocket
        self.connection_id = connection_id or str(uuid.uuid4())
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=max_queued)
        self.writer: Optional[asyncio.Task] = None
        self.overflowed = False

    def send(self, message: dict):
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            if not self.overflowed:
                logger.warning(f"Outbox full for connection {self.connection_id}, closing it")
            self.overflowed = True
            if self.writer is not None:
                self.writer.cancel()
            raise

    async def pump(self):
        while True:
            message = await self.outbox.get()
            await self.websocket.send_text(json.dumps(message))


async def read_messages(websocket: WebSocket, connection: WebSocketConnection, gateway: SessionGateway):
    message_count = 0
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            logger.info(f"WebSocket disconnected for connection {connection.connection_id} (code {message.get('code')})")
            return
        message_count += 1
        logger.debug(f"Received message #{message_count} from connection {connection.connection_id}")
        if message.get("text") is not None:
            gateway.handle_text(connection.connection_id, message["text"])
        elif message.get("bytes") is not None:
            gateway.handle_bytes(connection.connection_id, message["bytes"])


async def log_connection_stats(app: FastAPI, interval: float):
    while True:
        await asyncio.sleep(interval)
        logger.info(
            f"[Stats] Active connections: {app.state.gateway.connection_count}, "
            f"rooms: {len(app.state.store)}, pending reaps: {len(app.state.store.reaper)}"
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    stats_task = asyncio.create_task(log_connection_stats(app, STATS_INTERVAL_SECONDS))
    logger.info("CodeSync server started")
    yield
    stats_task.cancel()
    try:
        await stats_task
    except asyncio.CancelledError:
        pass
    app.state.store.close()
    logger.info("CodeSync server stopped")


def create_app(store: Optional[RoomStore] = None, executors: Optional[ExecutorRegistry] = None) -> FastAPI:
    app = FastAPI(title="CodeSync", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.store = store if store is not None else RoomStore()
    app.state.gateway = SessionGateway(app.state.store)
    app.state.executors = executors if executors is not None else build_registry()

    app.include_router(rooms_router)
    app.include_router(execute_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        logger.debug("Health check requested")
        return HealthResponse(status="ok", timestamp=datetime.now(timezone.utc).isoformat())

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, display_name: Optional[str] = None):
        """Collaboration socket. Rooms are entered with a ``join`` message.

        Query parameters:
        - display_name: Optional display name shown to other members
        """
        gateway: SessionGateway = websocket.app.state.gateway
        await websocket.accept()
        connection = WebSocketConnection(websocket)
        gateway.connect(connection, display_name)

        reader = asyncio.create_task(read_messages(websocket, connection, gateway))
        writer = asyncio.create_task(connection.pump())
        connection.writer = writer
        reason = "closed"
        try:
            done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    if connection.overflowed:
                        reason = "outbox overflow"
                elif task.exception() is not None:
                    reason = "error"
                    logger.error(
                        f"WebSocket error for connection {connection.connection_id}: {task.exception()}",
                        exc_info=task.exception(),
                    )
        finally:
            for task in (reader, writer):
                task.cancel()
            gateway.disconnect(connection.connection_id, reason=reason)
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")

    logger.info("FastAPI application initialized")
    return app


app = create_app()

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class PendingReap:
    deadline: float
    handle: Optional[asyncio.TimerHandle] = None


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class GracePeriodReaper:
    """Deferred deletion of empty rooms.

    Pending deletions live in a table keyed by room id, so arming a room that
    already has a pending reap replaces it instead of stacking a second one,
    and cancellation is a plain lookup. Each entry records its deadline; when
    an event loop is running a timer fires it on time, otherwise it is
    collected by the next ``expire_due`` call.
    """

    def __init__(self, delay: float, on_expire: Callable[[str], None],
                 loop: Optional[asyncio.AbstractEventLoop] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.delay = delay
        self._on_expire = on_expire
        self._loop = loop
        self._clock = clock
        self._pending: Dict[str, PendingReap] = {}

    def arm(self, room_id: str):
        """Schedule ``room_id`` for expiry, superseding any earlier schedule."""
        superseded = self.cancel(room_id)
        pending = PendingReap(deadline=self._clock() + self.delay)
        loop = self._loop or _running_loop()
        if loop is not None:
            pending.handle = loop.call_later(self.delay, self._fire, room_id)
        self._pending[room_id] = pending
        logger.info(
            f"Reap armed for room {room_id} in {self.delay}s"
            + (" (replaced pending reap)" if superseded else "")
        )

    def cancel(self, room_id: str) -> bool:
        pending = self._pending.pop(room_id, None)
        if pending is None:
            return False
        if pending.handle is not None:
            pending.handle.cancel()
        logger.debug(f"Reap cancelled for room {room_id}")
        return True

    def cancel_all(self):
        count = len(self._pending)
        for pending in self._pending.values():
            if pending.handle is not None:
                pending.handle.cancel()
        self._pending.clear()
        if count:
            logger.info(f"Cancelled {count} pending reap(s)")

    def expire_due(self):
        now = self._clock()
        for room_id in [r for r, pending in self._pending.items() if pending.deadline <= now]:
            self._fire(room_id)

    def is_pending(self, room_id: str) -> bool:
        return room_id in self._pending

    def __len__(self):
        return len(self._pending)

    def _fire(self, room_id: str):
        pending = self._pending.pop(room_id, None)
        if pending is None:
            return
        if pending.handle is not None:
            pending.handle.cancel()
        try:
            self._on_expire(room_id)
        except Exception as e:
            logger.error(f"Error reaping room {room_id}: {e}", exc_info=True)

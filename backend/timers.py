import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ASK = "ask"
ANSWER = "answer"
GUESS = "guess"
GRACE = "grace"

# Purposes with a single room-wide slot; anything else is keyed per target.
ROOM_WIDE = (ASK, ANSWER, GRACE)

SlotKey = Tuple[str, Optional[str]]


class TimerHandle:
    """One scheduled delayed action. Cancel it when the guarded condition goes away."""

    def __init__(self, purpose: str, target: Optional[str], delay: float):
        self.purpose = purpose
        self.target = target
        self.expires_at = time.time() + delay
        self.task: Optional[asyncio.Task] = None
        self.cancelled = False

    def cancel(self):
        self.cancelled = True
        if self.task and not self.task.done() and self.task is not asyncio.current_task():
            self.task.cancel()

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.time())


class TimerEngine:
    """Per-room cancellable timers keyed by (purpose, target).

    Arming a slot replaces whatever was armed there. A firing timer takes the
    room lock, then proceeds only if its handle is still installed in its slot.
    """

    def __init__(self, lock: asyncio.Lock, room_code: str = ""):
        self._lock = lock
        self._room_code = room_code
        self._slots: Dict[SlotKey, TimerHandle] = {}

    @staticmethod
    def slot(purpose: str, target: Optional[str] = None) -> SlotKey:
        return (purpose, None if purpose in ROOM_WIDE else target)

    def arm(self, purpose: str, target: Optional[str], delay: float,
            callback: Callable[..., Awaitable[None]], *args) -> TimerHandle:
        key = self.slot(purpose, target)
        self._cancel_key(key)
        handle = TimerHandle(purpose, target, delay)
        self._slots[key] = handle
        handle.task = asyncio.create_task(self._fire(key, handle, delay, callback, args))
        return handle

    async def _fire(self, key: SlotKey, handle: TimerHandle, delay: float, callback, args):
        try:
            await asyncio.sleep(delay)
            async with self._lock:
                if handle.cancelled or self._slots.get(key) is not handle:
                    logger.debug("Stale %s timer for %s in room %s ignored",
                                 handle.purpose, handle.target, self._room_code)
                    return
                del self._slots[key]
                await callback(*args)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Timer %s for %s failed in room %s",
                             handle.purpose, handle.target, self._room_code)

    def _cancel_key(self, key: SlotKey) -> bool:
        handle = self._slots.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel(self, purpose: str, target: Optional[str] = None) -> bool:
        return self._cancel_key(self.slot(purpose, target))

    def cancel_purpose(self, purpose: str):
        for key in [k for k in self._slots if k[0] == purpose]:
            self._cancel_key(key)

    def cancel_turn(self):
        """Cancel the room-wide ask and answer timers."""
        self.cancel(ASK)
        self.cancel(ANSWER)

    def cancel_all(self):
        for key in list(self._slots):
            self._cancel_key(key)

    def get(self, purpose: str, target: Optional[str] = None) -> Optional[TimerHandle]:
        return self._slots.get(self.slot(purpose, target))

    def is_armed(self, purpose: str, target: Optional[str] = None) -> bool:
        return self.slot(purpose, target) in self._slots

    def armed(self, purpose: str) -> List[TimerHandle]:
        return [h for k, h in self._slots.items() if k[0] == purpose]

    def __len__(self) -> int:
        return len(self._slots)

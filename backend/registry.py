from typing import Dict, List, Optional
import logging
import random
import string

import config
from room import Room

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Process-wide rooms keyed by their user-chosen code."""

    def __init__(self):
        self.rooms: Dict[str, Room] = {}

    def create(self, code: str) -> Room:
        if code in self.rooms:
            raise KeyError(code)
        room = Room(code)
        self.rooms[code] = room
        logger.info("Room created: %s", code)
        return room

    def get(self, code: str) -> Optional[Room]:
        return self.rooms.get(code)

    def delete(self, code: str) -> Optional[Room]:
        room = self.rooms.pop(code, None)
        if room:
            room.closed = True
            room.timers.cancel_all()
            room.pending_thinker = None
            logger.info("Room deleted: %s", code)
        return room

    def generate_code(self) -> str:
        """Generate an unused room code, checking for collisions."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = ''.join(random.choices(string.ascii_uppercase + string.digits,
                                          k=config.GENERATED_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def directory(self) -> List[dict]:
        return [room.summary() for room in self.rooms.values()]

    def clear(self):
        for code in list(self.rooms):
            self.delete(code)

    def __contains__(self, code: str) -> bool:
        return code in self.rooms

    def __len__(self) -> int:
        return len(self.rooms)

"""Turn order among guessers: who asks next, and keeping the pointer stable
when players join or drop out mid-round."""
from typing import Callable, Optional, Sequence, TypeVar

from room import Room

T = TypeVar("T")


def next_eligible(items: Sequence[T], after: int,
                  eligible: Optional[Callable[[T], bool]] = None) -> Optional[int]:
    """Index of the first eligible element after position `after`, wrapping.

    `after` itself is considered last, so a single eligible element yields
    its own index. Returns None when nothing is eligible.
    """
    n = len(items)
    if n == 0:
        return None
    for step in range(1, n + 1):
        idx = (after + step) % n
        if eligible is None or eligible(items[idx]):
            return idx
    return None


def rebuild(room: Room):
    room.turn_order = [cid for cid in room.players if cid != room.thinker_id]
    room.turn_index = 0
    room.turn_handed_on = False


def advance(room: Room) -> Optional[str]:
    """Move the turn to the next guesser and return them (None if nobody is left)."""
    if room.turn_handed_on:
        # the asker left while their question was pending; the index already sits on the successor
        room.turn_handed_on = False
        return room.current_asker()
    idx = next_eligible(room.turn_order, room.turn_index)
    if idx is None:
        room.turn_index = 0
        return None
    room.turn_index = idx
    return room.turn_order[idx]


def append(room: Room, client_id: str) -> bool:
    if client_id == room.thinker_id or client_id in room.turn_order:
        return False
    room.turn_order.append(client_id)
    return True


def remove(room: Room, client_id: str) -> bool:
    """Drop a player from the rotation. Returns True if it was their turn."""
    if client_id not in room.turn_order:
        return False
    idx = room.turn_order.index(client_id)
    was_current = idx == room.turn_index
    room.turn_order.pop(idx)
    if idx < room.turn_index:
        room.turn_index -= 1
    if room.turn_index >= len(room.turn_order):
        room.turn_index = 0
    return was_current

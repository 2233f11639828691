"""Attempt bookkeeping for the guessing phase that follows the question budget."""
from typing import List, Optional

import config
import turns
from room import GUESSING, Room


def is_correct(secret_word: Optional[str], guess: str) -> bool:
    if not secret_word:
        return False
    return guess.strip().lower() == secret_word.strip().lower()


def open_phase(room: Room) -> List[str]:
    """Switch the room to "guessing" and grant attempts to every non-Thinker player."""
    room.status = GUESSING
    room.pending_question_id = None
    room.guess_attempts = {}
    for cid in room.players:
        if cid != room.thinker_id:
            room.guess_attempts[cid] = config.GUESS_ATTEMPTS
    return list(room.guess_attempts)


def grant(room: Room, client_id: str) -> int:
    if room.guess_attempts is None or client_id == room.thinker_id:
        return 0
    room.guess_attempts.setdefault(client_id, config.GUESS_ATTEMPTS)
    return room.guess_attempts[client_id]


def remaining(room: Room, client_id: str) -> int:
    if not room.guess_attempts:
        return 0
    return room.guess_attempts.get(client_id, 0)


def consume(room: Room, client_id: str) -> int:
    """Use up one attempt and return how many are left."""
    left = max(0, remaining(room, client_id) - 1)
    room.guess_attempts[client_id] = left
    return left


def drop(room: Room, client_id: str) -> bool:
    if room.guess_attempts is None:
        return False
    return room.guess_attempts.pop(client_id, None) is not None


def exhausted(room: Room) -> bool:
    """True when no eligible guesser has an attempt left."""
    if room.guess_attempts is None:
        return False
    ids = list(room.guess_attempts)
    return turns.next_eligible(ids, 0, lambda cid: room.guess_attempts[cid] > 0) is None

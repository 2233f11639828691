"""Reconnection window for a Thinker whose connection dropped."""
from typing import Optional

from room import Room, THINKER, new_player
from timers import GRACE, TimerHandle


class GraceTicket:
    """The vacated Thinker identity: display name plus the expiry timer."""

    def __init__(self, name: str, question_id: Optional[int] = None):
        self.name = name
        self.question_id = question_id  # unanswered question at the time of the drop
        self.expiry: Optional[TimerHandle] = None

    def matches(self, name: str) -> bool:
        return self.name.strip().lower() == (name or "").strip().lower()


def suspend_thinker(room: Room) -> GraceTicket:
    """Remove the Thinker's record and remember it on a ticket."""
    player = room.players.pop(room.thinker_id, None)
    name = player["name"] if player else ""
    pending = room.pending_question()
    ticket = GraceTicket(name, pending["id"] if pending else None)
    room.pending_thinker = ticket
    room.thinker_id = None
    return ticket


def can_reclaim(room: Room, name: str) -> bool:
    ticket = room.pending_thinker
    return ticket is not None and ticket.matches(name)


def reclaim(room: Room, client_id: str) -> GraceTicket:
    """Install `client_id` as Thinker under the ticket's name and close the window."""
    ticket = room.pending_thinker
    room.timers.cancel(GRACE)
    room.pending_thinker = None
    room.players[client_id] = new_player(ticket.name, THINKER)
    room.thinker_id = client_id
    return ticket


def discard(room: Room):
    room.timers.cancel(GRACE)
    room.pending_thinker = None

from typing import Dict, List, Optional
import asyncio

import config
from timers import TimerEngine

WAITING = "waiting"
PLAYING = "playing"
GUESSING = "guessing"

THINKER = "thinker"
GUESSER = "guesser"


def new_player(name: str, role: str = GUESSER) -> dict:
    return {"name": name, "role": role, "timeouts": 0}


class Room:
    def __init__(self, code: str, max_questions: int = config.QUESTION_BUDGET):
        self.code = code
        self.status = WAITING
        self.players: Dict[str, dict] = {}  # client_id -> {name, role, timeouts}, join order
        self.thinker_id: Optional[str] = None
        self.pending_thinker = None  # grace.GraceTicket while the Thinker slot is vacant
        self.secret_word: Optional[str] = None
        self.questions: List[dict] = []  # {id, by, text, answer}
        self.guesses: List[dict] = []  # guesses made during "playing"
        self.turn_order: List[str] = []  # guessers only, never the Thinker
        self.turn_index = 0
        self.turn_handed_on = False  # index already moved past an asker who left mid-question
        self.max_questions = max_questions
        self.asked = 0
        self.guess_attempts: Optional[Dict[str, int]] = None  # only while "guessing"
        self.pending_question_id: Optional[int] = None
        self.logs: List[str] = []
        self.chat: List[dict] = []
        self.lock = asyncio.Lock()
        self.timers = TimerEngine(self.lock, code)
        self.closed = False

    def player_name(self, client_id: Optional[str]) -> Optional[str]:
        player = self.players.get(client_id) if client_id else None
        return player["name"] if player else None

    def current_asker(self) -> Optional[str]:
        if not self.turn_order:
            return None
        if self.turn_index >= len(self.turn_order):
            self.turn_index = 0
        return self.turn_order[self.turn_index]

    def find_question(self, question_id) -> Optional[dict]:
        return next((q for q in self.questions if q["id"] == question_id), None)

    def pending_question(self) -> Optional[dict]:
        q = self.find_question(self.pending_question_id) if self.pending_question_id else None
        if q and q["answer"] is None:
            return q
        return None

    def is_paused(self) -> bool:
        return self.pending_thinker is not None

    def is_empty(self) -> bool:
        return not self.players and self.pending_thinker is None

    def name_in_use(self, name: str) -> bool:
        lowered = name.lower()
        return any(p["name"].lower() == lowered for p in self.players.values())

    def players_list(self) -> List[dict]:
        return [{"id": cid, "name": p["name"], "role": p["role"]} for cid, p in self.players.items()]

    def public_state(self) -> dict:
        return {
            "code": self.code,
            "status": self.status,
            "players": self.players_list(),
            "max_questions": self.max_questions,
        }

    def summary(self) -> dict:
        return {"code": self.code, "players": len(self.players), "status": self.status}

    def reset_round(self):
        """Clear round-scoped fields and return to "waiting"."""
        self.status = WAITING
        self.secret_word = None
        self.questions = []
        self.guesses = []
        self.asked = 0
        self.guess_attempts = None
        self.pending_question_id = None
        self.turn_handed_on = False

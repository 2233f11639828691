"""Round state machine for a single room.

Every public coroutine here expects the caller to hold ``room.lock``; timer
callbacks get it from the room's TimerEngine. Outbound traffic goes through
the bus (``send_to`` / ``broadcast`` / ``broadcast_all`` / ``join`` / ``leave``).
"""
import logging
from typing import Optional

import config
import grace
import guessing
import inactivity
import turns
from registry import RoomRegistry
from room import GUESSER, GUESSING, PLAYING, THINKER, WAITING, Room, new_player
from timers import ANSWER, ASK, GRACE, GUESS

logger = logging.getLogger(__name__)

PAUSED_MESSAGE = "Round paused: waiting for the Thinker to reconnect"
EXHAUSTED_MESSAGE = "No one guessed the word. Attempts exhausted."


class GameError(Exception):
    """A rejected action. Reported to the acting connection only; nothing was changed."""


class GameEngine:
    def __init__(self, bus, registry: RoomRegistry):
        self.bus = bus
        self.registry = registry

    # ------------------------------------------------------------------
    # Outbound helpers
    # ------------------------------------------------------------------

    async def _log(self, room: Room, message: str):
        room.logs.append(message)
        await self.bus.broadcast(room.code, {"type": "LOG_MESSAGE", "message": message})

    async def _send_state(self, room: Room):
        await self.bus.broadcast(room.code, {"type": "ROOM_STATE", **room.public_state()})

    async def send_directory(self):
        await self.bus.broadcast_all({"type": "ROOMS_UPDATE", "rooms": self.registry.directory()})

    async def _send_history(self, room: Room, client_id: str):
        await self.bus.send_to(client_id, {"type": "LOG_HISTORY", "messages": list(room.logs)})
        await self.bus.send_to(client_id, {"type": "CHAT_HISTORY", "messages": list(room.chat)})

    async def _send_counter(self, room: Room):
        await self.bus.broadcast(room.code, {
            "type": "COUNTER_UPDATE", "asked": room.asked, "max": room.max_questions,
        })

    def _round_result(self, room: Room, message: str, winner_id: Optional[str]) -> dict:
        return {
            "type": "ROUND_ENDED",
            "message": message,
            "secret_word": room.secret_word,
            "questions": list(room.questions),
            "guesses": list(room.guesses),
            "winner_id": winner_id,
        }

    async def _start_timer(self, room: Room, purpose: str, target: str, callback, *args):
        duration = config.TURN_TIMEOUT_SECONDS
        handle = room.timers.arm(purpose, target, duration, callback, room, *args)
        await self.bus.send_to(target, {"type": "TIMER_START", "duration": duration, "purpose": purpose})
        return handle

    # ------------------------------------------------------------------
    # Room lifecycle
    # ------------------------------------------------------------------

    async def create_room(self, client_id: str, code: str, name: str) -> Room:
        if len(self.registry) >= config.MAX_ROOMS:
            raise GameError("Too many active rooms. Please try again later.")
        code = code or self.registry.generate_code()
        if code in self.registry:
            raise GameError("Room code already exists")
        room = self.registry.create(code)
        async with room.lock:
            room.players[client_id] = new_player(name, THINKER)
            room.thinker_id = client_id
            self.bus.join(code, client_id)
            await self._log(room, f"{name} created the room and is the Thinker")
            await self._send_history(room, client_id)
            await self._send_state(room)
        await self.send_directory()
        return room

    async def join_room(self, room: Room, client_id: str, name: str):
        if client_id in room.players:
            raise GameError("Already in this room")
        if grace.can_reclaim(room, name):
            await self._reclaim_thinker(room, client_id)
            return
        if room.name_in_use(name):
            raise GameError("Name already in use in this room")

        room.players[client_id] = new_player(name, GUESSER)
        self.bus.join(room.code, client_id)
        await self._send_history(room, client_id)
        await self._log(room, f"{name} joined the room")
        await self._send_state(room)
        await self.send_directory()

        if room.status == PLAYING:
            was_idle = not room.turn_order
            turns.append(room, client_id)
            await self._log(room, f"{name} joined mid-round and will ask when their turn comes")
            if was_idle and room.pending_question() is None:
                room.turn_index = 0
                await self._pass_turn(room, advance=False)
        elif room.status == GUESSING:
            left = guessing.grant(room, client_id)
            await self._arm_guess_timer(room, client_id)
            await self._log(room, f"{name} joined during the guessing phase and has {left} attempts")
            await self._send_state(room)

    async def leave_room(self, room: Room, client_id: str):
        player = room.players.get(client_id)
        if player is None:
            raise GameError("Not in this room")
        if client_id != room.thinker_id:
            await self._remove_guesser(room, client_id, f"{player['name']} left the room")
            return

        self.bus.leave(room.code, client_id)
        if config.THINKER_LEAVE_USES_GRACE:
            await self._suspend_thinker(room, f"{player['name']} left the room")
            return
        room.players.pop(client_id)
        room.thinker_id = None
        await self._log(room, f"{player['name']} left the room")
        await self.close_room(room, "The Thinker left the room. Round over.")

    async def disconnect(self, room: Room, client_id: str):
        player = room.players.get(client_id)
        if player is None:
            return
        if client_id == room.thinker_id:
            self.bus.leave(room.code, client_id)
            await self._suspend_thinker(room, f"{player['name']} disconnected")
        else:
            await self._remove_guesser(room, client_id, f"{player['name']} disconnected")

    async def close_room(self, room: Room, message: str):
        """Reveal the word to whoever is left and destroy the room."""
        room.timers.cancel_all()
        await self.bus.broadcast(room.code, self._round_result(room, message, None))
        logger.info("Room %s closed: %s", room.code, message)
        await self._destroy(room)

    async def _destroy(self, room: Room):
        self.registry.delete(room.code)
        await self.bus.broadcast(room.code, {"type": "ROOM_CLOSED", "code": room.code})
        self.bus.forget_room(room.code)
        await self.send_directory()

    async def chat(self, room: Room, client_id: str, text: str):
        player = room.players.get(client_id)
        if player is None:
            raise GameError("Not in this room")
        msg = {"name": player["name"], "text": text}
        room.chat.append(msg)
        await self.bus.broadcast(room.code, {"type": "CHAT_MESSAGE", **msg})

    # ------------------------------------------------------------------
    # Round
    # ------------------------------------------------------------------

    async def start_round(self, room: Room, client_id: str, secret_word: str):
        if client_id != room.thinker_id:
            raise GameError("Only the Thinker can start the round")
        if room.status != WAITING:
            raise GameError("Round already in progress")
        word = (secret_word or "").strip()
        if not word:
            raise GameError("Secret word cannot be empty")

        room.reset_round()
        room.secret_word = word
        room.status = PLAYING
        turns.rebuild(room)
        inactivity.reset_all(room.players)

        await self.bus.broadcast(room.code, {
            "type": "ROUND_STARTED",
            "max_questions": room.max_questions,
            "players": room.players_list(),
        })
        await self.bus.send_to(room.thinker_id, {"type": "ROUND_SECRET", "secret_word": word})
        if room.turn_order:
            await self._pass_turn(room, advance=False)
        await self._log(room, "Round started!")
        logger.info("Round started in room %s with %d guessers", room.code, len(room.turn_order))
        await self.send_directory()
        await self._send_state(room)

    async def end_round(self, room: Room, message: str, winner_id: Optional[str]):
        room.timers.cancel_all()
        grace.discard(room)
        await self.bus.broadcast(room.code, self._round_result(room, message, winner_id))
        self._rotate_thinker(room)
        room.reset_round()
        logger.info("Round ended in room %s (winner: %s)", room.code, winner_id)
        if room.is_empty():
            await self._destroy(room)
            return
        await self._log(room, message)
        await self._send_state(room)
        await self.send_directory()

    def _rotate_thinker(self, room: Room):
        next_id = room.current_asker()
        if next_id is None:
            ids = list(room.players)
            if room.thinker_id in ids:
                outgoing = room.thinker_id
                idx = turns.next_eligible(ids, ids.index(outgoing), lambda cid: cid != outgoing)
                next_id = ids[idx] if idx is not None else outgoing
            elif ids:
                next_id = ids[0]
        for cid, player in room.players.items():
            player["role"] = THINKER if cid == next_id else GUESSER
        room.thinker_id = next_id
        turns.rebuild(room)

    # ------------------------------------------------------------------
    # Asking / answering
    # ------------------------------------------------------------------

    async def _arm_ask_timer(self, room: Room):
        room.timers.cancel(ANSWER)
        current = room.current_asker()
        if room.status != PLAYING or current is None or room.is_paused():
            room.timers.cancel(ASK)
            return
        await self._start_timer(room, ASK, current, self.ask_timeout, current)

    async def _pass_turn(self, room: Room, advance: bool = True):
        if advance:
            turns.advance(room)
        current = room.current_asker()
        if current is None:
            room.timers.cancel_turn()
            return
        if room.is_paused():
            return
        await self.bus.broadcast(room.code, {
            "type": "TURN_NOW", "player_id": current, "name": room.player_name(current),
        })
        await self._arm_ask_timer(room)

    async def ask_question(self, room: Room, client_id: str, text: str):
        if room.status != PLAYING:
            raise GameError("No questions can be asked right now")
        if room.is_paused():
            raise GameError(PAUSED_MESSAGE)
        if room.current_asker() != client_id:
            raise GameError("It's not your turn")
        if room.pending_question() is not None:
            raise GameError("Waiting for the Thinker to answer")
        if room.asked >= room.max_questions:
            raise GameError("Question limit reached")

        inactivity.record_action(room.players[client_id])
        room.timers.cancel(ASK)
        question = {"id": len(room.questions) + 1, "by": client_id, "text": text, "answer": None}
        room.questions.append(question)
        room.pending_question_id = question["id"]
        await self.bus.broadcast(room.code, {
            "type": "QUESTION_NEW", **question, "by_name": room.player_name(client_id),
        })
        await self._start_timer(room, ANSWER, room.thinker_id, self.answer_timeout,
                                room.thinker_id, question["id"])

    async def answer_question(self, room: Room, client_id: str, question_id: int, answer: str):
        if client_id != room.thinker_id:
            raise GameError("Only the Thinker can answer")
        question = room.find_question(question_id)
        if question is None:
            raise GameError("Question not found")
        if question["answer"] is not None:
            raise GameError("Question already answered")
        if room.status != PLAYING:
            raise GameError("The question phase is over")

        inactivity.record_action(room.players[client_id])
        room.timers.cancel(ANSWER)
        question["answer"] = answer
        room.pending_question_id = None
        await self.bus.broadcast(room.code, {"type": "QUESTION_UPDATE", **question})

        if answer.strip().lower() != config.DONT_KNOW_ANSWER.lower():
            room.asked += 1
            await self._send_counter(room)
        turns.advance(room)
        if room.asked >= room.max_questions:
            await self._open_guess_phase(room)
            return
        await self._pass_turn(room, advance=False)

    async def ask_timeout(self, room: Room, player_id: str):
        if room.closed or room.status != PLAYING or room.is_paused():
            return
        if room.current_asker() != player_id or room.pending_question() is not None:
            return
        player = room.players.get(player_id)
        if player is None:
            turns.remove(room, player_id)
            await self._pass_turn(room, advance=False)
            return

        if inactivity.record_timeout(player):
            await self._remove_guesser(room, player_id, self._expelled_message(player), expelled=True)
            return

        room.asked += 1
        await self._log(room, f"{player['name']} did not ask in time. Turn skipped.")
        await self._send_counter(room)
        turns.advance(room)
        if room.asked >= room.max_questions:
            await self._open_guess_phase(room)
            return
        await self._pass_turn(room, advance=False)

    async def answer_timeout(self, room: Room, thinker_id: str, question_id: int):
        if room.closed or room.status != PLAYING or room.thinker_id != thinker_id:
            return
        question = room.pending_question()
        if question is None or question["id"] != question_id:
            return

        question["answer"] = config.DONT_KNOW_ANSWER
        room.pending_question_id = None
        await self.bus.broadcast(room.code, {"type": "QUESTION_UPDATE", **question})
        await self._log(room, f'The Thinker did not answer in time. Answered "{config.DONT_KNOW_ANSWER}".')

        thinker = room.players[thinker_id]
        if inactivity.record_timeout(thinker):
            await self._expel_thinker(room)
            return
        await self._pass_turn(room)

    # ------------------------------------------------------------------
    # Guessing
    # ------------------------------------------------------------------

    async def _arm_guess_timer(self, room: Room, client_id: str):
        await self._start_timer(room, GUESS, client_id, self.guess_timeout, client_id)

    async def _open_guess_phase(self, room: Room):
        room.timers.cancel_turn()
        room.timers.cancel_purpose(GUESS)
        guessers = guessing.open_phase(room)
        for cid in guessers:
            await self._arm_guess_timer(room, cid)
        await self._log(room, f"Questions are over! Every player has {config.GUESS_ATTEMPTS} attempts "
                              f"to guess the word ({config.TURN_TIMEOUT_SECONDS:g}s each).")
        await self._send_state(room)
        if guessing.exhausted(room):
            await self.end_round(room, EXHAUSTED_MESSAGE, None)

    async def submit_guess(self, room: Room, client_id: str, text: str):
        if room.status not in (PLAYING, GUESSING):
            raise GameError("No round in progress")
        player = room.players.get(client_id)
        if player is None:
            raise GameError("Not in this room")
        if client_id == room.thinker_id:
            raise GameError("The Thinker cannot guess")
        correct = guessing.is_correct(room.secret_word, text)

        if room.status == GUESSING:
            if guessing.remaining(room, client_id) <= 0:
                raise GameError("No guess attempts left")
            inactivity.record_action(player)
            room.timers.cancel(GUESS, client_id)
            left = guessing.consume(room, client_id)
            await self._log(room, f'{player["name"]} guessed "{text}" '
                                  f'({"correct" if correct else "wrong"}). Attempts left: {left}')
            await self.bus.broadcast(room.code, {
                "type": "GUESS_NEW", "by": client_id, "name": player["name"],
                "text": text, "correct": correct, "remaining": left,
            })
            if correct:
                await self.end_round(room, f"{player['name']} guessed the word!", client_id)
                return
            if left > 0:
                await self._arm_guess_timer(room, client_id)
            if guessing.exhausted(room):
                await self.end_round(room, EXHAUSTED_MESSAGE, None)
            return

        if room.is_paused():
            raise GameError(PAUSED_MESSAGE)
        inactivity.record_action(player)
        room.guesses.append({"by": client_id, "text": text, "correct": correct})
        await self.bus.broadcast(room.code, {
            "type": "GUESS_NEW", "by": client_id, "name": player["name"], "text": text, "correct": correct,
        })
        if correct:
            await self.end_round(room, f"{player['name']} guessed the word!", client_id)
            return
        if not config.PREMATURE_GUESS_CONSUMES_BUDGET:
            return
        room.asked += 1
        await self._send_counter(room)
        waiting_answer = room.pending_question() is not None
        if not waiting_answer:
            # the guess used up the current asker's turn
            turns.advance(room)
        if room.asked >= room.max_questions:
            await self._open_guess_phase(room)
        elif not waiting_answer:
            await self._pass_turn(room, advance=False)

    async def guess_timeout(self, room: Room, client_id: str):
        if room.closed or room.status != GUESSING or guessing.remaining(room, client_id) <= 0:
            return
        player = room.players.get(client_id)
        if player is None:
            return

        left = guessing.consume(room, client_id)
        await self._log(room, f"{player['name']} did not guess in time and lost an attempt (left: {left})")
        await self.bus.broadcast(room.code, {"type": "GUESS_TIMEOUT", "player_id": client_id, "remaining": left})

        if inactivity.record_timeout(player):
            await self._remove_guesser(room, client_id, self._expelled_message(player), expelled=True)
            return
        if left > 0:
            await self._arm_guess_timer(room, client_id)
        if guessing.exhausted(room):
            await self.end_round(room, EXHAUSTED_MESSAGE, None)

    # ------------------------------------------------------------------
    # Removal, expulsion, grace period
    # ------------------------------------------------------------------

    @staticmethod
    def _expelled_message(player: dict) -> str:
        return f"{player['name']} was expelled for inactivity ({config.MAX_CONSECUTIVE_TIMEOUTS} timeouts)."

    async def _remove_guesser(self, room: Room, client_id: str, message: str, expelled: bool = False):
        room.players.pop(client_id, None)
        if expelled:
            await self.bus.send_to(client_id, {"type": "EXPELLED", "code": room.code})
            logger.info("Player %s expelled from room %s", client_id, room.code)
        self.bus.leave(room.code, client_id)
        await self._log(room, message)

        if await self._drop_from_round(room, client_id):
            return
        if room.is_empty():
            await self._destroy(room)
            return
        await self._send_state(room)
        await self.send_directory()

    async def _drop_from_round(self, room: Room, client_id: str) -> bool:
        """Take a departed guesser out of the rotation. Returns True if the round ended."""
        room.timers.cancel(GUESS, client_id)
        was_current = turns.remove(room, client_id)

        if room.status == PLAYING:
            if not room.turn_order:
                room.timers.cancel(ASK)
            elif was_current:
                if room.pending_question() is not None:
                    room.turn_handed_on = True
                else:
                    await self._pass_turn(room, advance=False)
        elif room.status == GUESSING:
            guessing.drop(room, client_id)
            if guessing.exhausted(room):
                await self.end_round(room, EXHAUSTED_MESSAGE, None)
                return True
        return False

    async def _expel_thinker(self, room: Room):
        thinker_id = room.thinker_id
        player = room.players.pop(thinker_id)
        await self.bus.send_to(thinker_id, {"type": "EXPELLED", "code": room.code})
        self.bus.leave(room.code, thinker_id)
        logger.info("Thinker %s expelled from room %s", thinker_id, room.code)
        await self._log(room, self._expelled_message(player))
        await self._send_state(room)
        await self.close_room(room, "The Thinker was expelled for inactivity. Round over.")

    async def _suspend_thinker(self, room: Room, message: str):
        room.timers.cancel_turn()
        ticket = grace.suspend_thinker(room)
        ticket.expiry = room.timers.arm(GRACE, None, config.THINKER_GRACE_SECONDS,
                                        self.grace_expired, room, ticket)
        logger.info("Thinker '%s' left room %s, holding the role for %ss",
                    ticket.name, room.code, config.THINKER_GRACE_SECONDS)
        await self._log(room, message)
        await self.bus.broadcast(room.code, {
            "type": "THINKER_DISCONNECTED", "name": ticket.name,
            "grace_seconds": config.THINKER_GRACE_SECONDS,
        })
        await self._send_state(room)
        await self.send_directory()

    async def _reclaim_thinker(self, room: Room, client_id: str):
        ticket = grace.reclaim(room, client_id)
        self.bus.join(room.code, client_id)
        logger.info("Thinker '%s' reclaimed room %s", ticket.name, room.code)

        await self._send_history(room, client_id)
        await self.bus.send_to(client_id, {
            "type": "RECONNECTED",
            "status": room.status,
            "secret_word": room.secret_word,
            "questions": list(room.questions),
            "asked": room.asked,
            "max_questions": room.max_questions,
        })
        await self._log(room, f"{ticket.name} reconnected and is the Thinker again")
        await self.bus.broadcast(room.code, {"type": "THINKER_RECONNECTED", "name": ticket.name})
        await self._send_state(room)
        await self.send_directory()

        if room.status != PLAYING:
            return
        pending = room.pending_question()
        if pending is not None and pending["id"] == ticket.question_id:
            await self._start_timer(room, ANSWER, client_id, self.answer_timeout, client_id, pending["id"])
        else:
            await self._pass_turn(room, advance=False)

    async def grace_expired(self, room: Room, ticket: grace.GraceTicket):
        if room.closed or room.pending_thinker is not ticket:
            return
        room.pending_thinker = None
        await self.close_room(
            room, f"The Thinker did not come back within {config.THINKER_GRACE_SECONDS:g} seconds. Round over.")

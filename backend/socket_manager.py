from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Dict, List, Set
import json
import time
import uuid
import logging

import config
from game import GameEngine, GameError
from registry import RoomRegistry
from schemas import (
    AnswerQuestionRequest,
    AskQuestionRequest,
    ChatMessageRequest,
    CreateRoomRequest,
    JoinRoomRequest,
    LeaveRoomRequest,
    StartRoundRequest,
    SubmitGuessRequest,
    first_error,
)

logger = logging.getLogger(__name__)

REQUEST_MODELS = {
    "CREATE_ROOM": CreateRoomRequest,
    "JOIN_ROOM": JoinRoomRequest,
    "LEAVE_ROOM": LeaveRoomRequest,
    "START_ROUND": StartRoundRequest,
    "ASK_QUESTION": AskQuestionRequest,
    "ANSWER_QUESTION": AnswerQuestionRequest,
    "SUBMIT_GUESS": SubmitGuessRequest,
    "CHAT_MESSAGE": ChatMessageRequest,
}


class SocketManager:
    """Connection bookkeeping and the message bus the game engine talks through."""

    def __init__(self):
        self.registry = RoomRegistry()
        self.engine = GameEngine(self, self.registry)
        self.connections: Dict[str, WebSocket] = {}
        self.members: Dict[str, Set[str]] = {}  # room code -> client ids
        self.client_rooms: Dict[str, str] = {}  # client id -> room code
        # WS rate limiting: client_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}
        self.allowed_origins: List[str] = []

    # --- bus primitives ---

    def join(self, room_code: str, client_id: str):
        self.members.setdefault(room_code, set()).add(client_id)
        self.client_rooms[client_id] = room_code

    def leave(self, room_code: str, client_id: str):
        self.members.get(room_code, set()).discard(client_id)
        if self.client_rooms.get(client_id) == room_code:
            del self.client_rooms[client_id]

    def forget_room(self, room_code: str):
        for client_id in self.members.pop(room_code, set()):
            if self.client_rooms.get(client_id) == room_code:
                del self.client_rooms[client_id]

    async def send_to(self, client_id: str, message: dict):
        ws = self.connections.get(client_id)
        if ws is None:
            return
        try:
            await ws.send_json(message)
        except Exception:
            logger.info("Dropping unreachable client %s", client_id)
            self.connections.pop(client_id, None)

    async def broadcast(self, room_code: str, message: dict):
        for client_id in list(self.members.get(room_code, ())):
            await self.send_to(client_id, message)

    async def broadcast_all(self, message: dict):
        for client_id in list(self.connections):
            await self.send_to(client_id, message)

    async def send_error(self, client_id: str, message: str):
        await self.send_to(client_id, {"type": "ERROR", "message": message})

    def reset(self):
        """Drop every room and membership; open sockets stay connected."""
        self.registry.clear()
        self.members.clear()
        self.client_rooms.clear()
        self.msg_timestamps.clear()

    # --- connection loop ---

    async def connect(self, websocket: WebSocket):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        client_id = uuid.uuid4().hex
        self.connections[client_id] = websocket
        logger.info("Client %s connected", client_id)

        try:
            await websocket.send_json({"type": "CONNECTED", "client_id": client_id})
            await websocket.send_json({"type": "ROOMS_UPDATE", "rooms": self.registry.directory()})
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    await websocket.send_json({"type": "ERROR", "message": "Message too large"})
                    continue

                # Per-client rate limiting
                now = time.time()
                timestamps = self.msg_timestamps.setdefault(client_id, [])
                timestamps[:] = [t for t in timestamps if now - t < 1.0]
                if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
                    await websocket.send_json({"type": "ERROR", "message": "Too many messages"})
                    continue
                timestamps.append(now)

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    await websocket.send_json({"type": "ERROR", "message": "Invalid message format"})
                    continue
                if not isinstance(message, dict):
                    await websocket.send_json({"type": "ERROR", "message": "Invalid message format"})
                    continue

                await self.handle_message(client_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", client_id)
        except Exception:
            logger.exception("WebSocket error for client %s", client_id)
        finally:
            self.connections.pop(client_id, None)
            self.msg_timestamps.pop(client_id, None)
            await self.handle_disconnect(client_id)

    async def handle_message(self, client_id: str, message: dict):
        msg_type = message.get("type")

        if msg_type == "LIST_ROOMS":
            await self.send_to(client_id, {"type": "ROOMS_UPDATE", "rooms": self.registry.directory()})
            return

        model = REQUEST_MODELS.get(msg_type)
        if model is None:
            await self.send_error(client_id, "Unknown message type")
            return
        try:
            payload = model.model_validate(message)
        except ValidationError as exc:
            await self.send_error(client_id, first_error(exc))
            return

        try:
            await self._dispatch(client_id, msg_type, payload)
        except GameError as exc:
            await self.send_error(client_id, str(exc))

    async def _dispatch(self, client_id: str, msg_type: str, payload):
        if msg_type == "CREATE_ROOM":
            if client_id in self.client_rooms:
                raise GameError("Already in a room. Leave it first.")
            await self.engine.create_room(client_id, payload.code, payload.name)
            return

        room = self.registry.get(payload.code)
        if room is None:
            raise GameError("Room not found")
        if msg_type == "JOIN_ROOM" and client_id in self.client_rooms:
            raise GameError("Already in a room. Leave it first.")

        async with room.lock:
            if room.closed:
                raise GameError("Room not found")

            if msg_type == "JOIN_ROOM":
                await self.engine.join_room(room, client_id, payload.name)

            elif msg_type == "LEAVE_ROOM":
                await self.engine.leave_room(room, client_id)

            elif msg_type == "START_ROUND":
                await self.engine.start_round(room, client_id, payload.secret_word)

            elif msg_type == "ASK_QUESTION":
                await self.engine.ask_question(room, client_id, payload.text)

            elif msg_type == "ANSWER_QUESTION":
                await self.engine.answer_question(room, client_id, payload.question_id, payload.answer)

            elif msg_type == "SUBMIT_GUESS":
                await self.engine.submit_guess(room, client_id, payload.text)

            elif msg_type == "CHAT_MESSAGE":
                await self.engine.chat(room, client_id, payload.text)

    async def handle_disconnect(self, client_id: str):
        room_code = self.client_rooms.get(client_id)
        if room_code is None:
            return
        room = self.registry.get(room_code)
        if room is None:
            self.leave(room_code, client_id)
            return
        async with room.lock:
            if not room.closed:
                await self.engine.disconnect(room, client_id)
        self.leave(room_code, client_id)


socket_manager = SocketManager()

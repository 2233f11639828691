"""
Async WebSocket integration tests using a real uvicorn server.

Covers what the sync TestClient can't comfortably drive:
- Ask timer expiry skipping a turn and moving to the next guesser
- Guess timers exhausting attempts and ending the round without a winner
- Thinker socket dropping and the same name reclaiming the role
- HTTP directory reflecting live rooms

Requires: pytest-asyncio, httpx, websockets
"""
import sys
import os
import json
import asyncio

import pytest
import pytest_asyncio
import httpx
import websockets

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import uvicorn
import config as game_config
from main import app
from socket_manager import socket_manager


# ---------------------------------------------------------------------------
# Fixtures & helpers
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def server_port():
    """Start a real uvicorn server on a random port, yield the port, shut down."""
    socket_manager.reset()
    saved_origins = socket_manager.allowed_origins
    socket_manager.allowed_origins = []

    config = uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning")
    server = uvicorn.Server(config)
    serve_task = asyncio.create_task(server.serve())

    # Wait for server to start
    while not server.started:
        await asyncio.sleep(0.01)

    # Extract the OS-assigned port
    port = server.servers[0].sockets[0].getsockname()[1]
    yield port

    # Teardown
    server.should_exit = True
    await serve_task
    socket_manager.reset()
    socket_manager.allowed_origins = saved_origins


async def send_json(ws, msg):
    """Send a JSON message over a websockets connection."""
    await ws.send(json.dumps(msg))


async def recv_until(ws, msg_type, timeout=10.0, max_messages=100):
    """Drain messages until we get the expected type, with timeout."""
    deadline = asyncio.get_event_loop().time() + timeout
    for _ in range(max_messages):
        remaining = deadline - asyncio.get_event_loop().time()
        if remaining <= 0:
            raise TimeoutError(f"Never received {msg_type} within {timeout}s")
        data = await asyncio.wait_for(ws.recv(), timeout=remaining)
        msg = json.loads(data)
        if msg.get("type") == msg_type:
            return msg
    raise TimeoutError(f"Never received {msg_type} after {max_messages} messages")


def ws_url(port):
    return f"ws://127.0.0.1:{port}/ws"


async def enter(ws, msg_type, name, code="ABCD"):
    """Greet, then create or join a room. Returns this connection's client id."""
    client_id = (await recv_until(ws, "CONNECTED"))["client_id"]
    await send_json(ws, {"type": msg_type, "code": code, "name": name})
    await recv_until(ws, "ROOM_STATE")
    return client_id


# ---------------------------------------------------------------------------
# Timers
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ask_timeout_moves_turn(server_port, monkeypatch):
    monkeypatch.setattr(game_config, "TURN_TIMEOUT_SECONDS", 0.5)
    async with websockets.connect(ws_url(server_port)) as ana, \
            websockets.connect(ws_url(server_port)) as bo, \
            websockets.connect(ws_url(server_port)) as cy:
        await enter(ana, "CREATE_ROOM", "Ana")
        bo_id = await enter(bo, "JOIN_ROOM", "Bo")
        cy_id = await enter(cy, "JOIN_ROOM", "Cy")

        await send_json(ana, {"type": "START_ROUND", "code": "ABCD", "secret_word": "gatto"})
        assert (await recv_until(cy, "TURN_NOW"))["player_id"] == bo_id

        # Bo stays silent; the turn passes to Cy
        counter = await recv_until(cy, "COUNTER_UPDATE", timeout=3)
        assert counter["asked"] == 1
        assert (await recv_until(cy, "TURN_NOW", timeout=3))["player_id"] == cy_id

        # Cy asks in time
        await send_json(cy, {"type": "ASK_QUESTION", "code": "ABCD", "text": "Does it purr?"})
        question = await recv_until(ana, "QUESTION_NEW")
        assert question["by"] == cy_id
        await send_json(ana, {"type": "ANSWER_QUESTION", "code": "ABCD",
                              "question_id": question["id"], "answer": "Sì"})
        assert (await recv_until(bo, "COUNTER_UPDATE"))["asked"] == 1
        assert (await recv_until(bo, "COUNTER_UPDATE"))["asked"] == 2
        assert (await recv_until(bo, "TURN_NOW"))["player_id"] == bo_id


@pytest.mark.asyncio
async def test_guess_timers_exhaust_attempts(server_port, monkeypatch):
    monkeypatch.setattr(game_config, "TURN_TIMEOUT_SECONDS", 0.4)
    async with websockets.connect(ws_url(server_port)) as ana, \
            websockets.connect(ws_url(server_port)) as bo:
        await enter(ana, "CREATE_ROOM", "Ana")
        await enter(bo, "JOIN_ROOM", "Bo")
        socket_manager.registry.get("ABCD").max_questions = 1

        await send_json(ana, {"type": "START_ROUND", "code": "ABCD", "secret_word": "gatto"})
        await recv_until(bo, "TURN_NOW")
        await send_json(bo, {"type": "ASK_QUESTION", "code": "ABCD", "text": "Is it an animal?"})
        question = await recv_until(ana, "QUESTION_NEW")
        await send_json(ana, {"type": "ANSWER_QUESTION", "code": "ABCD",
                              "question_id": question["id"], "answer": "Sì"})

        assert (await recv_until(bo, "TIMER_START"))["purpose"] == "ask"
        assert (await recv_until(bo, "TIMER_START"))["purpose"] == "guess"
        first = await recv_until(bo, "GUESS_TIMEOUT", timeout=3)
        assert first["remaining"] == game_config.GUESS_ATTEMPTS - 1

        ended = await recv_until(ana, "ROUND_ENDED", timeout=5)
        assert ended["winner_id"] is None
        assert ended["secret_word"] == "gatto"


# ---------------------------------------------------------------------------
# Thinker reconnection
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_thinker_socket_drop_and_reclaim(server_port):
    async with websockets.connect(ws_url(server_port)) as bo:
        ana = await websockets.connect(ws_url(server_port))
        await enter(ana, "CREATE_ROOM", "Ana")
        bo_id = await enter(bo, "JOIN_ROOM", "Bo")
        await send_json(ana, {"type": "START_ROUND", "code": "ABCD", "secret_word": "gatto"})
        await recv_until(bo, "TURN_NOW")
        await ana.close()

        notice = await recv_until(bo, "THINKER_DISCONNECTED")
        assert notice["name"] == "Ana"

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server_port}") as http:
            res = await http.get("/rooms/ABCD")
            assert res.status_code == 200
            assert [p["name"] for p in res.json()["players"]] == ["Bo"]

        async with websockets.connect(ws_url(server_port)) as ana2:
            await recv_until(ana2, "CONNECTED")
            await send_json(ana2, {"type": "JOIN_ROOM", "code": "ABCD", "name": "Ana"})
            restored = await recv_until(ana2, "RECONNECTED")
            assert restored["status"] == "playing"
            assert restored["secret_word"] == "gatto"
            assert (await recv_until(bo, "THINKER_RECONNECTED"))["name"] == "Ana"
            # nothing was pending, so the asker's turn resumes
            assert (await recv_until(bo, "TURN_NOW"))["player_id"] == bo_id


@pytest.mark.asyncio
async def test_directory_reflects_live_rooms(server_port):
    async with websockets.connect(ws_url(server_port)) as ana:
        await enter(ana, "CREATE_ROOM", "Ana", code="ROOM1")
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server_port}") as http:
            res = await http.get("/rooms")
            assert res.json() == {"rooms": [{"code": "ROOM1", "players": 1, "status": "waiting"}]}

        await send_json(ana, {"type": "LEAVE_ROOM", "code": "ROOM1"})
        update = await recv_until(ana, "ROOMS_UPDATE")
        while update["rooms"]:
            update = await recv_until(ana, "ROOMS_UPDATE")

        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server_port}") as http:
            res = await http.get("/rooms")
            assert res.json() == {"rooms": []}

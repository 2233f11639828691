from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from schemas import RoomDirectory, RoomState
from socket_manager import socket_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting word-guess backend")
    yield
    logger.info("Shutting down word-guess backend")
    socket_manager.reset()


app = FastAPI(title="Word Guess Game Backend", lifespan=lifespan)


@app.get("/rooms", response_model=RoomDirectory)
async def list_rooms():
    return {"rooms": socket_manager.registry.directory()}


@app.get("/rooms/{code}", response_model=RoomState)
async def get_room(code: str):
    room = socket_manager.registry.get(code.strip().upper())
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.public_state()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await socket_manager.connect(websocket)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    socket_manager.allowed_origins = origins
else:
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Word Guess Game API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)

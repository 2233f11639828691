"""Centralized configuration: every env var and game constant in one place."""
import os
import logging
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "1" if default else "0").strip().lower() in ("1", "true", "yes", "on")


# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = 10  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 4096  # bytes

# --- Storage Limits ---
MAX_ROOMS = 50
MAX_ROOM_CODE_LENGTH = 12
MAX_ROOM_CODE_ATTEMPTS = 10
GENERATED_CODE_LENGTH = 4

# --- Input limits ---
MAX_NICKNAME_LENGTH = 20
MAX_TEXT_LENGTH = 200
DEFAULT_NICKNAME = "Anon"

# --- Game ---
QUESTION_BUDGET = int(os.getenv("QUESTION_BUDGET", "20"))
TURN_TIMEOUT_SECONDS = float(os.getenv("TURN_TIMEOUT_SECONDS", "60"))  # ask / answer / guess
THINKER_GRACE_SECONDS = float(os.getenv("THINKER_GRACE_SECONDS", "30"))
GUESS_ATTEMPTS = 2
MAX_CONSECUTIVE_TIMEOUTS = 3
DONT_KNOW_ANSWER = os.getenv("DONT_KNOW_ANSWER", "Non so")

# A wrong guess during "playing" uses up one question from the budget and the current asker's turn.
PREMATURE_GUESS_CONSUMES_BUDGET = _env_flag("PREMATURE_GUESS_CONSUMES_BUDGET", True)
# An explicit LEAVE_ROOM by the Thinker behaves like a disconnect instead of ending the room.
THINKER_LEAVE_USES_GRACE = _env_flag("THINKER_LEAVE_USES_GRACE", False)

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )

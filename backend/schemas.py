"""Payload models for inbound WebSocket actions and HTTP responses."""
from typing import List
import re

from pydantic import BaseModel, Field, ValidationError, field_validator

import config


def sanitize_name(v) -> str:
    v = v if isinstance(v, str) else ""
    # Strip HTML tags and control characters
    v = re.sub(r'<[^>]+>', '', v)
    v = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', v).strip()
    if not v:
        return config.DEFAULT_NICKNAME
    if len(v) > config.MAX_NICKNAME_LENGTH:
        raise ValueError(f'Name must be 1-{config.MAX_NICKNAME_LENGTH} characters')
    return v


def sanitize_code(v: str) -> str:
    v = v.strip().upper()
    if not v:
        return v
    if len(v) > config.MAX_ROOM_CODE_LENGTH or not v.isalnum():
        raise ValueError(f'Room code must be 1-{config.MAX_ROOM_CODE_LENGTH} letters or digits')
    return v


def sanitize_text(v: str) -> str:
    v = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', v).strip()
    if not v or len(v) > config.MAX_TEXT_LENGTH:
        raise ValueError(f'Text must be 1-{config.MAX_TEXT_LENGTH} characters')
    return v


class CreateRoomRequest(BaseModel):
    code: str = ""
    name: str = Field(default="", validate_default=True)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        return sanitize_code(v)

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v) -> str:
        return sanitize_name(v)


class RoomAction(BaseModel):
    code: str

    @field_validator('code')
    @classmethod
    def validate_code(cls, v: str) -> str:
        v = sanitize_code(v)
        if not v:
            raise ValueError('Room code is required')
        return v


class JoinRoomRequest(RoomAction):
    name: str = Field(default="", validate_default=True)

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v) -> str:
        return sanitize_name(v)


class LeaveRoomRequest(RoomAction):
    pass


class StartRoundRequest(RoomAction):
    secret_word: str = ""


class AskQuestionRequest(RoomAction):
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        return sanitize_text(v)


class AnswerQuestionRequest(RoomAction):
    question_id: int
    answer: str

    @field_validator('answer')
    @classmethod
    def validate_answer(cls, v: str) -> str:
        return sanitize_text(v)


class SubmitGuessRequest(RoomAction):
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        return sanitize_text(v)


class ChatMessageRequest(RoomAction):
    text: str

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        return sanitize_text(v)


def first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    msg = err.get("msg", "Invalid message")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    field = ".".join(str(p) for p in err.get("loc", ()))
    if err.get("type") == "missing" and field:
        return f"Missing field: {field}"
    return msg


# --- HTTP responses ---

class RoomSummary(BaseModel):
    code: str
    players: int
    status: str


class RoomDirectory(BaseModel):
    rooms: List[RoomSummary]


class PlayerInfo(BaseModel):
    id: str
    name: str
    role: str


class RoomState(BaseModel):
    code: str
    status: str
    players: List[PlayerInfo]
    max_questions: int

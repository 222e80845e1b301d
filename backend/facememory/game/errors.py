"""Errors raised by the game core.

Every command either succeeds completely or raises one of these before
touching room state. The realtime gateway turns them into an ``error``
event for the sender; nothing else ever sees them.
"""

from __future__ import annotations


class GameError(Exception):
    code = "game_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"message": self.message, "error": self.code}


class ValidationError(GameError):
    """Malformed or missing command fields."""

    code = "validation_error"


class NotFoundError(GameError):
    code = "not_found"


class RoomNotFound(NotFoundError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Game room {code} not found")
        self.room_code = code


class UnauthorizedError(GameError):
    """Host-only command sent by someone else."""

    code = "unauthorized"


class ConflictError(GameError):
    code = "conflict"


class DuplicateRoomCode(ConflictError):
    def __init__(self, code: str) -> None:
        super().__init__(f"Room ID {code} already exists")
        self.room_code = code


class PreconditionError(GameError):
    """Command is well-formed but the room is not in a state to accept it."""

    code = "precondition_failed"

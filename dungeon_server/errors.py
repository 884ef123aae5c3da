from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    IDENTITY_ALREADY_BOUND = "IDENTITY_ALREADY_BOUND"
    JOIN_FAILED = "JOIN_FAILED"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    AUTH_TIMEOUT = "AUTH_TIMEOUT"
    AUTH_REJECTED = "AUTH_REJECTED"
    SIGNATURE_MALFORMED = "SIGNATURE_MALFORMED"
    QUORUM_INCOMPLETE = "QUORUM_INCOMPLETE"
    LEDGER_TIMEOUT = "LEDGER_TIMEOUT"
    LEDGER_REJECTED = "LEDGER_REJECTED"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    UNKNOWN_MESSAGE = "UNKNOWN_MESSAGE"


class DungeonServerError(Exception):
    """Base exception for every error surfaced to a client connection."""

    code: ErrorCode = ErrorCode.INVALID_PAYLOAD

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_message(self) -> dict[str, Any]:
        return {"type": "error", "code": self.code.value, "message": self.message}


class RoomNotFound(DungeonServerError):
    code = ErrorCode.ROOM_NOT_FOUND

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")


class IdentityAlreadyBound(DungeonServerError):
    code = ErrorCode.IDENTITY_ALREADY_BOUND

    def __init__(self, identity: str, room_id: str):
        self.identity = identity
        self.room_id = room_id
        super().__init__(f"{identity} is already bound to room {room_id}")


class JoinFailed(DungeonServerError):
    code = ErrorCode.JOIN_FAILED


class InvalidPayload(DungeonServerError):
    code = ErrorCode.INVALID_PAYLOAD


class UnknownMessage(DungeonServerError):
    code = ErrorCode.UNKNOWN_MESSAGE


class AuthTimeout(DungeonServerError):
    code = ErrorCode.AUTH_TIMEOUT

    def __init__(self, timeout: float):
        super().__init__(f"Authentication timed out after {timeout} seconds")


class AuthRejected(DungeonServerError):
    code = ErrorCode.AUTH_REJECTED


class SignatureMalformed(DungeonServerError):
    code = ErrorCode.SIGNATURE_MALFORMED


class QuorumIncomplete(DungeonServerError):
    code = ErrorCode.QUORUM_INCOMPLETE

    def __init__(self, room_id: str, missing: list[str]):
        self.room_id = room_id
        self.missing = missing
        super().__init__(
            f"Room {room_id} is missing signatures from {', '.join(missing)}"
        )


class LedgerTimeout(DungeonServerError):
    code = ErrorCode.LEDGER_TIMEOUT

    def __init__(self, method: str, timeout: float):
        self.method = method
        self.timeout = timeout
        super().__init__(f"Timeout waiting for {method} after {timeout} seconds")


class LedgerRejected(DungeonServerError):
    code = ErrorCode.LEDGER_REJECTED

    def __init__(self, method: str, message: str, error_code: Any = None):
        self.method = method
        self.error_code = error_code
        super().__init__(f"{method} failed: {message}")


class SessionNotFound(DungeonServerError):
    code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No session found for {key}")

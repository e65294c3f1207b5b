"""
Error taxonomy for client operations.

Every error raised out of a coordinator carries an ErrorCode so the
dispatcher can report it to the requesting identity only.
"""

from hyperchess.enums import ErrorCode


class SessionError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_FAULT

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.code.value

    def to_dict(self) -> dict:
        return {"type": "error", "code": self.code.value, "message": self.message}


class NotFound(SessionError):
    code = ErrorCode.NOT_FOUND


class Forbidden(SessionError):
    code = ErrorCode.FORBIDDEN


class CapacityExceeded(SessionError):
    code = ErrorCode.CAPACITY_EXCEEDED


class SpectatorCapacityExceeded(CapacityExceeded):
    pass


class InvalidOperation(SessionError):
    code = ErrorCode.INVALID_OPERATION


class InternalFault(SessionError):
    code = ErrorCode.INTERNAL_FAULT

"""Engine error types

Every operation reports failures as an EngineError carrying one ErrorKind.
The HTTP boundary maps the kind to a status code.
"""

import logging
from enum import Enum
from typing import NoReturn, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Failure categories reported by the engine"""

    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    SERVER_TIMEOUT = "SERVER_TIMEOUT"
    GATEWAY_TIMEOUT = "GATEWAY_TIMEOUT"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL = "INTERNAL"


STATUS_CODES = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SERVER_TIMEOUT: 503,
    ErrorKind.GATEWAY_TIMEOUT: 504,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INTERNAL: 500,
}

# Repository latency failures; the boundary decides whether to retry
RETRYABLE_KINDS = frozenset({ErrorKind.SERVER_TIMEOUT, ErrorKind.GATEWAY_TIMEOUT})


class EngineError(Exception):
    """Typed failure raised by the authorization and CRUD engines"""

    def __init__(self, kind: ErrorKind, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.cause = cause

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "error": self.kind.value,
            "message": self.message,
        }


def raise_error(
    kind: ErrorKind,
    message: str,
    cause: Optional[BaseException] = None,
) -> NoReturn:
    """
    Raise a typed engine error.

    An EngineError passed as the cause is re-raised unchanged so that the
    first classification of a failure wins as it bubbles through nested
    operation boundaries.

    Args:
        kind: Error category
        message: Client-facing message
        cause: Underlying exception, if any

    Raises:
        EngineError: always
    """
    if isinstance(cause, EngineError):
        raise cause

    if cause is not None:
        logger.error("%s: %s (%s)", kind.value, message, cause)
    else:
        logger.error("%s: %s", kind.value, message)

    raise EngineError(kind, message, cause) from cause

"""
Error types raised by the signal engine.

Gate failures and short histories are NOT errors: they produce a
documented, explainable decision. Everything here aborts an evaluation
before a signal row is written (or reports that the write itself failed).
"""

from typing import Optional


class SignalEngineError(Exception):
    """Base class for all engine errors"""


class InputValidationError(SignalEngineError):
    """A required request field is missing or malformed"""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Invalid request field '{field}': {message}")


class UpstreamDataError(SignalEngineError):
    """Collaborator data is inconsistent (e.g. option chain without the target strike)"""

    def __init__(self, collaborator: str, field: str, message: str):
        self.collaborator = collaborator
        self.field = field
        self.message = message
        super().__init__(f"Upstream data error from {collaborator} [{field}]: {message}")


class PersistenceError(SignalEngineError):
    """The decision was computed but could not be durably recorded"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)

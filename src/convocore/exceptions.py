# src/convocore/exceptions.py
"""
Custom exceptions for the convocore library.

This module defines a hierarchy of exception classes so that callers can
tell apart bad references (unknown sessions or users), illegal lifecycle
requests, failures of the external reasoning service and memory
synchronization problems.
"""


class ConvoCoreError(Exception):
    """Base class for all convocore specific errors."""
    def __init__(self, message: str = "An unspecified error occurred in convocore."):
        super().__init__(message)


class ConfigError(ConvoCoreError):
    """Raised for errors related to configuration loading or validation."""
    def __init__(self, message: str = "Configuration error."):
        super().__init__(message)


class ValidationError(ConvoCoreError):
    """Raised when an operation references an unknown session, turn or user."""
    def __init__(self, message: str = "Validation error."):
        super().__init__(message)


class SessionNotFoundError(ValidationError):
    """
    Raised when a specified session ID is unknown to the engine.
    Inherits from ValidationError as it's an unknown-reference failure.
    """
    def __init__(self, session_id: str, message: str = "Session not found."):
        self.session_id = session_id
        super().__init__(f"{message} Session ID: '{session_id}'")


class UpstreamError(ConvoCoreError):
    """Raised when the external reasoning service fails or cannot be reached."""
    def __init__(self, target_id: str = "Unknown", message: str = "Upstream reasoning error."):
        self.target_id = target_id
        super().__init__(f"Error calling reasoning target '{target_id}': {message}")


class ConsistencyError(ConvoCoreError):
    """Raised when a request would violate session or ledger consistency."""
    def __init__(self, message: str = "Consistency error."):
        super().__init__(message)


class IllegalTransitionError(ConsistencyError):
    """Raised when a lifecycle transition is not part of the transition table."""
    def __init__(self, from_status: str = "None", to_status: str = "Unknown", message: str = "Illegal session transition."):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"{message} {from_status} -> {to_status}")


class SyncTimeoutError(ConvoCoreError, TimeoutError):
    """Raised when memory block writes do not finish before the sync deadline."""
    def __init__(self, timeout_seconds: float = 0.0, message: str = "Memory synchronization timed out."):
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{message} Deadline: {timeout_seconds:.1f}s")


class RotationError(ConvoCoreError):
    """Raised when a memory block cannot be reduced below its size limit."""
    def __init__(self, block: str = "Unknown", limit: int = 0, actual: int = 0, message: str = "Memory block rotation failed."):
        self.block = block
        self.limit = limit
        self.actual = actual
        super().__init__(f"{message} Block: '{block}', Limit: {limit} chars, Actual: {actual} chars.")

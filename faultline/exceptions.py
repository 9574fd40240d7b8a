"""
Typed exceptions for faultline.

Provides structured error handling with:
- FaultlineError: Base exception for all faultline errors
- FaultlineConfigError: Invalid harness or client parameters
- FaultlineSetupError: Harness could not be brought up (fatal)
- FaultlineTimeoutError: A harness wait did not complete in time
- AckTimeoutError: The delay scheduler never confirmed a change
- MetadataError: The operation under test failed

All exceptions include structured attributes for programmatic handling.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class FaultlineError(Exception):
    """Base exception for all faultline errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or reports."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class FaultlineConfigError(FaultlineError):
    """Configuration or validation error.

    Raised when:
    - A negative delay or offset is requested
    - An unknown link property is set
    - Settings from the environment cannot be parsed

    Examples:
        FaultlineConfigError("Unknown link property", details={"name": "jitter"})
    """

    pass


class FaultlineSetupError(FaultlineError):
    """The harness could not be brought up.

    There is no recovery path: the run is aborted.
    """

    pass


class FaultlineTimeoutError(FaultlineError):
    """A harness-level wait ran past its bound.

    Attributes:
        waited_ms: How long the caller waited before giving up
    """

    def __init__(
        self,
        message: str,
        *,
        waited_ms: Optional[float] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if waited_ms is not None:
            details["waited_ms"] = round(waited_ms, 1)

        self.waited_ms = waited_ms

        super().__init__(message, code=code, details=details)


class AckTimeoutError(FaultlineTimeoutError):
    """An immediate delay change was never acknowledged.

    Usually means the scheduler thread is not running, has died, or no
    connection has been admitted yet.
    """

    pass


class MetadataError(FaultlineError):
    """The operation under test returned an error.

    Attributes:
        error_code: ErrorCode value of the last failure
        reason: Human-readable reason of the last failure
        fatal: True if the classifier declared the error unrecoverable
        attempts: Attempts made before giving up
    """

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        reason: Optional[str] = None,
        fatal: bool = False,
        attempts: int = 0,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if error_code:
            details["error_code"] = error_code
        if reason:
            details["reason"] = reason
        details["fatal"] = fatal
        details["attempts"] = attempts

        self.error_code = error_code
        self.reason = reason
        self.fatal = fatal
        self.attempts = attempts

        super().__init__(message, code=code, details=details)


__all__ = [
    "FaultlineError",
    "FaultlineConfigError",
    "FaultlineSetupError",
    "FaultlineTimeoutError",
    "AckTimeoutError",
    "MetadataError",
]

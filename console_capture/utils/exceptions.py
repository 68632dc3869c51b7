"""
console_capture/utils/exceptions.py

Custom exceptions for console-capture.

Contains:
- ConsoleCaptureError: Base exception
- TransportFailureError: Target listing or attach failed
- NoSuitableTargetsError: Target filter matched nothing
- NormalizationError: Malformed protocol payload
- RotationError: Log rotation failed
"""


class ConsoleCaptureError(Exception):
    """
    Base exception for all console-capture errors.
    """


class TransportFailureError(ConsoleCaptureError):
    """
    Raised when the target list cannot be fetched or no target could be attached.
    """


class NoSuitableTargetsError(ConsoleCaptureError):
    """
    Raised when the target filter leaves nothing to attach to.
    """


class NormalizationError(ConsoleCaptureError):
    """
    Raised when a raw protocol payload cannot be coerced into a known event shape.
    """


class RotationError(ConsoleCaptureError):
    """
    Raised when the active log file cannot be rotated.
    """

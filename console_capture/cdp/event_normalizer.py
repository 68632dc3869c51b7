"""
console_capture/cdp/event_normalizer.py

Conversion of raw Runtime domain payloads into CapturedEvent records.
"""

import time
from typing import Any

from pydantic import ValidationError

from console_capture.data_models.cdp import (
    CapturedEvent,
    ConsoleCall,
    ConsoleCallMessage,
    EventKind,
    ExceptionThrown,
    ExceptionThrownMessage,
    SessionMessage,
    TabInfo,
    Target,
)
from console_capture.utils.exceptions import NormalizationError
from console_capture.utils.serialization import safe_serialize, serialize_remote_object

CONSOLE_API_CALLED = "Runtime.consoleAPICalled"
EXCEPTION_THROWN = "Runtime.exceptionThrown"

UNKNOWN_URL = "unknown"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _tab_info(source_target: Target | None) -> TabInfo | None:
    if source_target is None:
        return None
    return TabInfo(id=source_target.id, title=source_target.title)


def _fallback_url(source_target: Target | None) -> str:
    if source_target is not None and source_target.url:
        return source_target.url
    return UNKNOWN_URL


def _first_frame_url(stack_trace: dict[str, Any] | None) -> str | None:
    if not stack_trace:
        return None
    call_frames = stack_trace.get("callFrames")
    if not isinstance(call_frames, list) or not call_frames or not isinstance(call_frames[0], dict):
        return None
    url = call_frames[0].get("url")
    return url if isinstance(url, str) and url else None


def parse_session_message(method: str, params: Any, target: Target) -> ConsoleCallMessage | ExceptionThrownMessage:
    """
    Coerce the params of a Runtime event into its typed payload.
    Args:
        method: CDP event name.
        params: Raw event params.
        target: Target the event was received from.
    Returns:
        The typed session message.
    Raises:
        NormalizationError: If the method is not a Runtime diagnostics event or the params are malformed.
    """
    if not isinstance(params, dict):
        raise NormalizationError(f"{method} params must be an object, got {type(params).__name__}")
    try:
        if method == CONSOLE_API_CALLED:
            return ConsoleCallMessage(target=target, payload=ConsoleCall.model_validate(params))
        if method == EXCEPTION_THROWN:
            return ExceptionThrownMessage(target=target, payload=ExceptionThrown.model_validate(params))
    except ValidationError as e:
        raise NormalizationError(f"Malformed {method} payload: {e}") from e
    raise NormalizationError(f"Unsupported event: {method}")


def from_console_call(payload: ConsoleCall, source_target: Target | None) -> CapturedEvent:
    """
    Build the captured record of a console call.
    The URL is taken from the top stack frame, else from the tab, else "unknown".
    """
    return CapturedEvent(
        ts=_now_ms(),
        event=EventKind.CONSOLE,
        type=payload.type,
        url=_first_frame_url(payload.stack_trace) or _fallback_url(source_target),
        args=[serialize_remote_object(arg) if isinstance(arg, dict) else safe_serialize(arg) for arg in payload.args],
        stack_trace=payload.stack_trace,
        tab=_tab_info(source_target),
    )


def from_exception(payload: ExceptionThrown, source_target: Target | None) -> CapturedEvent:
    """
    Build the captured record of an uncaught exception.
    The URL is taken from the exception details, else from the tab, else "unknown".
    """
    details = payload.exception_details
    url = details.get("url")
    stack_trace = details.get("stackTrace")
    return CapturedEvent(
        ts=_now_ms(),
        event=EventKind.EXCEPTION,
        type="exception",
        url=url if isinstance(url, str) and url else _fallback_url(source_target),
        stack_trace=stack_trace if isinstance(stack_trace, dict) else None,
        exception_details=details,
        tab=_tab_info(source_target),
    )


def normalize_message(message: SessionMessage) -> CapturedEvent:
    """
    Dispatch a typed session message to its normalizer.
    Raises:
        NormalizationError: If the message does not carry an event.
    """
    if isinstance(message, ConsoleCallMessage):
        return from_console_call(message.payload, message.target)
    if isinstance(message, ExceptionThrownMessage):
        return from_exception(message.payload, message.target)
    raise NormalizationError(f"Not an event message: {type(message).__name__}")

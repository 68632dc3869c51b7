"""
tests/unit/cdp/test_event_normalizer.py

Tests for parsing and normalizing Runtime events.
"""

import time

import pytest
from conftest import make_target

from console_capture.cdp.event_normalizer import (
    CONSOLE_API_CALLED,
    EXCEPTION_THROWN,
    from_console_call,
    from_exception,
    normalize_message,
    parse_session_message,
)
from console_capture.data_models.cdp import (
    ConsoleCall,
    ConsoleCallMessage,
    EventKind,
    ExceptionThrown,
    ExceptionThrownMessage,
    SessionClosedMessage,
)
from console_capture.utils.exceptions import NormalizationError

TARGET = make_target("T1", url="http://tab.test/page", title="My Tab")

STACK = {
    "callFrames": [
        {"functionName": "f", "url": "http://tab.test/app.js", "lineNumber": 3, "columnNumber": 7},
        {"functionName": "g", "url": "http://tab.test/lib.js", "lineNumber": 9, "columnNumber": 1},
    ]
}


class TestParseSessionMessage:
    """
    Tests for boundary coercion.
    """

    def test_console_call(self) -> None:
        message = parse_session_message(
            CONSOLE_API_CALLED,
            {"type": "warning", "args": [{"type": "string", "value": "x"}], "executionContextId": 1},
            TARGET,
        )
        assert isinstance(message, ConsoleCallMessage)
        assert message.payload.type == "warning"
        assert message.target.id == "T1"

    def test_exception(self) -> None:
        message = parse_session_message(
            EXCEPTION_THROWN,
            {"timestamp": 1.0, "exceptionDetails": {"text": "Uncaught", "exceptionId": 1}},
            TARGET,
        )
        assert isinstance(message, ExceptionThrownMessage)
        assert message.payload.exception_details["text"] == "Uncaught"

    def test_params_not_a_dict(self) -> None:
        with pytest.raises(NormalizationError):
            parse_session_message(CONSOLE_API_CALLED, ["not", "a", "dict"], TARGET)

    def test_malformed_args(self) -> None:
        with pytest.raises(NormalizationError):
            parse_session_message(CONSOLE_API_CALLED, {"type": "log", "args": "oops"}, TARGET)

    def test_exception_without_details(self) -> None:
        with pytest.raises(NormalizationError):
            parse_session_message(EXCEPTION_THROWN, {"timestamp": 1.0}, TARGET)

    def test_unknown_method(self) -> None:
        with pytest.raises(NormalizationError):
            parse_session_message("Network.requestWillBeSent", {}, TARGET)


class TestFromConsoleCall:
    """
    Tests for console event normalization.
    """

    def test_fields(self) -> None:
        before = int(time.time() * 1000)
        payload = ConsoleCall.model_validate({
            "type": "error",
            "args": [
                {"type": "string", "value": "boom"},
                {"type": "number", "unserializableValue": "Infinity"},
                {"type": "object", "description": "Window"},
            ],
            "stackTrace": STACK,
        })
        event = from_console_call(payload, TARGET)
        after = int(time.time() * 1000)

        assert before <= event.ts <= after
        assert event.kind == EventKind.CONSOLE
        assert event.type == "error"
        assert event.url == "http://tab.test/app.js"
        assert event.args == ["boom", "Infinity", "Window"]
        assert event.stack_trace == STACK
        assert event.tab is not None
        assert event.tab.id == "T1"
        assert event.tab.title == "My Tab"

    def test_url_falls_back_to_target(self) -> None:
        payload = ConsoleCall.model_validate({"type": "log", "args": []})
        assert from_console_call(payload, TARGET).url == "http://tab.test/page"

    def test_url_falls_back_when_frame_url_empty(self) -> None:
        payload = ConsoleCall.model_validate({"type": "log", "stackTrace": {"callFrames": [{"url": ""}]}})
        assert from_console_call(payload, TARGET).url == "http://tab.test/page"

    def test_url_unknown(self) -> None:
        payload = ConsoleCall.model_validate({"type": "log"})
        event = from_console_call(payload, None)
        assert event.url == "unknown"
        assert event.tab is None

    def test_args_are_json_safe(self) -> None:
        """Console args always produce a list, even when empty."""
        payload = ConsoleCall.model_validate({"type": "log"})
        assert from_console_call(payload, TARGET).args == []

    def test_non_object_args_are_kept(self) -> None:
        """A raw value among the args does not discard the call."""
        message = parse_session_message(
            CONSOLE_API_CALLED,
            {"type": "log", "args": [{"type": "string", "value": "ok"}, 42, "raw", None]},
            TARGET,
        )
        assert normalize_message(message).args == ["ok", 42, "raw", None]

    def test_call_frames_not_a_list(self) -> None:
        payload = ConsoleCall.model_validate({"type": "log", "stackTrace": {"callFrames": {"url": "x"}}})
        assert from_console_call(payload, TARGET).url == "http://tab.test/page"

    def test_frame_url_not_a_string(self) -> None:
        payload = ConsoleCall.model_validate({"type": "log", "stackTrace": {"callFrames": [{"url": 7}]}})
        assert from_console_call(payload, None).url == "unknown"


class TestFromException:
    """
    Tests for exception event normalization.
    """

    def test_fields(self) -> None:
        details = {
            "exceptionId": 3,
            "text": "Uncaught",
            "url": "http://tab.test/broken.js",
            "stackTrace": STACK,
            "exception": {"type": "object", "className": "TypeError"},
        }
        event = from_exception(ExceptionThrown.model_validate({"exceptionDetails": details}), TARGET)

        assert event.kind == EventKind.EXCEPTION
        assert event.type == "exception"
        assert event.url == "http://tab.test/broken.js"
        assert event.stack_trace == STACK
        assert event.exception_details == details
        assert event.args is None
        assert event.tab is not None and event.tab.id == "T1"

    def test_url_falls_back_to_target(self) -> None:
        payload = ExceptionThrown.model_validate({"exceptionDetails": {"text": "x"}})
        assert from_exception(payload, TARGET).url == "http://tab.test/page"

    def test_url_unknown(self) -> None:
        payload = ExceptionThrown.model_validate({"exceptionDetails": {"text": "x"}})
        assert from_exception(payload, make_target("T2")).url == "unknown"

    def test_malformed_details_fields(self) -> None:
        payload = ExceptionThrown.model_validate({"exceptionDetails": {"url": 5, "stackTrace": "nope"}})
        event = from_exception(payload, TARGET)
        assert event.url == "http://tab.test/page"
        assert event.stack_trace is None


class TestNormalizeMessage:
    """
    Tests for message dispatch.
    """

    def test_dispatch(self) -> None:
        console_message = parse_session_message(CONSOLE_API_CALLED, {"type": "info"}, TARGET)
        exception_message = parse_session_message(EXCEPTION_THROWN, {"exceptionDetails": {}}, TARGET)
        assert normalize_message(console_message).kind == EventKind.CONSOLE
        assert normalize_message(exception_message).kind == EventKind.EXCEPTION

    def test_closed_message_is_not_an_event(self) -> None:
        with pytest.raises(NormalizationError):
            normalize_message(SessionClosedMessage(target_id="T1", connection=object()))

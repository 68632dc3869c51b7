"""
Console Capture - record browser console output and uncaught exceptions over CDP.

Usage:
    from console_capture import SessionManager, SessionManagerConfig, RotatingLogWriter, LogWriterConfig

    writer = RotatingLogWriter(config=LogWriterConfig(log_file="browser-console.ndjson"))
    manager = SessionManager(config=SessionManagerConfig(port=9222))
    manager.add_listener(writer.write_event)
    await manager.connect()
"""

__version__ = "1.0.0"

from .cdp.event_filter import EventFilter
from .cdp.rotating_log_writer import RotatingLogWriter
from .cdp.session_manager import SessionManager
from .data_models.cdp import (
    CapturedEvent,
    EventFilterConfig,
    EventKind,
    LogWriterConfig,
    SessionManagerConfig,
    SessionNotification,
    Target,
    TargetFilter,
)

__all__ = [
    "CapturedEvent",
    "EventFilter",
    "EventFilterConfig",
    "EventKind",
    "LogWriterConfig",
    "RotatingLogWriter",
    "SessionManager",
    "SessionManagerConfig",
    "SessionNotification",
    "Target",
    "TargetFilter",
]

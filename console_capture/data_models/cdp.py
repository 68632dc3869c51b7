"""
console_capture/data_models/cdp.py

Data models for targets, captured events and component configuration.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


## Enums

class EventKind(StrEnum):
    """Kind of a captured event, written as the `event` field of each NDJSON record."""
    CONSOLE = "console"
    EXCEPTION = "exception"


class SessionNotification(StrEnum):
    """Notifications a SessionManager emits to its listeners."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    TARGETS = "targets"
    EVENT = "event"


class ConnectionState(StrEnum):
    """Lifecycle state of a SessionManager."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


## Targets

class Target(BaseModel):
    """
    An attachable unit of the remote browser, as listed by the /json/list endpoint.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(
        ...,
        description="Opaque CDP target id",
        examples=["6B1F3C8A0D3E4F0C9A1B2C3D4E5F6A7B"],
    )
    type: str = Field(
        default="other",
        description="Target kind",
        examples=["page", "service_worker", "iframe", "worker"],
    )
    url: str = Field(
        default="",
        description="Current URL of the target",
    )
    title: str = Field(
        default="",
        description="Current title of the target",
    )
    web_socket_debugger_url: str | None = Field(
        default=None,
        alias="webSocketDebuggerUrl",
        description="Per-target DevTools WebSocket URL",
    )

    @property
    def is_page(self) -> bool:
        return self.type == "page"


class TargetFilter(BaseModel):
    """
    Criteria for choosing which page targets to attach to.
    Both criteria combine with logical AND.
    """
    model_config = ConfigDict(frozen=True)

    url_substring: str | None = Field(
        default=None,
        description="Literal substring the target URL must contain; None disables the check, '' matches everything",
    )
    tab_indices: list[int] = Field(
        default_factory=list,
        description="1-based positions in the page target list; empty means all positions",
    )


class TabInfo(BaseModel):
    """Identity of the tab an event came from."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""


## Boundary payloads

class ConsoleCall(BaseModel):
    """
    Params of a Runtime.consoleAPICalled event.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = Field(
        default="log",
        description="Console method name",
        examples=["log", "warning", "error", "info", "debug", "table"],
    )
    args: list[Any] = Field(
        default_factory=list,
        description="Runtime.RemoteObject arguments of the call; non-object entries are kept as raw values",
    )
    stack_trace: dict[str, Any] | None = Field(
        default=None,
        alias="stackTrace",
    )
    timestamp: float | None = Field(
        default=None,
        description="Browser-side timestamp of the call (ms)",
    )


class ExceptionThrown(BaseModel):
    """
    Params of a Runtime.exceptionThrown event.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    exception_details: dict[str, Any] = Field(
        ...,
        alias="exceptionDetails",
    )
    timestamp: float | None = Field(
        default=None,
        description="Browser-side timestamp of the exception (ms)",
    )


## Captured event

class CapturedEvent(BaseModel):
    """
    Canonical record of one console call or uncaught exception.
    Immutable once created; serialized as one NDJSON line.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ts: int = Field(
        ...,
        description="Capture time, epoch milliseconds",
    )
    event: EventKind = Field(
        ...,
        description="console or exception",
    )
    type: str = Field(
        ...,
        description="Console method name, or 'exception'",
    )
    url: str = Field(
        default="unknown",
        description="Best-effort source URL",
    )
    stack_trace: dict[str, Any] | None = Field(
        default=None,
        alias="stackTrace",
    )
    args: list[Any] | None = Field(
        default=None,
        description="JSON-safe console arguments (console events only)",
    )
    exception_details: dict[str, Any] | None = Field(
        default=None,
        alias="exceptionDetails",
    )
    tab: TabInfo | None = None

    @property
    def kind(self) -> EventKind:
        return self.event

    def to_ndjson_dict(self) -> dict[str, Any]:
        """
        Return the NDJSON record: required fields always, optional fields only when present.
        Nested payloads are kept verbatim.
        """
        record: dict[str, Any] = {
            "ts": self.ts,
            "event": self.event.value,
            "type": self.type,
            "url": self.url,
        }
        if self.stack_trace is not None:
            record["stackTrace"] = self.stack_trace
        if self.args is not None:
            record["args"] = self.args
        if self.exception_details is not None:
            record["exceptionDetails"] = self.exception_details
        if self.tab is not None:
            record["tab"] = self.tab.model_dump()
        return record


## Internal session messages

class ConsoleCallMessage(BaseModel):
    """A console call received from one attached target."""
    target: Target
    payload: ConsoleCall


class ExceptionThrownMessage(BaseModel):
    """An uncaught exception received from one attached target."""
    target: Target
    payload: ExceptionThrown


class SessionClosedMessage(BaseModel):
    """The transport of one attached target went away."""

    target_id: str
    connection: Any = Field(
        ...,
        description="The connection that closed; compared by identity against the registered one",
    )


SessionMessage = ConsoleCallMessage | ExceptionThrownMessage | SessionClosedMessage


## State

class RotationState(BaseModel):
    """Size bookkeeping of a RotatingLogWriter."""
    current_size_bytes: int = Field(default=0, ge=0)
    max_size_bytes: int | None = Field(
        default=None,
        description="Rotation threshold; None disables rotation",
    )
    retain_count: int = Field(default=5, ge=0)


class ReconnectState(BaseModel):
    """Reconnection bookkeeping of a SessionManager."""
    attempt: int = Field(default=0, ge=0)
    reconnecting: bool = False
    should_reconnect: bool = True


## Configuration

class SessionManagerConfig(BaseModel):
    """
    Immutable configuration of a SessionManager.
    """
    model_config = ConfigDict(frozen=True)

    host: str = "127.0.0.1"
    port: int = 9222
    url_substring: str | None = None
    tab_indices: list[int] = Field(default_factory=list)
    verbose: bool = False
    auto_reconnect: bool = Field(
        default=True,
        description="When False, connect() failures are raised instead of retried",
    )
    reconcile_interval: float = Field(
        default=2.0,
        gt=0,
        description="Seconds between target re-discovery passes while connected",
    )
    attach_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds allowed for listing targets, opening a connection and enabling Runtime",
    )
    reconnect_initial_delay_ms: float = Field(default=100, ge=0)
    reconnect_max_delay_ms: float = Field(default=5000, ge=0)

    @property
    def target_filter(self) -> TargetFilter:
        return TargetFilter(url_substring=self.url_substring, tab_indices=self.tab_indices)


class LogWriterConfig(BaseModel):
    """
    Configuration of a RotatingLogWriter.
    """
    log_file: str = Field(
        default="browser-console.ndjson",
        description="Path of the active NDJSON file",
    )
    max_size_bytes: int | None = Field(
        default=None,
        gt=0,
        description="Rotate once the active file reaches this size; None disables rotation",
    )
    retain_count: int = Field(
        default=5,
        ge=0,
        description="Number of rotated files kept on disk",
    )
    verbose: bool = False


class EventFilterConfig(BaseModel):
    """
    Which captured events reach the output.
    """
    include_console: bool = True
    include_exceptions: bool = True
    levels: list[str] = Field(
        default_factory=list,
        description="Console types to keep; empty keeps all",
        examples=[["error", "warning"]],
    )

"""
console_capture/cdp/session_manager.py

Multi-target CDP session manager: discovery, attach/detach, reconciliation and reconnection.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from console_capture.cdp.event_normalizer import (
    CONSOLE_API_CALLED,
    EXCEPTION_THROWN,
    normalize_message,
    parse_session_message,
)
from console_capture.cdp.target_resolver import page_targets, resolve_targets
from console_capture.cdp.transport import CDPConnection, CDPTransport
from console_capture.data_models.cdp import (
    ConnectionState,
    ReconnectState,
    SessionClosedMessage,
    SessionManagerConfig,
    SessionMessage,
    SessionNotification,
    Target,
)
from console_capture.utils.backoff import calculate_backoff
from console_capture.utils.exceptions import (
    ConsoleCaptureError,
    NoSuitableTargetsError,
    NormalizationError,
    TransportFailureError,
)
from console_capture.utils.logger import get_logger

logger = get_logger(name=__name__)

Listener = Callable[[SessionNotification, Any], Awaitable[None] | None]

# how long disconnect() waits for already-queued events to be emitted
_DRAIN_TIMEOUT = 1.0


class SessionManager:
    """
    Keeps one CDP session per matching page target and turns their Runtime
    events into CapturedEvent notifications.

    Every session posts its events and its close notice onto a single inbox
    queue; one dispatch task consumes it, so per-target order is preserved and
    the session map is only mutated on the event loop between awaits.

    Listeners are called as `listener(notification, payload)` with:
        - CONNECTED / DISCONNECTED: payload None
        - TARGETS: list[Target] of every page target, before filtering
        - EVENT: CapturedEvent
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(
        self,
        config: SessionManagerConfig,
        transport: CDPTransport | None = None,
    ) -> None:
        """
        Initialize SessionManager. No connection is made until connect().
        Args:
            config: Endpoint, target filter and timing.
            transport: Transport to use; defaults to CDPTransport(config.host, config.port).
        """
        self.config = config
        self.transport = transport or CDPTransport(
            host=config.host,
            port=config.port,
            timeout=config.attach_timeout,
        )

        self._sessions: dict[str, CDPConnection] = {}  # target id -> connection
        self._attaching: set[str] = set()  # target ids with an attach in flight
        self._listeners: list[Listener] = []

        self._state = ConnectionState.DISCONNECTED
        self._reconnect_state = ReconnectState(should_reconnect=config.auto_reconnect)
        self._shutdown = False

        self._inbox: asyncio.Queue[SessionMessage] = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._dispatch_task: asyncio.Task | None = None
        self._reconcile_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

        self._log_level = logging.INFO if config.verbose else logging.DEBUG


    # Properties ___________________________________________________________________________________________________________

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_state(self) -> ReconnectState:
        return self._reconnect_state.model_copy()

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)


    # Private methods ______________________________________________________________________________________________________

    async def _emit(self, notification: SessionNotification, payload: Any = None) -> None:
        """Call every listener; a failing listener is logged and skipped."""
        for listener in list(self._listeners):
            try:
                result = listener(notification, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("❌ Listener failed on %s notification: %s", notification, e, exc_info=True)

    def _ensure_dispatcher(self) -> None:
        if self._dispatch_task is None or self._dispatch_task.done():
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    async def _dispatch_loop(self) -> None:
        """Consume the inbox in arrival order."""
        while True:
            message = await self._inbox.get()
            try:
                if isinstance(message, SessionClosedMessage):
                    await self._handle_session_closed(message)
                else:
                    event = normalize_message(message)
                    await self._emit(SessionNotification.EVENT, event)
            except Exception as e:
                logger.error("❌ Failed to process %s: %s", type(message).__name__, e, exc_info=True)
            finally:
                self._inbox.task_done()

    def _on_runtime_event(self, target: Target, method: str, params: dict[str, Any]) -> None:
        """Transport callback: coerce the payload and queue it for dispatch."""
        try:
            message = parse_session_message(method, params, target)
        except NormalizationError as e:
            logger.warning("⚠️ Dropping malformed event from %s: %s", target.id, e)
            return
        self._inbox.put_nowait(message)

    def _on_connection_closed(self, target_id: str, connection: CDPConnection) -> None:
        """Transport callback: queue the close notice behind any events already received."""
        self._inbox.put_nowait(SessionClosedMessage(target_id=target_id, connection=connection))

    async def _handle_session_closed(self, message: SessionClosedMessage) -> None:
        # a stale notice from a connection that was already replaced or detached
        if self._sessions.get(message.target_id) is not message.connection:
            return
        del self._sessions[message.target_id]
        logger.log(self._log_level, "🔌 Lost session for target %s", message.target_id)
        if not self._sessions:
            await self._mark_disconnected()

    async def _mark_disconnected(self) -> None:
        """All sessions are gone: notify, and start reconnecting if still enabled."""
        # a connect attempt in progress handles its own failure
        if self._state != ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.DISCONNECTED
        self._stop_reconciliation()
        logger.log(self._log_level, "🔌 CDP connection lost")
        await self._emit(SessionNotification.DISCONNECTED)
        if self._reconnect_state.should_reconnect:
            self._start_reconnect_loop()

    async def _attach(self, target: Target) -> bool:
        """
        Attach to one target unless it is already tracked.
        Returns:
            True if a new session was registered.
        Raises:
            TransportFailureError: If the connection or Runtime.enable fails.
        """
        if target.id in self._sessions or target.id in self._attaching:
            return False

        self._attaching.add(target.id)
        try:
            connection = await self.transport.attach(target)
            try:
                connection.on(CONSOLE_API_CALLED, partial(self._on_runtime_event, target, CONSOLE_API_CALLED))
                connection.on(EXCEPTION_THROWN, partial(self._on_runtime_event, target, EXCEPTION_THROWN))
                connection.on_closed(partial(self._on_connection_closed, target.id, connection))
                await connection.enable_domain("Runtime", timeout=self.config.attach_timeout)
            except BaseException:
                await connection.close()
                raise

            if self._shutdown:
                await connection.close()
                return False

            self._sessions[target.id] = connection
            logger.log(self._log_level, "🎯 Attached to target %s (%s)", target.id, target.url)
            return True
        finally:
            self._attaching.discard(target.id)

    async def _attach_all(self, targets: list[Target]) -> None:
        """Attach to every target concurrently; failures are logged, never propagated."""
        results = await asyncio.gather(
            *(self._attach(target) for target in targets),
            return_exceptions=True,
        )
        for target, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("⚠️ Failed to attach to target %s (%s): %s", target.id, target.url, result)

    async def _detach(self, target_id: str) -> None:
        """Close a tracked session, then forget it."""
        connection = self._sessions.get(target_id)
        if connection is None:
            return
        try:
            await connection.close()
        except Exception as e:
            logger.debug("Ignoring error while closing session %s: %s", target_id, e)
        if self._sessions.get(target_id) is connection:
            del self._sessions[target_id]
        logger.log(self._log_level, "➖ Detached from target %s", target_id)

    async def _discover(self) -> list[Target]:
        """Fetch targets, announce the page targets and return the filtered selection."""
        all_targets = await self.transport.list_targets()
        await self._emit(SessionNotification.TARGETS, page_targets(all_targets))
        return resolve_targets(all_targets, self.config.target_filter)

    async def _connect_once(self) -> None:
        """
        One connection attempt.
        Raises:
            TransportFailureError: If listing fails or no target could be attached.
            NoSuitableTargetsError: If the filter matches nothing.
        """
        if self._state != ConnectionState.RECONNECTING:
            self._state = ConnectionState.CONNECTING
        logger.log(self._log_level, "🔧 Connecting to CDP at %s:%s...", self.config.host, self.config.port)

        try:
            selected = await self._discover()
            if not selected:
                raise NoSuitableTargetsError("No suitable target found")

            await self._attach_all(selected)
            if not self._sessions:
                raise TransportFailureError(f"Failed to attach to any of {len(selected)} target(s)")
        except BaseException:
            if not self._sessions:
                self._state = ConnectionState.DISCONNECTED
            raise

        if self._shutdown:
            return

        self._reconnect_state.attempt = 0
        self._state = ConnectionState.CONNECTED
        logger.log(self._log_level, "✅ Connected to %d target(s)", len(self._sessions))
        await self._emit(SessionNotification.CONNECTED)
        self._start_reconciliation()

    def _start_reconciliation(self) -> None:
        if self._reconcile_task is None or self._reconcile_task.done():
            self._reconcile_task = asyncio.create_task(self._reconcile_loop())

    def _stop_reconciliation(self) -> None:
        task = self._reconcile_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
        self._reconcile_task = None

    async def _reconcile_loop(self) -> None:
        while self._state == ConnectionState.CONNECTED and not self._shutdown:
            await asyncio.sleep(self.config.reconcile_interval)
            try:
                await self.reconcile()
            except Exception as e:
                logger.error("❌ Target reconciliation failed: %s", e, exc_info=True)

    def _start_reconnect_loop(self) -> None:
        if self._reconnect_state.reconnecting:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_with_backoff())

    async def _sleep_unless_stopped(self, delay_ms: int) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _reconnect_with_backoff(self) -> None:
        """Retry connecting with exponential backoff until connected or shut down. Single-flight."""
        if self._reconnect_state.reconnecting:
            return
        self._reconnect_state.reconnecting = True
        try:
            while self._reconnect_state.should_reconnect and self._state != ConnectionState.CONNECTED:
                delay = calculate_backoff(
                    self._reconnect_state.attempt,
                    initial_delay=self.config.reconnect_initial_delay_ms,
                    max_delay=self.config.reconnect_max_delay_ms,
                )
                logger.log(
                    self._log_level,
                    "🔁 Reconnecting in %dms (attempt %d)...",
                    delay,
                    self._reconnect_state.attempt + 1,
                )
                self._state = ConnectionState.RECONNECTING
                await self._sleep_unless_stopped(delay)
                if not self._reconnect_state.should_reconnect:
                    break

                try:
                    await self._connect_once()
                except ConsoleCaptureError as e:
                    logger.log(self._log_level, "⚠️ Reconnect attempt failed: %s", e)
                    self._reconnect_state.attempt += 1
        finally:
            self._reconnect_state.reconnecting = False
            if self._state == ConnectionState.RECONNECTING:
                self._state = ConnectionState.DISCONNECTED


    # Public methods _______________________________________________________________________________________________________

    def add_listener(self, listener: Listener) -> None:
        """Subscribe to notifications. Listeners may be sync or async."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def is_connected(self) -> bool:
        """True iff at least one session is attached."""
        return bool(self._sessions)

    async def connect(self) -> None:
        """
        Discover targets and attach to every match.
        When reconnection is enabled a failed attempt enters the backoff loop,
        which returns once connected or shut down.
        Raises:
            TransportFailureError, NoSuitableTargetsError: When reconnection is disabled.
            ConsoleCaptureError: If the manager was already shut down.
        """
        if self._shutdown:
            raise ConsoleCaptureError("SessionManager has been shut down")
        if self._state == ConnectionState.CONNECTED:
            logger.debug("Already connected, ignoring connect()")
            return

        self._ensure_dispatcher()
        try:
            await self._connect_once()
        except ConsoleCaptureError as e:
            logger.log(self._log_level, "❌ Failed to connect to CDP: %s", e)
            if self._shutdown:
                return
            if not self._reconnect_state.should_reconnect:
                raise
            await self._reconnect_with_backoff()

    async def reconcile(self) -> None:
        """
        Re-discover targets and bring the sessions in line with the filter:
        attach new matches and detach sessions whose target no longer matches.
        Unaffected sessions are left alone. No-op unless connected.
        """
        if self._state != ConnectionState.CONNECTED:
            return
        try:
            selected = await self._discover()
        except TransportFailureError as e:
            logger.warning("⚠️ Skipping reconciliation: %s", e)
            return
        if self._state != ConnectionState.CONNECTED:
            return

        selected_ids = {target.id for target in selected}
        new_targets = [target for target in selected if target.id not in self._sessions]
        if new_targets:
            await self._attach_all(new_targets)

        for target_id in [tid for tid in self._sessions if tid not in selected_ids]:
            await self._detach(target_id)

        if not self._sessions and self._state == ConnectionState.CONNECTED:
            await self._mark_disconnected()

    async def wait_until_idle(self) -> None:
        """Wait until every queued event has been emitted."""
        if self._dispatch_task is None or self._dispatch_task.done():
            return
        await self._inbox.join()

    async def disconnect(self) -> None:
        """
        Stop reconnecting, stop reconciliation and close every session.
        Idempotent; never raises.
        """
        self._shutdown = True
        self._reconnect_state.should_reconnect = False
        self._stop_event.set()
        self._stop_reconciliation()

        sessions = list(self._sessions.items())
        self._sessions.clear()
        for target_id, connection in sessions:
            try:
                await connection.close()
            except Exception as e:
                logger.debug("Ignoring error while closing session %s: %s", target_id, e)

        # the backoff sleep is already interrupted; give an in-flight attempt a moment to finish
        reconnect_task = self._reconnect_task
        if reconnect_task is not None and reconnect_task is not asyncio.current_task() and not reconnect_task.done():
            _, pending = await asyncio.wait({reconnect_task}, timeout=_DRAIN_TIMEOUT)
            for task in pending:
                task.cancel()
        self._reconnect_task = None

        dispatch_task = self._dispatch_task
        if dispatch_task is not None and dispatch_task is not asyncio.current_task() and not dispatch_task.done():
            try:
                await asyncio.wait_for(self._inbox.join(), timeout=_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.warning("⚠️ Dropping %d undelivered message(s)", self._inbox.qsize())
            dispatch_task.cancel()
            try:
                await dispatch_task
            except asyncio.CancelledError:
                pass
        self._dispatch_task = None

        if sessions:
            logger.log(self._log_level, "👋 Disconnected from %d target(s)", len(sessions))
        self._state = ConnectionState.DISCONNECTED

"""
console_capture/cdp/transport.py

Minimal CDP transport: target listing over HTTP and one WebSocket connection per target.
"""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import requests
from websockets.asyncio.client import connect, ClientConnection
from websockets.exceptions import ConnectionClosed

from console_capture.data_models.cdp import Target
from console_capture.utils.exceptions import TransportFailureError
from console_capture.utils.logger import get_logger

logger = get_logger(name=__name__)

EventHandler = Callable[[dict[str, Any]], None]
ClosedHandler = Callable[[], None]


class CDPConnection:
    """
    A WebSocket connection to a single target's DevTools endpoint.
    Handles CDP commands, event subscriptions and close notification.
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, ws_url: str, target_id: str | None = None) -> None:
        """
        Initialize CDPConnection.
        Args:
            ws_url: Per-target WebSocket URL (ws://host:port/devtools/page/<id>).
            target_id: Target id, used for log messages only.
        """
        self.ws_url = ws_url
        self.target_id = target_id
        self.ws: ClientConnection | None = None
        self.seq = 0  # sequence ID for CDP commands

        # response tracking for CDP commands
        self.pending_responses: dict[int, asyncio.Future] = {}  # command ID -> future

        # track enabled CDP domains to avoid duplicate enables
        self._enabled_domains: set[str] = set()

        self._event_handlers: dict[str, list[EventHandler]] = {}
        self._closed_handlers: list[ClosedHandler] = []
        self._receiver_task: asyncio.Task | None = None
        self._closing = False
        self._closed = False


    # Private methods ______________________________________________________________________________________________________

    def _handle_command_reply(self, msg: dict) -> None:
        """Resolve the future waiting on a command reply."""
        cmd_id = msg.get("id")
        future = self.pending_responses.pop(cmd_id, None)
        if future is None or future.done():
            logger.debug("📥 Command reply not handled: id=%s", cmd_id)
            return
        if "error" in msg:
            future.set_exception(TransportFailureError(f"CDP error: {msg['error']}"))
        else:
            future.set_result(msg.get("result"))

    def _handle_event(self, msg: dict) -> None:
        """Call every handler subscribed to the event's method."""
        method = msg.get("method")
        for handler in self._event_handlers.get(method, []):
            try:
                handler(msg.get("params", {}))
            except Exception as e:
                logger.error("❌ Handler for %s failed: %s", method, e, exc_info=True)

    def _fail_pending(self, reason: str) -> None:
        for future in self.pending_responses.values():
            if not future.done():
                future.set_exception(TransportFailureError(reason))
        self.pending_responses.clear()

    async def _receive_messages(self) -> None:
        """Receive and dispatch WebSocket messages until the connection ends."""
        try:
            async for message in self.ws:
                try:
                    msg = json.loads(message)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON frame from %s", self.target_id)
                    continue
                if "id" in msg:
                    self._handle_command_reply(msg)
                elif "method" in msg:
                    self._handle_event(msg)
        except ConnectionClosed as e:
            logger.debug("🔌 Connection to %s closed: %s", self.target_id, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("❌ Error in message receiver for %s: %s", self.target_id, e, exc_info=True)
        finally:
            self._fail_pending("Connection closed")

        if not self._closing:
            self._closed = True
            for handler in self._closed_handlers:
                try:
                    handler()
                except Exception as e:
                    logger.error("❌ Closed handler for %s failed: %s", self.target_id, e, exc_info=True)


    # Public methods _______________________________________________________________________________________________________

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, timeout: float = 5.0) -> None:
        """
        Open the WebSocket and start the message receiver.
        Raises:
            TransportFailureError: If the connection cannot be established.
        """
        try:
            self.ws = await connect(uri=self.ws_url, max_size=None, open_timeout=timeout)
        except Exception as e:
            raise TransportFailureError(f"Failed to connect to {self.ws_url}: {e}") from e
        self._receiver_task = asyncio.create_task(self._receive_messages())
        logger.debug("✅ WebSocket connected: %s", self.ws_url)

    def on(self, method: str, handler: EventHandler) -> None:
        """Subscribe a synchronous handler to a CDP event, e.g. "Runtime.consoleAPICalled"."""
        self._event_handlers.setdefault(method, []).append(handler)

    def on_closed(self, handler: ClosedHandler) -> None:
        """Register a handler called once when the transport drops (not on close())."""
        self._closed_handlers.append(handler)

    async def send(self, method: str, params: dict | None = None) -> int:
        """
        Send CDP command and return sequence ID.
        """
        if not self.ws or self._closed or self._closing:
            raise TransportFailureError("WebSocket not connected")

        self.seq += 1
        cmd_id = self.seq
        msg = {
            "id": cmd_id,
            "method": method,
            "params": params or {},
        }
        try:
            await self.ws.send(json.dumps(msg))
        except ConnectionClosed as e:
            raise TransportFailureError(f"Failed to send {method}: {e}") from e
        return cmd_id

    async def send_and_wait(
        self,
        method: str,
        params: dict | None = None,
        timeout: float = 10.0,
    ) -> dict | None:
        """
        Send CDP command and wait for its reply.
        Raises:
            TransportFailureError: On CDP error, closed connection or timeout.
        """
        # register before sending so a fast reply is not missed; send() takes the next seq
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        cmd_id = self.seq + 1
        self.pending_responses[cmd_id] = future
        try:
            await self.send(method, params)
            return await asyncio.wait_for(fut=future, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportFailureError(f"CDP command {method} timed out after {timeout} seconds") from e
        finally:
            self.pending_responses.pop(cmd_id, None)

    async def enable_domain(self, domain: str, timeout: float = 5.0) -> None:
        """
        Enable a CDP domain idempotently (skip if already enabled).
        Raises:
            TransportFailureError: If the enable command fails.
        """
        if domain in self._enabled_domains:
            logger.debug("⏭️ Domain %s already enabled, skipping", domain)
            return
        await self.send_and_wait(method=f"{domain}.enable", timeout=timeout)
        self._enabled_domains.add(domain)
        logger.debug("✅ Domain %s enabled on %s", domain, self.target_id)

    async def close(self) -> None:
        """Close the connection. Idempotent; closed handlers are not called."""
        if self._closing:
            return
        self._closing = True
        self._closed = True
        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as e:
                logger.debug("Ignoring error while closing %s: %s", self.target_id, e)
        if self._receiver_task is not None and not self._receiver_task.done():
            self._receiver_task.cancel()
            try:
                await self._receiver_task
            except asyncio.CancelledError:
                pass
        self._fail_pending("Connection closed")


class CDPTransport:
    """
    Access to a browser's remote debugging endpoint at host:port.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 9222, timeout: float = 5.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def _fetch_target_records(self) -> list[dict[str, Any]]:
        response = requests.get(f"{self.base_url}/json/list", timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    async def list_targets(self) -> list[Target]:
        """
        List every target of the browser.
        Raises:
            TransportFailureError: If the endpoint is unreachable or returns garbage.
        """
        try:
            records = await asyncio.to_thread(self._fetch_target_records)
            return [Target.model_validate(record) for record in records]
        except Exception as e:
            raise TransportFailureError(f"Failed to list targets at {self.base_url}: {e}") from e

    def websocket_url_for(self, target: Target) -> str:
        """Per-target WebSocket URL, built from host/port when the listing omits it."""
        return target.web_socket_debugger_url or f"ws://{self.host}:{self.port}/devtools/page/{target.id}"

    async def attach(self, target: Target) -> CDPConnection:
        """
        Open a connection to one target.
        Raises:
            TransportFailureError: If the connection cannot be opened.
        """
        connection = CDPConnection(ws_url=self.websocket_url_for(target), target_id=target.id)
        await connection.open(timeout=self.timeout)
        return connection

"""
tests/conftest.py

Configuration for pytest, plus an in-process fake of the CDP transport.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from console_capture.data_models.cdp import Target
from console_capture.utils.exceptions import TransportFailureError


class FakeConnection:
    """
    Stand-in for CDPConnection. Tests push events with emit() and simulate a
    dropped transport with drop().
    """

    def __init__(self, target: Target, fail_enable: bool = False, fail_close: bool = False) -> None:
        self.target = target
        self.fail_enable = fail_enable
        self.fail_close = fail_close
        self.handlers: dict[str, list[Callable[[dict], None]]] = {}
        self.closed_handlers: list[Callable[[], None]] = []
        self.enabled_domains: list[str] = []
        self.close_calls = 0
        self.closed = False

    def on(self, method: str, handler: Callable[[dict], None]) -> None:
        self.handlers.setdefault(method, []).append(handler)

    def on_closed(self, handler: Callable[[], None]) -> None:
        self.closed_handlers.append(handler)

    async def enable_domain(self, domain: str, timeout: float = 5.0) -> None:
        if self.fail_enable:
            raise TransportFailureError(f"{domain}.enable failed")
        self.enabled_domains.append(domain)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        if self.fail_close:
            raise RuntimeError("close failed")

    def emit(self, method: str, params: Any) -> None:
        for handler in self.handlers.get(method, []):
            handler(params)

    def drop(self) -> None:
        self.closed = True
        for handler in self.closed_handlers:
            handler()


class FakeTransport:
    """
    Stand-in for CDPTransport serving a mutable target list.
    """

    def __init__(self, targets: list[Target] | None = None) -> None:
        self.targets: list[Target] = list(targets or [])
        self.list_failures = 0  # number of upcoming list_targets() calls that fail
        self.fail_attach_ids: set[str] = set()
        self.fail_enable_ids: set[str] = set()
        self.fail_close_ids: set[str] = set()
        self.attach_gate: asyncio.Event | None = None  # if given, attach() waits on it before connecting
        self.connections: dict[str, FakeConnection] = {}  # latest connection per target id
        self.attach_calls: list[str] = []
        self.list_calls = 0

    async def list_targets(self) -> list[Target]:
        self.list_calls += 1
        await asyncio.sleep(0)
        if self.list_failures > 0:
            self.list_failures -= 1
            raise TransportFailureError("connection refused")
        return list(self.targets)

    async def attach(self, target: Target) -> FakeConnection:
        self.attach_calls.append(target.id)
        await asyncio.sleep(0)
        if self.attach_gate is not None:
            await self.attach_gate.wait()
        if target.id in self.fail_attach_ids:
            raise TransportFailureError(f"attach to {target.id} refused")
        connection = FakeConnection(
            target=target,
            fail_enable=target.id in self.fail_enable_ids,
            fail_close=target.id in self.fail_close_ids,
        )
        self.connections[target.id] = connection
        return connection


def make_target(target_id: str, url: str = "", title: str = "", target_type: str = "page") -> Target:
    return Target(id=target_id, type=target_type, url=url, title=title)


async def wait_for_condition(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until it holds; fail the test after timeout seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def two_page_targets() -> list[Target]:
    """
    Two page targets plus a service worker that must always be ignored.
    """
    return [
        make_target("1", url="http://a.test/", title="Tab A"),
        make_target("sw", url="http://a.test/sw.js", target_type="service_worker"),
        make_target("2", url="http://b.test/", title="Tab B"),
    ]


@pytest.fixture
def fake_transport(two_page_targets: list[Target]) -> FakeTransport:
    return FakeTransport(targets=two_page_targets)

"""
console_capture/scripts/capture_console.py

Capture browser console events and exceptions to NDJSON files via CDP.
"""

import asyncio
import sys
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from typing import Any

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from console_capture.cdp.event_filter import EventFilter
from console_capture.cdp.rotating_log_writer import RotatingLogWriter
from console_capture.cdp.session_manager import SessionManager
from console_capture.cdp.target_resolver import page_targets
from console_capture.cdp.transport import CDPTransport
from console_capture.config import Config
from console_capture.data_models.cdp import (
    CapturedEvent,
    EventFilterConfig,
    LogWriterConfig,
    SessionManagerConfig,
    SessionNotification,
)
from console_capture.utils.exceptions import ConsoleCaptureError
from console_capture.utils.logger import get_logger, set_log_level
from console_capture.utils.serialization import to_ndjson_line

logger = get_logger(__name__)

console = Console(stderr=True)


def parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "y")


def parse_tab_indices(value: str | None) -> list[int]:
    """Parse "1,2,4" into [1, 2, 4], dropping anything that is not a positive integer."""
    if not value:
        return []
    indices: list[int] = []
    for part in value.split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            indices.append(int(part))
    return indices


def parse_max_size_bytes(value: str) -> int | None:
    """Size threshold in bytes; zero or a negative value disables rotation."""
    try:
        size = int(value)
    except ValueError:
        raise ArgumentTypeError(f"invalid size: {value!r}")
    return size if size > 0 else None


def parse_rotate_keep(value: str) -> int:
    try:
        keep = int(value)
    except ValueError:
        raise ArgumentTypeError(f"invalid count: {value!r}")
    if keep < 0:
        raise ArgumentTypeError(f"must be zero or more, got {keep}")
    return keep


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(description="Capture browser console events and exceptions to NDJSON files via CDP.")
    parser.add_argument("--host", type=str, default=Config.CDP_HOST, help="CDP host address.")
    parser.add_argument("--port", type=int, default=Config.CDP_PORT, help="CDP port number.")
    parser.add_argument("--log-file", type=str, default=Config.CAPTURE_LOG_FILE, help="Path to log file.")
    parser.add_argument("--include-console", type=parse_bool, default=True, help="Include console events (true/false).")
    parser.add_argument("--include-exceptions", type=parse_bool, default=True, help="Include exception events (true/false).")
    parser.add_argument("--level", type=str, nargs="*", default=[], help="Console levels to capture (e.g. error warning).")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    parser.add_argument("--list-tabs", action="store_true", help="List all available browser tabs and exit.")
    parser.add_argument("--tabs", type=str, default=None, help="Monitor only specific tabs by index (comma-separated, e.g. 1,2,4).")
    parser.add_argument("--target-url-substring", type=str, default=None, help="Filter targets by URL substring.")
    parser.add_argument("--max-size-bytes", type=parse_max_size_bytes, default=None, help="Maximum log file size before rotation.")
    parser.add_argument("--rotate-keep", type=parse_rotate_keep, default=5, help="Number of rotated files to keep.")
    parser.add_argument("--stdout", action="store_true", help="Write NDJSON to stdout instead of a file.")
    return parser


async def list_tabs(host: str, port: int) -> int:
    """Print the numbered page targets. Returns the process exit code."""
    transport = CDPTransport(host=host, port=port)
    try:
        pages = page_targets(await transport.list_targets())
    except ConsoleCaptureError as e:
        console.print(f"[bold red]Failed to list tabs:[/bold red] {escape(str(e))}")
        return 1

    if not pages:
        console.print("No browser tabs found.")
        return 0

    table = Table(box=box.SIMPLE, show_header=True, padding=(0, 1))
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Title")
    table.add_column("URL", style="dim")
    table.add_column("ID", style="dim")
    for index, tab in enumerate(pages, start=1):
        table.add_row(str(index), escape(tab.title or "(no title)"), escape(tab.url), tab.id)

    console.print(f"Found {len(pages)} browser tab(s):")
    console.print(table)
    console.print("Use --tabs <numbers> to monitor specific tabs (e.g. --tabs 1,2,4)")
    return 0


def make_stdout_listener(event_filter: EventFilter):
    """Listener printing each captured event as one NDJSON line on stdout."""
    async def write_stdout(notification: SessionNotification, detail: Any) -> None:
        if notification != SessionNotification.EVENT or not isinstance(detail, CapturedEvent):
            return
        if not event_filter.should_include(detail):
            return
        sys.stdout.write(to_ndjson_line(detail.to_ndjson_dict()))
        sys.stdout.flush()

    return write_stdout


async def capture(args: Namespace) -> int:
    event_filter = EventFilter(EventFilterConfig(
        include_console=args.include_console,
        include_exceptions=args.include_exceptions,
        levels=args.level,
    ))
    manager = SessionManager(config=SessionManagerConfig(
        host=args.host,
        port=args.port,
        url_substring=args.target_url_substring,
        tab_indices=parse_tab_indices(args.tabs),
        verbose=args.verbose,
    ))

    writer: RotatingLogWriter | None = None
    if args.stdout:
        manager.add_listener(make_stdout_listener(event_filter))
    else:
        writer = RotatingLogWriter(
            config=LogWriterConfig(
                log_file=args.log_file,
                max_size_bytes=args.max_size_bytes,
                retain_count=args.rotate_keep,
                verbose=args.verbose,
            ),
            event_filter=event_filter,
        )
        manager.add_listener(writer.write_event)

    async def log_lifecycle(notification: SessionNotification, detail: Any) -> None:
        if notification == SessionNotification.CONNECTED:
            logger.info("✅ Connected to browser (%d tab(s))", len(manager.session_ids))
        elif notification == SessionNotification.DISCONNECTED:
            logger.info("🔌 Disconnected from browser")

    manager.add_listener(log_lifecycle)

    try:
        await manager.connect()
        # run until cancelled (Ctrl+C)
        await asyncio.Event().wait()
    except ConsoleCaptureError as e:
        logger.error("❌ Failed to start: %s", e)
        return 1
    finally:
        logger.info("Shutting down...")
        # disconnect() drains queued events, so the writer closes after it
        await manager.disconnect()
        if writer is not None:
            await writer.flush()
            await writer.close()
    return 0


def main() -> None:
    args = build_parser().parse_args()
    if args.verbose:
        set_log_level("DEBUG")

    if args.list_tabs:
        sys.exit(asyncio.run(list_tabs(args.host, args.port)))

    try:
        sys.exit(asyncio.run(capture(args)))
    except KeyboardInterrupt:
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()

"""
console_capture/cdp/rotating_log_writer.py

NDJSON event writer with size-based rotation.
"""

import logging
from pathlib import Path
from typing import Any, TextIO

from console_capture.cdp.event_filter import EventFilter
from console_capture.data_models.cdp import (
    CapturedEvent,
    LogWriterConfig,
    RotationState,
    SessionNotification,
)
from console_capture.utils.exceptions import RotationError
from console_capture.utils.logger import get_logger
from console_capture.utils.serialization import to_ndjson_line

logger = get_logger(name=__name__)


class RotatingLogWriter:
    """
    Appends captured events to one NDJSON file and rotates it by size.

    Rotated files are named `<log_file>.<N>`; `.1` is always the most recently
    closed file and higher numbers are older. At most `retain_count` of them are
    kept.

    Usage:
        writer = RotatingLogWriter(config=LogWriterConfig(
            log_file="./logs/browser-console.ndjson",
            max_size_bytes=10 * 1024 * 1024,
            retain_count=5,
        ))
        manager.add_listener(writer.write_event)
        ...
        await writer.flush()
        await writer.close()
    """

    # Magic methods ________________________________________________________________________________________________________

    def __init__(self, config: LogWriterConfig, event_filter: EventFilter | None = None) -> None:
        """
        Initialize RotatingLogWriter and open the log file.
        Args:
            config: File path, rotation threshold and retention.
            event_filter: Optional filter applied by write_event().
        Raises:
            OSError: If the log file cannot be opened.
        """
        self.config = config
        self.event_filter = event_filter
        self.path = Path(config.log_file)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.state = RotationState(
            max_size_bytes=config.max_size_bytes,
            retain_count=config.retain_count,
        )
        self._file: TextIO | None = None
        self._log_level = logging.INFO if config.verbose else logging.DEBUG

        self._open()
        logger.log(
            self._log_level,
            "📁 RotatingLogWriter opened %s (size=%d, max=%s, keep=%d)",
            self.path,
            self.state.current_size_bytes,
            self.state.max_size_bytes,
            self.state.retain_count,
        )


    # Private methods ______________________________________________________________________________________________________

    def _open(self) -> None:
        """Open the active file in append mode, picking up its current size."""
        self.state.current_size_bytes = self.path.stat().st_size if self.path.exists() else 0
        # newline="" keeps "\n" untranslated so byte counts match the file on disk
        self._file = open(self.path, mode="a", encoding="utf-8", newline="")

    def _rotated_path(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{index}")

    def _shift_rotated_files(self) -> None:
        """Move the closed active file to `.1`, shifting older files up and dropping the oldest."""
        retain_count = self.state.retain_count
        if retain_count == 0:
            self.path.unlink(missing_ok=True)
            return

        self._rotated_path(retain_count).unlink(missing_ok=True)
        for index in range(retain_count - 1, 0, -1):
            source = self._rotated_path(index)
            if source.exists():
                source.replace(self._rotated_path(index + 1))

        if self.path.exists():
            self.path.replace(self._rotated_path(1))

    def _rotate(self) -> None:
        """
        Close the active file, shift the rotated history and reopen a fresh file.
        The active file is reopened even when the shift fails.
        """
        logger.log(self._log_level, "🔄 Rotating log file %s", self.path)
        try:
            if self._file is not None:
                self._file.close()
                self._file = None
            try:
                self._shift_rotated_files()
            except OSError as e:
                raise RotationError(f"Failed to rotate {self.path}: {e}") from e
            self._open()
            logger.log(self._log_level, "✅ Log rotation complete")
        except Exception as e:
            logger.error("❌ Error during log rotation: %s", e)
            if self._file is None:
                try:
                    self._open()
                except OSError as reopen_error:
                    logger.error("❌ Failed to reopen log file %s: %s", self.path, reopen_error)

    def _check_rotation(self) -> None:
        max_size_bytes = self.state.max_size_bytes
        if max_size_bytes is not None and self.state.current_size_bytes >= max_size_bytes:
            self._rotate()


    # Public methods _______________________________________________________________________________________________________

    @property
    def is_closed(self) -> bool:
        return self._file is None

    def write(self, event: CapturedEvent | dict[str, Any]) -> None:
        """
        Append one event as a compact JSON line, then rotate if the threshold is reached.
        Errors are logged; the event that triggered one may be lost.
        """
        if self._file is None:
            logger.error("❌ Log file %s is not open", self.path)
            return

        record = event.to_ndjson_dict() if isinstance(event, CapturedEvent) else event
        try:
            line = to_ndjson_line(record)
        except (TypeError, ValueError) as e:
            logger.error("❌ Failed to encode event: %s", e)
            return

        try:
            self._file.write(line)
        except (OSError, UnicodeError) as e:
            logger.error("❌ Failed to write event to %s: %s", self.path, e)
            return

        self.state.current_size_bytes += len(line.encode("utf-8"))
        self._check_rotation()

    async def write_event(self, notification: SessionNotification, detail: Any) -> None:
        """
        Async listener adapter for SessionManager. Writes `event` notifications and ignores the rest.
        Args:
            notification: Notification kind.
            detail: The CapturedEvent for `event` notifications.
        """
        if notification != SessionNotification.EVENT:
            return
        if self.event_filter is not None and not self.event_filter.should_include(detail):
            return
        self.write(detail)

    async def flush(self) -> None:
        """Hand buffered output to the OS. No-op when closed."""
        if self._file is None:
            return
        try:
            self._file.flush()
        except OSError as e:
            logger.error("❌ Failed to flush %s: %s", self.path, e)

    async def close(self) -> None:
        """Flush and close the active file. Idempotent; never raises."""
        if self._file is None:
            return
        await self.flush()
        try:
            self._file.close()
        except OSError as e:
            logger.error("❌ Failed to close %s: %s", self.path, e)
        finally:
            self._file = None
        logger.log(self._log_level, "📁 Closed log file %s", self.path)

    def rotated_files(self) -> list[Path]:
        """Existing rotated files, newest first."""
        return [
            self._rotated_path(index)
            for index in range(1, self.state.retain_count + 1)
            if self._rotated_path(index).exists()
        ]

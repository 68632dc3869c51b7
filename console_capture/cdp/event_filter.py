"""
console_capture/cdp/event_filter.py

Include/exclude rules applied to captured events before they are written.
"""

from console_capture.data_models.cdp import CapturedEvent, EventFilterConfig, EventKind


class EventFilter:
    """
    Drops console or exception events on request, and console events whose type
    is not among the configured levels.
    """

    def __init__(self, config: EventFilterConfig | None = None) -> None:
        self.config = config or EventFilterConfig()
        self._levels = set(self.config.levels)

    def should_include(self, event: CapturedEvent) -> bool:
        if event.kind == EventKind.CONSOLE:
            if not self.config.include_console:
                return False
            if self._levels and event.type not in self._levels:
                return False
            return True
        if event.kind == EventKind.EXCEPTION:
            return self.config.include_exceptions
        return True

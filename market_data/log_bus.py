"""
Event/Log Bus for the network request monitor.

A logging.Handler that turns market_data log records into timestamped
strings and fans them out to subscribers. Any entry carrying the
"ERROR:" marker is an error signal for the display.
"""
import logging
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Set

logger = logging.getLogger(__name__)

ERROR_MARKER = "ERROR:"

LogCallback = Callable[[str], None]


class EventLogBus(logging.Handler):
    """
    Collects log entries and pushes each one to every subscriber.

    Keeps the most recent max_entries lines so a late subscriber (the
    Streamlit page on rerun) can render history.
    """

    def __init__(self, max_entries: int = 100, level: int = logging.INFO):
        super().__init__(level=level)
        self._entries: Deque[str] = deque(maxlen=max_entries)
        self._subscribers: Set[LogCallback] = set()

    def format_entry(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        message = record.getMessage()
        if record.levelno >= logging.ERROR:
            return f"[{timestamp}] {ERROR_MARKER} {message}"
        return f"[{timestamp}] {message}"

    def emit(self, record: logging.LogRecord) -> None:
        # Our own delivery failures must not feed back into the bus
        if record.name == __name__:
            return
        entry = self.format_entry(record)
        self._entries.append(entry)
        for callback in list(self._subscribers):
            try:
                callback(entry)
            except Exception as exc:
                logger.warning(f"Log subscriber failed: {exc}")

    def subscribe(self, callback: LogCallback) -> Callable[[], None]:
        """Register a callback; returns the matching unsubscribe function."""
        self._subscribers.add(callback)

        def unsubscribe() -> None:
            self._subscribers.discard(callback)

        return unsubscribe

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    @property
    def has_errors(self) -> bool:
        return any(ERROR_MARKER in entry for entry in self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def attach(self, logger_name: str = "market_data") -> "EventLogBus":
        """Attach to the market_data logger tree (idempotent)."""
        target = logging.getLogger(logger_name)
        if self not in target.handlers:
            target.addHandler(self)
        if target.level == logging.NOTSET or target.level > self.level:
            target.setLevel(self.level)
        return self

    def detach(self, logger_name: str = "market_data") -> None:
        logging.getLogger(logger_name).removeHandler(self)

"""Bounded in-memory log of user-visible bridge events."""

import itertools
import logging
import time
from collections import deque
from collections.abc import Callable

from erbridge.config import LOG_CAPACITY
from erbridge.protocol.messages import LogEntry
from erbridge.protocol.types import LogKind

logger = logging.getLogger(__name__)

# Python log level used when mirroring each entry kind
_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "cmd": logging.DEBUG,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

LogListener = Callable[[LogEntry], None]


class EventLog:
    """Ring buffer of LogEntry; the oldest entry is dropped when full."""

    def __init__(self, capacity: int = LOG_CAPACITY, mirror: bool = True):
        self.capacity = capacity
        self.mirror = mirror
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._listeners: list[LogListener] = []

    def add(self, message: str, kind: LogKind = "info") -> LogEntry:
        entry = LogEntry(
            id=next(self._ids), timestamp=time.time(), kind=kind, message=message
        )
        self._entries.append(entry)
        if self.mirror:
            logger.log(_LEVELS.get(kind, logging.INFO), message)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Log listener failed")
        return entry

    def info(self, message: str) -> LogEntry:
        return self.add(message, "info")

    def warn(self, message: str) -> LogEntry:
        return self.add(message, "warn")

    def error(self, message: str) -> LogEntry:
        return self.add(message, "error")

    def success(self, message: str) -> LogEntry:
        return self.add(message, "success")

    def cmd(self, message: str) -> LogEntry:
        return self.add(message, "cmd")

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Call ``listener`` for every new entry; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

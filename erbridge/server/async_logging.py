"""Queue-based logging so console and file I/O stay off the event loop."""

import logging
import queue
from collections.abc import Iterable
from logging.handlers import QueueHandler, QueueListener

# Loggers that emit from inside the loop: the bridge plus its socket libraries
DEFAULT_LOGGERS = ("erbridge", "websockets", "pymodbus")


class AsyncLogHandler:
    """Route several loggers through one queue drained by a listener thread.

    Call ``start()`` after ``logging.basicConfig``: the handlers found on the
    root logger become the listener's sinks. ``stop()`` flushes the queue and
    puts every logger back the way it was.
    """

    def __init__(self, logger_names: Iterable[str] = DEFAULT_LOGGERS):
        self.logger_names = tuple(logger_names)
        self._queue: queue.SimpleQueue[logging.LogRecord] = queue.SimpleQueue()
        self._listener: QueueListener | None = None
        # name -> (handlers, propagate) before start()
        self._saved: dict[str, tuple[list[logging.Handler], bool]] = {}

    @property
    def started(self) -> bool:
        return self._listener is not None

    def start(self) -> None:
        if self._listener is not None:
            return
        sinks = logging.getLogger().handlers[:]
        if not sinks:
            return

        queue_handler = QueueHandler(self._queue)
        for name in self.logger_names:
            lg = logging.getLogger(name)
            self._saved[name] = (lg.handlers[:], lg.propagate)
            lg.handlers = [queue_handler]
            lg.propagate = False

        self._listener = QueueListener(self._queue, *sinks, respect_handler_level=True)
        self._listener.start()

    def stop(self) -> None:
        listener, self._listener = self._listener, None
        if listener is None:
            return
        # Drains whatever is still queued before the thread exits
        listener.stop()
        for name, (handlers, propagate) in self._saved.items():
            lg = logging.getLogger(name)
            lg.handlers = handlers
            lg.propagate = propagate
        self._saved.clear()

    def __enter__(self) -> "AsyncLogHandler":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

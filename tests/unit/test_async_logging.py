"""Unit tests for the queue-based log handler."""

import logging

import pytest

from erbridge.server.async_logging import AsyncLogHandler

pytestmark = pytest.mark.unit


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


def test_records_reach_root_sinks_through_queue(monkeypatch):
    sink = ListHandler()
    monkeypatch.setattr(logging.getLogger(), "handlers", [sink])
    log = logging.getLogger("erbridge.tests.async_logging")
    monkeypatch.setattr(log, "level", logging.INFO)

    with AsyncLogHandler(["erbridge"]) as handler:
        assert handler.started
        assert logging.getLogger("erbridge").propagate is False
        log.info("queued record")

    # stop() drained the queue
    assert [r.getMessage() for r in sink.records] == ["queued record"]
    assert not handler.started


def test_stop_restores_logger_state(monkeypatch):
    monkeypatch.setattr(logging.getLogger(), "handlers", [ListHandler()])
    target = logging.getLogger("erbridge.tests.restore")
    own = logging.NullHandler()
    monkeypatch.setattr(target, "handlers", [own])

    handler = AsyncLogHandler(["erbridge.tests.restore"])
    handler.start()
    assert target.handlers != [own]
    handler.stop()

    assert target.handlers == [own]
    assert target.propagate is True


def test_without_root_handlers_nothing_changes(monkeypatch):
    monkeypatch.setattr(logging.getLogger(), "handlers", [])
    handler = AsyncLogHandler(["erbridge.tests.noop"])
    handler.start()
    assert not handler.started
    handler.stop()

# tests/test_logging_config.py
import json
import logging

from relay.infra.logging_config import ConsoleFormatter, JSONFormatter, LogContext


def _record(**extra):
    record = logging.LogRecord("relay.test", logging.INFO, __file__, 1, "hello", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context():
    payload = json.loads(JSONFormatter().format(_record(origin="queue", repo="org/app", action="up")))
    assert payload["message"] == "hello"
    assert payload["origin"] == "queue"
    assert payload["repo"] == "org/app"
    assert payload["action"] == "up"
    assert "request_id" not in payload


def test_console_formatter_context():
    line = ConsoleFormatter().format(_record(origin="http", request_id="abcdef123456"))
    assert "origin=http" in line
    assert "req=abcdef12" in line
    assert line.endswith("hello")


def test_log_context_bind(caplog):
    logger = logging.getLogger("relay.test.ctx")
    ctx = LogContext(logger, origin="queue").bind(repo="org/app", action=None)

    with caplog.at_level(logging.INFO, logger="relay.test.ctx"):
        ctx.info("dispatched")

    record = caplog.records[-1]
    assert record.origin == "queue"
    assert record.repo == "org/app"
    assert not hasattr(record, "action")

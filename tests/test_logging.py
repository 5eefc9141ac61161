"""Tests for structured event logging."""

import json
import logging

import pytest

from storefront.services import logging as event_logging
from storefront.services.logging import configure, log_event


@pytest.fixture(autouse=True)
def reset_level():
    configure("INFO")
    yield
    configure("INFO")


class TestLogEvent:
    def test_single_json_line_on_stdout(self, capsys):
        log_event("warning", "stock.low", product_id="p-cap", stock=1)

        out, err = capsys.readouterr()
        lines = out.strip().splitlines()
        assert len(lines) == 1
        payload = json.loads(lines[0])
        assert payload["level"] == "warning"
        assert payload["event"] == "stock.low"
        assert payload["stock"] == 1
        assert err == ""

    def test_logger_has_its_own_handler(self):
        assert any(isinstance(h, logging.NullHandler) for h in event_logging.logger.handlers)

    def test_level_filter(self, capsys):
        configure("error")
        log_event("info", "cart.read")
        assert capsys.readouterr().out == ""
        log_event("error", "order.failed")
        assert json.loads(capsys.readouterr().out)["event"] == "order.failed"

"""Unit tests for deploy_engine.logging_setup."""

from __future__ import annotations

import json
import logging

import pytest
from deploy_engine.logging_setup import JSONFormatter, configure_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("deploy_engine.orchestrator", logging.INFO, __file__, 1, "Unit %s succeeded", ("u1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_single_line_payload(self):
        line = JSONFormatter().format(_record())
        payload = json.loads(line)

        assert "\n" not in line
        assert payload["level"] == "INFO"
        assert payload["logger"] == "deploy_engine.orchestrator"
        assert payload["message"] == "Unit u1 succeeded"
        assert "attempt_id" not in payload

    def test_deployment_context(self):
        payload = json.loads(JSONFormatter().format(_record(attempt_id="dev-1", environment="dev")))
        assert payload["attempt_id"] == "dev-1"
        assert payload["environment"] == "dev"

    def test_exception_info(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys

            record = _record()
            record.exc_info = sys.exc_info()

        payload = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in payload["exc_info"]


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def _restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_structured(self):
        configure_logging(structured=True)
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.INFO

    def test_plain_debug(self):
        configure_logging(structured=False, debug=True)
        root = logging.getLogger()
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.DEBUG

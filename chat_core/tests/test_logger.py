import json
import logging

from chat_core.config.settings import settings
from chat_core.infrastructure.logging.logger import JsonFormatter


def _record(msg, fields):
    record = logging.LogRecord("chat_core", logging.INFO, __file__, 1, msg, None, None)
    record.extra = fields
    return record


def test_json_formatter_merges_extra(monkeypatch):
    monkeypatch.setattr(settings, "log_redact_content", False)
    line = JsonFormatter().format(_record("Submitting prompt", {"conversation_id": "c1", "input_text": "hello"}))
    data = json.loads(line)
    assert data["msg"] == "Submitting prompt"
    assert data["conversation_id"] == "c1"
    assert data["input_text"] == "hello"
    assert data["ts"].endswith("Z")


def test_json_formatter_redacts_content(monkeypatch):
    monkeypatch.setattr(settings, "log_redact_content", True)
    line = JsonFormatter().format(_record("Submitting prompt", {"input_text": "secret question"}))
    assert json.loads(line)["input_text"] == "<15 chars>"

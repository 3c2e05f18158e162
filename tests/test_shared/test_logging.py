"""Tests for structured logging and secret redaction."""
from __future__ import annotations

import json
import logging

from src.shared.logging import (
    JSONFormatter,
    SecretRedactionFilter,
    deployment_id_var,
    get_redaction_filter,
    register_secret,
    setup_logging,
)


def _record(msg: str, *args) -> logging.LogRecord:
    return logging.LogRecord("src.test", logging.INFO, __file__, 1, msg, args, None)


class TestJSONFormatter:
    def test_fields(self):
        token = deployment_id_var.set("dep-123")
        try:
            line = JSONFormatter(service_name="kangbeef-deploy").format(_record("hello %s", "world"))
        finally:
            deployment_id_var.reset(token)
        entry = json.loads(line)
        assert entry["message"] == "hello world"
        assert entry["service_name"] == "kangbeef-deploy"
        assert entry["deployment_id"] == "dep-123"
        assert entry["level"] == "INFO"
        assert "timestamp" in entry


class TestSecretRedactionFilter:
    def test_redacts_message_and_args(self):
        redactor = SecretRedactionFilter(["s3cret-pass"])
        record = _record("login with %s", "s3cret-pass")
        assert redactor.filter(record) is True
        assert record.getMessage() == "login with ******"
        assert record.args is None

    def test_short_values_ignored(self):
        redactor = SecretRedactionFilter(["ab", ""])
        assert redactor.secrets == frozenset()
        assert redactor.redact("abc") == "abc"

    def test_longest_secret_first(self):
        redactor = SecretRedactionFilter(["token", "token-extended"])
        assert redactor.redact("x token-extended y") == "x ****** y"

    def test_no_secrets_leaves_record(self):
        record = _record("value %d", 3)
        SecretRedactionFilter().filter(record)
        assert record.args == (3,)


def test_setup_logging_redacts_registered_secrets(capsys):
    logger = setup_logging("kangbeef-deploy", level="DEBUG", json_output=True)
    register_secret("registry-password-123")
    logging.getLogger("src.some.module").warning("password=%s", "registry-password-123")
    err = capsys.readouterr().err
    assert "registry-password-123" not in err
    assert "******" in err
    assert logger.handlers[0].filters[0] is get_redaction_filter()

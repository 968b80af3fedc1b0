"""Tests for observability utilities."""

import json
import logging

from clinicbridge.observability.correlation import (
    bound_correlation_id,
    get_correlation_id,
    set_correlation_id,
    reset_correlation_id,
)
from clinicbridge.observability.logging import JsonFormatter, get_logger
from clinicbridge.observability.redaction import (
    hash_identifier,
    mask_secret,
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_bare_digits_phone(self):
        assert "5511999998888" not in redact_string("to=5511999998888")

    def test_redact_email(self):
        result = redact_string("Email: paciente@example.com")
        assert "paciente@example.com" not in result
        assert "[REDACTED]" in result

    def test_redact_value_dict_only_keys(self):
        result = redact_value({"text": "Olá doutor", "phone": "5511999998888"})
        assert "Olá" not in result
        assert "5511999998888" not in result
        assert "text" in result

    def test_redact_value_list_only_len(self):
        result = redact_value(["a", "b", "c"])
        assert "len=3" in result

    def test_safe_log_context(self):
        ctx = safe_log_context(phone="+5511999998888", count=42, ok=True, missing=None)
        assert "[REDACTED]" in ctx["phone"]
        assert ctx["count"] == "42"
        assert ctx["ok"] == "true"
        assert ctx["missing"] == "null"


class TestIdentifiers:
    def test_hash_is_stable_and_short(self):
        assert hash_identifier("5511999998888") == hash_identifier("5511999998888")
        assert len(hash_identifier("5511999998888")) == 12
        assert "5511999998888" not in hash_identifier("5511999998888")

    def test_mask_secret(self):
        assert mask_secret("abcdef") == "<secret len=6>"
        assert mask_secret("") == "<unset>"
        assert mask_secret(None) == "<unset>"


class TestCorrelation:
    def test_bound_correlation_id_restores_previous(self):
        token = set_correlation_id("outer")
        try:
            with bound_correlation_id("inner") as cid:
                assert cid == "inner"
                assert get_correlation_id() == "inner"
            assert get_correlation_id() == "outer"
        finally:
            reset_correlation_id(token)

    def test_bound_correlation_id_generates(self):
        with bound_correlation_id() as cid:
            assert cid
            assert get_correlation_id() == cid


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("clinicbridge.test", logging.INFO, __file__, 1, "hello", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_formats_json_with_extra_fields(self):
        record = self._record(extra_fields={"job_id": "7"})
        with bound_correlation_id("cid-1"):
            output = json.loads(JsonFormatter().format(record))
        assert output["message"] == "hello"
        assert output["level"] == "INFO"
        assert output["correlationId"] == "cid-1"
        assert output["job_id"] == "7"

    def test_get_logger_single_handler(self):
        logger = get_logger("clinicbridge.test.handlers")
        get_logger("clinicbridge.test.handlers")
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

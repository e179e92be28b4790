"""
Tests for structured logging helpers.
"""

import json
import logging

from agentx.core.logging import (
    LogContext,
    StructuredJsonFormatter,
    _log_context,
    get_current_context,
    redact_sensitive,
    set_context,
)


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="agentx.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedaction:
    def test_nested_secrets_redacted(self):
        data = {
            "email": "a@example.com",
            "password": "hunter2",
            "session": {"refreshToken": "abc", "agent_id": "1"},
            "items": [{"JWT_SECRET": "x"}],
        }

        redacted = redact_sensitive(data)

        assert redacted["email"] == "a@example.com"
        assert redacted["password"] == "[REDACTED]"
        assert redacted["session"] == {"refreshToken": "[REDACTED]", "agent_id": "1"}
        assert redacted["items"] == [{"JWT_SECRET": "[REDACTED]"}]


class TestLogContext:
    def test_context_is_scoped(self):
        # configure_structured_logging may already have set process-wide fields
        baseline = get_current_context()

        with LogContext(agent_id="a-1"):
            with LogContext(task_count=3):
                assert get_current_context() == {**baseline, "agent_id": "a-1", "task_count": 3}
            assert get_current_context() == {**baseline, "agent_id": "a-1"}
        assert get_current_context() == baseline

    def test_scoped_fields_layer_over_service_context(self):
        baseline = get_current_context()
        set_context(service="agentx-test")
        try:
            with LogContext(task_count=1):
                context = get_current_context()
            assert context["service"] == "agentx-test"
            assert context["task_count"] == 1
            assert "task_count" not in get_current_context()
        finally:
            _log_context.set(baseline)


class TestJsonFormatter:
    def test_includes_context_and_extra(self):
        formatter = StructuredJsonFormatter()

        with LogContext(request_id="req-1"):
            line = formatter.format(make_record("Distributed", task_count=7, agent_count=3))

        payload = json.loads(line)
        assert payload["message"] == "Distributed"
        assert payload["level"] == "INFO"
        assert payload["request_id"] == "req-1"
        assert payload["task_count"] == 7
        assert payload["agent_count"] == 3

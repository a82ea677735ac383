import json
import logging

from funnelbot.logging_config import JSONFormatter, tenant_logger


def make_record(context=None):
    record = logging.LogRecord("funnelbot.test", logging.INFO, __file__, 1, "Calling executed", None, None)
    if context is not None:
        record.context = context
    return record


class TestJSONFormatter:
    def test_tenant_and_bot_are_lifted(self):
        payload = json.loads(JSONFormatter().format(make_record({"tenant_id": "t", "bot_id": "b", "n": 1})))

        assert payload["tenant_id"] == "t"
        assert payload["bot_id"] == "b"
        assert payload["context"] == {"tenant_id": "t", "bot_id": "b", "n": 1}
        assert payload["message"] == "Calling executed"

    def test_without_context(self):
        payload = json.loads(JSONFormatter().format(make_record()))

        assert "context" not in payload
        assert "tenant_id" not in payload


class TestTenantLogger:
    def test_merges_bound_ids_with_call_context(self):
        log = tenant_logger("test", "t", "b")

        _, kwargs = log.process("msg", {"context": {"counterpart": "c"}})

        assert kwargs["extra"]["context"] == {"tenant_id": "t", "bot_id": "b", "counterpart": "c"}

    def test_keeps_context_passed_through_extra(self):
        log = tenant_logger("test", "t")

        _, kwargs = log.process("msg", {"extra": {"context": {"source": "webhook"}}})

        assert kwargs["extra"]["context"] == {"tenant_id": "t", "source": "webhook"}

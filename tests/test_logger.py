import json
import logging

from utils.correlation_id import bind_correlation_id, correlation_id_context, reset_correlation_id
from utils.logger import JsonFormatter, setup_logger


def make_record(**extra):
    record = logging.LogRecord("personalization.test", logging.INFO, __file__, 1, "scored %s", ("tool",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extra_fields_become_top_level_keys():
    payload = json.loads(JsonFormatter(service="svc").format(make_record(user_id="user-1", confidence=0.3)))

    assert payload["message"] == "scored tool"
    assert payload["level"] == "INFO"
    assert payload["service"] == "svc"
    assert payload["user_id"] == "user-1"
    assert payload["confidence"] == 0.3
    assert "correlation_id" not in payload


def test_bound_correlation_id_is_included():
    token = bind_correlation_id("req-42")
    try:
        payload = json.loads(JsonFormatter().format(make_record()))
    finally:
        reset_correlation_id(token)

    assert payload["correlation_id"] == "req-42"
    assert "service" not in payload
    assert correlation_id_context.get() is None


def test_missing_correlation_id_is_generated():
    token = bind_correlation_id(None)
    try:
        assert len(correlation_id_context.get()) == 36
    finally:
        reset_correlation_id(token)


def test_setup_logger_is_idempotent():
    logger = setup_logger("personalization.test.idempotent")
    assert setup_logger("personalization.test.idempotent") is logger
    assert len(logger.handlers) == 1
    assert logger.propagate is False

import logging

from dbscope.utils.logging import (
    CorrelationIdFilter,
    correlation_scope,
    get_correlation_id,
    get_logger,
    redact_params,
    set_correlation_id,
    time_call,
)


def test_correlation_id_round_trip():
    token = set_correlation_id("test-token")
    assert token == "test-token"
    assert get_correlation_id() == "test-token"


def test_correlation_filter_stamps_records():
    set_correlation_id("abc")
    record = logging.LogRecord("dbscope.tests", logging.INFO, __file__, 1, "msg", None, None)
    assert CorrelationIdFilter().filter(record)
    assert record.correlation_id == "abc"


def test_get_logger_uses_package_namespace():
    assert get_logger("scoping.scope").name == "dbscope.scoping.scope"


def test_time_call_logs_duration(caplog):
    logger = get_logger("tests.logging")
    caplog.set_level(logging.DEBUG, logger=logger.name)
    with time_call("unit-test", logger, threshold_ms=0):
        pass
    messages = [record.message for record in caplog.records if record.name == logger.name]
    assert any("unit-test took" in message for message in messages)
    assert any(record.levelno == logging.WARNING for record in caplog.records if record.name == logger.name)


def test_redact_params_masks_credentials():
    assert redact_params(["alice", "my-secret-value", 3]) == ["alice", "***", 3]


def test_correlation_scope_restores_previous_id():
    set_correlation_id("outer")
    with correlation_scope("inner") as cid:
        assert cid == "inner"
        assert get_correlation_id() == "inner"
    assert get_correlation_id() == "outer"

"""SqlExecutor retry, reconnect, diagnostics and redaction."""

from __future__ import annotations

import logging

import pytest

from data_load.sql_executor import SqlExecutor
from errors import QueryError

COPY_STATEMENT = (
    "COPY \"t\" FROM 's3://b/k' CREDENTIALS "
    "'aws_access_key_id=AKIAEXAMPLE;aws_secret_access_key=SECRETEXAMPLE;token=TOKENEXAMPLE' "
    "GZIP;"
)


def test_success_on_first_attempt(warehouse, executor, sleeps):
    warehouse.default_rowcount = 5
    assert executor.execute('DROP TABLE IF EXISTS "t";') == 5
    assert warehouse.statements == ['DROP TABLE IF EXISTS "t";']
    assert sleeps == []
    assert executor.session.reconnect_count == 0


def test_two_failures_then_success(warehouse, executor, sleeps):
    warehouse.fail("CREATE TABLE", times=2)
    warehouse.default_rowcount = 0

    assert executor.execute('CREATE TABLE "t" ("id" INT NOT NULL);') == 0

    attempts = [s for s in warehouse.statements if s.startswith("CREATE TABLE")]
    assert len(attempts) == 3
    assert executor.session.reconnect_count == 2
    assert sleeps == [0, 1]
    assert sum(sleeps) >= 1
    # Initial connection + one per reconnect
    assert len(warehouse.connections) == 3


def test_exhausted_retries_raise_query_error(warehouse, executor, sleeps):
    warehouse.fail("INSERT", times=3, message="permission denied for relation t")

    with pytest.raises(QueryError) as exc_info:
        executor.execute('INSERT INTO "t" SELECT 1')

    assert "permission denied" in exc_info.value.message
    assert exc_info.value.statement == 'INSERT INTO "t" SELECT 1'
    assert executor.session.reconnect_count == 3
    # No sleep after the final attempt
    assert sleeps == [0, 1]


def test_max_retries_is_configurable(warehouse, session, sleeps):
    warehouse.fail("DROP", times=1)
    executor = SqlExecutor(session, max_retries=1)
    with pytest.raises(QueryError):
        executor.execute('DROP TABLE IF EXISTS "t";')
    assert sleeps == []


def test_load_errors_build_the_message(warehouse, executor):
    warehouse.fail("COPY", times=3)
    warehouse.respond(
        "stl_load_errors",
        ["colname", "line_number", "err_reason"],
        [("id                 ", 2, "Invalid digit, Value 'x', Pos 0   ")],
    )

    with pytest.raises(QueryError) as exc_info:
        executor.execute(COPY_STATEMENT)

    error = exc_info.value
    assert error.message == "Column 'id', line 2: Invalid digit, Value 'x', Pos 0"
    assert error.diagnostics[0]["line_number"] == 2
    assert error.data["redshift_errors"] == error.diagnostics


def test_credentials_never_logged_or_raised(warehouse, executor, caplog):
    caplog.set_level(logging.DEBUG)
    warehouse.fail("COPY", times=3, message="S3ServiceException: Access Denied")

    with pytest.raises(QueryError) as exc_info:
        executor.execute(COPY_STATEMENT)

    for secret in ("AKIAEXAMPLE", "SECRETEXAMPLE", "TOKENEXAMPLE"):
        assert secret not in caplog.text
        assert secret not in exc_info.value.statement
        assert secret not in str(exc_info.value.data)
    assert "aws_access_key_id=***" in exc_info.value.statement
    # The driver still received the real credentials
    assert "SECRETEXAMPLE" in warehouse.statements[0]


def test_retry_log_lines(warehouse, executor, caplog):
    caplog.set_level(logging.INFO)
    warehouse.fail("DROP", times=1, message="connection reset")
    executor.execute('DROP TABLE IF EXISTS "t";')
    assert "connection reset. Retrying... [1x]" in caplog.text



def test_retry_log_line_masks_credentials_echoed_by_the_driver(warehouse, executor, caplog):
    caplog.set_level(logging.INFO)
    warehouse.fail(
        "COPY", times=1,
        message="syntax error near 'aws_secret_access_key=SECRETEXAMPLE;token=TOKENEXAMPLE'",
    )
    executor.execute(COPY_STATEMENT)
    assert "Retrying... [1x]" in caplog.text
    assert "aws_secret_access_key=***" in caplog.text
    assert "SECRETEXAMPLE" not in caplog.text
    assert "TOKENEXAMPLE" not in caplog.text


def test_fetch_helpers(warehouse, executor):
    warehouse.respond("information_schema", ["table_name"], [("orders",), ("items",)])
    assert executor.fetch_all("SELECT table_name FROM information_schema.tables") == [
        {"table_name": "orders"},
        {"table_name": "items"},
    ]
    assert executor.fetch_one("SELECT table_name FROM information_schema.tables") == "orders"
    assert executor.fetch_one("SELECT 1 WHERE false") is None

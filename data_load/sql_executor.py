"""Statement execution with credential redaction, retry and reconnect.

Every DDL/DML/COPY statement issued by the writer goes through
SqlExecutor.execute(). Retry discipline:

  1. Run the statement on the session's current connection.
  2. On pyodbc.Error, read stl_load_errors for the failed query so the final
     error names the rejected column, line and reason (COPY rejections only
     surface there).
  3. Rebuild the connection. Reconnect failures are swallowed so they never
     replace the original error.
  4. Sleep attempt_index ** 2 seconds (0s, 1s, ...) and try again, up to
     config.QUERY_MAX_RETRIES attempts.

Only pyodbc.Error is treated as transient. Anything else propagates on the
first attempt.

The statement is redacted before it reaches a log line or an exception;
the raw text is only ever handed to the driver.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import pyodbc

import config
from connections import redact_credentials
from errors import QueryError

if TYPE_CHECKING:
    from connections import WarehouseSession

logger = logging.getLogger(__name__)


class SqlExecutor:
    """Runs statements against a WarehouseSession."""

    def __init__(
        self,
        session: WarehouseSession,
        max_retries: int = config.QUERY_MAX_RETRIES,
    ) -> None:
        self.session = session
        self.max_retries = max(1, max_retries)

    def execute(self, statement: str) -> int:
        """Execute a statement, retrying transient failures.

        Returns:
            Rows affected as reported by the driver (-1 when unknown).

        Raises:
            QueryError: After all attempts failed. Carries the redacted
                statement and any stl_load_errors rows.
        """
        statement_to_log = redact_credentials(statement)
        logger.info("Executing query: '%s'", statement_to_log)

        error: QueryError | None = None

        for attempt in range(self.max_retries):
            try:
                with self.session.cursor() as cur:
                    cur.execute(statement)
                    return cur.rowcount
            except pyodbc.Error as e:
                error = self._error_from_diagnostics(statement_to_log, e)
                logger.error("%s", error.message, extra={"metadata": error.data})
                self.session.reconnect()
                logger.info(
                    "%s. Retrying... [%dx]", redact_credentials(_driver_message(e)), attempt + 1,
                )

            if attempt + 1 < self.max_retries:
                time.sleep(attempt ** 2)

        raise error

    def fetch_all(self, query: str, *params) -> list[dict]:
        """Run a read query once and return rows as dicts keyed by column name."""
        with self.session.cursor() as cur:
            cur.execute(query, *params)
            if cur.description is None:
                return []
            columns = [desc[0] for desc in cur.description]
            return [dict(zip(columns, row)) for row in cur.fetchall()]

    def fetch_one(self, query: str, *params):
        """Run a read query once and return the first column of the first row."""
        with self.session.cursor() as cur:
            cur.execute(query, *params)
            row = cur.fetchone()
        return row[0] if row else None

    def _error_from_diagnostics(self, statement_to_log: str, exc: Exception) -> QueryError:
        """Build a QueryError, enriched with stl_load_errors rows when available."""
        diagnostics = self._load_errors()
        if diagnostics:
            message = "".join(
                "Column '{}', line {}: {}".format(
                    str(row.get("colname") or "").strip(),
                    row.get("line_number"),
                    str(row.get("err_reason") or "").strip(),
                )
                for row in diagnostics
            )
        else:
            message = redact_credentials(_driver_message(exc))
        return QueryError(message, statement=statement_to_log, diagnostics=diagnostics)

    def _load_errors(self) -> list[dict]:
        try:
            return self.fetch_all(config.LOAD_ERRORS_QUERY)
        except Exception:
            # Connection is usually gone at this point; the driver error is enough.
            logger.debug("Could not read stl_load_errors", exc_info=True)
            return []


def _driver_message(exc: Exception) -> str:
    """pyodbc errors carry (sqlstate, message) in args; prefer the message."""
    args = getattr(exc, "args", ())
    if len(args) >= 2 and isinstance(args[1], str):
        return args[1]
    return str(exc)

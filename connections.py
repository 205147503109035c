"""Redshift warehouse connections.

Provides the pyodbc connection slot (WarehouseSession) shared by every writer
component, the ConnectorX URI for catalog reads, and the pure helpers used for
safe dynamic SQL construction: identifier quoting, literal escaping and
credential redaction.
"""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable
from urllib.parse import quote_plus

import pyodbc

import config
from errors import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# SQL identifier and literal escaping
# ---------------------------------------------------------------------------


def quote_identifier(name: str) -> str:
    """Double-quote a Redshift identifier (table, column).

    Doubles any embedded double quote. Rejects identifiers longer than the
    127-byte limit Redshift enforces, since the server would otherwise
    silently truncate and two long staging names could collide.

    Args:
        name: Raw identifier (e.g. column name, table name).

    Returns:
        Quoted identifier (e.g. ``"my_column"``, ``"tricky""name"``).

    Raises:
        ValueError: If name is empty or exceeds 127 bytes.
    """
    if not name:
        raise ValueError("Identifier cannot be empty")
    if len(name.encode("utf-8")) > config.MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"Identifier exceeds {config.MAX_IDENTIFIER_LENGTH} bytes "
            f"(len={len(name)}): {name[:50]}..."
        )
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a string literal, escaping quotes and backslashes."""
    return "'" + str(value).replace("\\", "\\\\").replace("'", "''") + "'"


# ---------------------------------------------------------------------------
# Credential redaction
# ---------------------------------------------------------------------------

_CREDENTIAL_PATTERN = re.compile(
    r"(aws_access_key_id|aws_secret_access_key|token)=[^;'\s]*",
    re.IGNORECASE,
)


def redact_credentials(statement: str) -> str:
    """Mask inline S3 credentials in a statement before it is logged or raised.

    ``CREDENTIALS 'aws_access_key_id=AK;aws_secret_access_key=SK;token=T'``
    becomes ``CREDENTIALS 'aws_access_key_id=***;aws_secret_access_key=***;token=***'``.
    """
    return _CREDENTIAL_PATTERN.sub(r"\1=***", statement)


# ---------------------------------------------------------------------------
# Connection parameters
# ---------------------------------------------------------------------------

_REQUIRED_PARAMS = ("host", "database", "user", "password", "schema")


@dataclass(frozen=True)
class ConnectionParams:
    """Redshift connection settings from ``parameters.db``."""

    host: str
    database: str
    schema: str
    user: str
    password: str
    port: int = config.DEFAULT_PORT

    @classmethod
    def from_dict(cls, db: dict) -> ConnectionParams:
        """Build from the job config, failing fast on missing values.

        ``#password`` (encrypted-at-rest key convention) is accepted in place
        of ``password``.
        """
        values = dict(db or {})
        if not values.get("password") and values.get("#password"):
            values["password"] = values["#password"]

        for name in _REQUIRED_PARAMS:
            if values.get(name) in (None, ""):
                raise ConfigurationError(f"Parameter {name} is missing.")

        port = values.get("port") or config.DEFAULT_PORT
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Parameter port is not a number: {port!r}") from None

        return cls(
            host=str(values["host"]),
            database=str(values["database"]),
            schema=str(values["schema"]),
            user=str(values["user"]),
            password=str(values["password"]),
            port=port,
        )

    def redacted(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "schema": self.schema,
            "user": self.user,
        }


def _pyodbc_connection_string(params: ConnectionParams) -> str:
    return (
        f"DRIVER={{{config.ODBC_DRIVER}}};"
        f"SERVER={params.host};"
        f"PORT={params.port};"
        f"DATABASE={params.database};"
        f"UID={params.user};"
        f"PWD={{{params.password}}};"
        "KeepAlive=1;"
        f"KeepAliveTime={config.KEEPALIVES_IDLE};"
    )


def connectorx_uri(params: ConnectionParams) -> str:
    usr = quote_plus(params.user)
    pwd = quote_plus(params.password)
    return f"redshift://{usr}:{pwd}@{params.host}:{params.port}/{params.database}"


def open_connection(params: ConnectionParams) -> pyodbc.Connection:
    """Create a fresh autocommit pyodbc connection with search_path set."""
    logger.info(
        "Connecting to %s:%s/%s (schema=%s)...",
        params.host, params.port, params.database, params.schema,
    )
    conn = pyodbc.connect(
        _pyodbc_connection_string(params),
        autocommit=True,
        timeout=config.CONNECT_TIMEOUT,
    )
    cursor = conn.cursor()
    try:
        cursor.execute(f"SET search_path TO {quote_identifier(params.schema)};")
    finally:
        cursor.close()
    return conn


# ---------------------------------------------------------------------------
# Connection slot
# ---------------------------------------------------------------------------


class WarehouseSession:
    """The single owned connection slot for a writer run.

    Opened lazily, reused across tables, and replaced in place by
    ``reconnect()``. Components receive the session, never the raw
    connection, so nobody keeps a handle across a reconnect boundary.

    Usage::

        session = WarehouseSession(params)
        with session.cursor() as cur:
            cur.execute("select current_date")
        session.close()
    """

    def __init__(
        self,
        params: ConnectionParams,
        connect: Callable[[ConnectionParams], pyodbc.Connection] = open_connection,
    ) -> None:
        self.params = params
        self._connect = connect
        self._connection: pyodbc.Connection | None = None
        # Connection overhead, logged at shutdown
        self.connect_count = 0
        self.connect_time_ms = 0.0
        self.reconnect_count = 0

    @property
    def schema(self) -> str:
        return self.params.schema

    @property
    def connection(self) -> pyodbc.Connection:
        if self._connection is None:
            self._connection = self._open()
        return self._connection

    def _open(self) -> pyodbc.Connection:
        start = time.monotonic()
        conn = self._connect(self.params)
        self.connect_time_ms += (time.monotonic() - start) * 1000
        self.connect_count += 1
        return conn

    def reconnect(self) -> None:
        """Replace the live handle with a fresh connection.

        Errors are logged and swallowed: a failed reconnect must not mask the
        statement error that triggered it. The slot is left empty and the next
        use opens a new connection.
        """
        self.reconnect_count += 1
        old, self._connection = self._connection, None
        if old is not None:
            try:
                old.close()
            except Exception:
                logger.debug("Closing stale connection failed", exc_info=True)
        try:
            self._connection = self._open()
        except Exception:
            logger.warning(
                "Reconnect to %s:%s failed; next attempt will retry the connect",
                self.params.host, self.params.port, exc_info=True,
            )

    @contextmanager
    def cursor(self):
        """Context manager yielding a cursor on the current connection."""
        cursor = self.connection.cursor()
        try:
            yield cursor
        finally:
            try:
                cursor.close()
            except Exception:
                pass

    def close(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        except Exception:
            logger.debug("Closing connection failed", exc_info=True)
        self._connection = None

    def overhead(self) -> tuple[float, int, int]:
        """Return (total connect ms, connect count, reconnect count)."""
        return self.connect_time_ms, self.connect_count, self.reconnect_count

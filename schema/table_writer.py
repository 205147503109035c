"""Create, drop and look up Redshift tables from a TableConfig column list.

Target and staging tables share the same DDL: every non-ignored item becomes
``"<dbName>" <TYPE>[(size)] NULL|NOT NULL [DEFAULT '<literal>']``.

Redshift folds unquoted identifiers to lower case and information_schema
stores them that way, so existence checks compare lower-cased names.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from connections import quote_identifier, quote_literal
from errors import SchemaError

if TYPE_CHECKING:
    from data_load.sql_executor import SqlExecutor
    from orchestration.table_config import ColumnConfig, TableConfig

logger = logging.getLogger(__name__)

# Redshift rejects DEFAULT on these types
_NO_DEFAULT_TYPES = frozenset({"TEXT"})


def build_column_ddl(column: ColumnConfig) -> str:
    sql_type = column.type.upper()
    if column.size:
        sql_type += f"({column.size})"
    null = "NULL" if column.nullable else "NOT NULL"
    parts = [quote_identifier(column.db_name), sql_type, null]
    if column.default is not None and sql_type not in _NO_DEFAULT_TYPES:
        parts.append(f"DEFAULT {quote_literal(column.default)}")
    return " ".join(parts)


def build_create_table_sql(table_config: TableConfig) -> str:
    """Build CREATE TABLE for the non-ignored columns.

    Raises:
        SchemaError: If no column is left after dropping ignored ones.
    """
    columns = table_config.columns
    if not columns:
        raise SchemaError(
            f'Table "{table_config.table_id}" has no columns to create '
            f"(all columns are ignored)."
        )
    col_ddl = ", ".join(build_column_ddl(c) for c in columns)
    return f"CREATE TABLE {quote_identifier(table_config.db_name)} ({col_ddl});"


def build_drop_table_sql(table_name: str) -> str:
    return f"DROP TABLE IF EXISTS {quote_identifier(table_name)};"


class TableWriter:
    """DDL operations routed through the SqlExecutor (redaction + retry)."""

    def __init__(self, executor: SqlExecutor) -> None:
        self.executor = executor

    def drop(self, table_name: str) -> None:
        """Drop a table if it exists. Never fails on a missing table."""
        self.executor.execute(build_drop_table_sql(table_name))
        logger.info("Dropped table %s (if existed)", table_name)

    def create(self, table_config: TableConfig) -> None:
        """Create the table described by table_config.

        The DDL is built before anything is sent, so an all-ignored column
        list fails without executing a statement.
        """
        sql = build_create_table_sql(table_config)
        self.executor.execute(sql)
        logger.info(
            "Created table %s (%d columns)",
            table_config.db_name, len(table_config.columns),
        )

    def exists(self, table_name: str) -> bool:
        """Check whether a table exists in the session schema."""
        rows = self.executor.fetch_all(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = ? AND table_name = ?",
            self.executor.session.schema.lower(),
            table_name.lower(),
        )
        return len(rows) > 0

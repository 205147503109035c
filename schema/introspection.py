"""Catalog reads for the getTablesInfo action.

ConnectorX -> Polars DataFrame of ``information_schema.columns`` for the
session schema, folded into ``{table: {"name", "columns": [...]}}``.
"""

from __future__ import annotations

import logging

import connectorx as cx
import polars as pl

from connections import ConnectionParams, connectorx_uri, quote_literal
from errors import QueryError

logger = logging.getLogger(__name__)

_COLUMNS_QUERY = (
    "SELECT table_name, column_name, data_type, character_maximum_length, "
    "is_nullable, column_default, ordinal_position "
    "FROM information_schema.columns "
    "WHERE table_schema = {schema} "
    "ORDER BY table_name, ordinal_position"
)


def read_schema_columns(params: ConnectionParams, read_sql=cx.read_sql) -> pl.DataFrame:
    """Read the column catalog of the connection's schema into Polars.

    Raises:
        QueryError: If ConnectorX fails (including Rust panics).
    """
    query = _COLUMNS_QUERY.format(schema=quote_literal(params.schema.lower()))
    logger.info("ConnectorX catalog read: schema=%s", params.schema)
    try:
        return read_sql(conn=connectorx_uri(params), query=query, return_type="polars")
    except (KeyboardInterrupt, SystemExit):
        raise
    except BaseException as e:
        # ConnectorX surfaces Rust panics as BaseException subclasses
        raise QueryError(
            f"Cannot read table catalog of schema {params.schema}: {type(e).__name__}: {e}",
            statement=query,
        ) from e


def tables_info(columns: pl.DataFrame) -> dict[str, dict]:
    """Fold the column catalog into per-table info, tables in name order."""
    if columns.is_empty():
        return {}

    info: dict[str, dict] = {}
    ordered = columns.sort(["table_name", "ordinal_position"])
    for (table_name,), group in ordered.group_by(["table_name"], maintain_order=True):
        info[table_name] = {
            "name": table_name,
            "columns": [
                {
                    "name": row["column_name"],
                    "type": row["data_type"],
                    "length": row["character_maximum_length"],
                    "nullable": str(row["is_nullable"]).upper() == "YES",
                    "default": row["column_default"],
                }
                for row in group.iter_rows(named=True)
            ],
        }
    return info

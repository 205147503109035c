"""Incremental upsert: staging table -> target table.

Four statements, strictly in order, each its own autocommit unit:

  1. UPDATE target rows whose primary key matches a staging row
     (all loaded columns overwritten from staging).
  2. DELETE those matched rows from staging, leaving only genuinely new rows.
  3. INSERT everything still in staging into target.
  4. DROP the staging table.

With an empty primary key there is nothing to match on: steps 1-2 are skipped
and the merge is a pure append.

PARTIAL FAILURE NOTE:
  The statements are not wrapped in a transaction. A failure after step 1
  leaves target updated and staging not yet cleaned up; a failure before step
  4 leaves the staging table in place. Orphaned staging tables are kept on
  purpose so a failed load can be inspected. They are reported by the
  getTablesInfo action (schema.staging_cleanup) and must be dropped manually
  before a retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from connections import quote_identifier
from schema.table_writer import build_drop_table_sql

if TYPE_CHECKING:
    from data_load.sql_executor import SqlExecutor
    from orchestration.table_config import TableConfig

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Row counts reported by the driver for each merge step (-1 = unknown)."""

    updated: int = 0
    deduplicated: int = 0
    inserted: int = 0


def build_join_predicate(staging: str, target: str, primary_key: list[str]) -> str:
    q_staging = quote_identifier(staging)
    q_target = quote_identifier(target)
    return " AND ".join(
        f"{q_target}.{quote_identifier(pk)}={q_staging}.{quote_identifier(pk)}"
        for pk in primary_key
    )


def build_update_sql(staging: str, target: str, columns: list[str], primary_key: list[str]) -> str:
    q_staging = quote_identifier(staging)
    values = ",".join(
        f"{quote_identifier(c)}={q_staging}.{quote_identifier(c)}" for c in columns
    )
    return (
        f"UPDATE {quote_identifier(target)} SET {values} "
        f"FROM {q_staging} "
        f"WHERE {build_join_predicate(staging, target, primary_key)}"
    )


def build_delete_matched_sql(staging: str, target: str, primary_key: list[str]) -> str:
    return (
        f"DELETE FROM {quote_identifier(staging)} "
        f"USING {quote_identifier(target)} "
        f"WHERE {build_join_predicate(staging, target, primary_key)}"
    )


def build_insert_sql(staging: str, target: str, columns: list[str]) -> str:
    col_list = ",".join(quote_identifier(c) for c in columns)
    return (
        f"INSERT INTO {quote_identifier(target)} ({col_list}) "
        f"SELECT {col_list} FROM {quote_identifier(staging)}"
    )


def upsert(executor: SqlExecutor, staging_config: TableConfig, target_table: str) -> MergeResult:
    """Merge the staging table described by staging_config into target_table.

    Args:
        executor: Statement executor bound to the run's session.
        staging_config: Table config whose db_name is the staging table.
        target_table: Target table name (must already exist).

    Returns:
        MergeResult with per-step row counts.
    """
    result = MergeResult()
    staging = staging_config.db_name
    columns = staging_config.target_columns
    primary_key = list(staging_config.primary_key)

    if primary_key:
        # --- Step 1: overwrite matching rows in place ---
        result.updated = executor.execute(
            build_update_sql(staging, target_table, columns, primary_key)
        )
        # --- Step 2: drop the rows just applied from staging ---
        result.deduplicated = executor.execute(
            build_delete_matched_sql(staging, target_table, primary_key)
        )
    else:
        logger.info(
            "No primary key for %s; merge appends all staged rows", target_table,
        )

    # --- Step 3: append what is left (new rows) ---
    result.inserted = executor.execute(build_insert_sql(staging, target_table, columns))

    # --- Step 4: staging cleanup ---
    executor.execute(build_drop_table_sql(staging))

    logger.info(
        "Merged %s into %s: updated=%d, inserted=%d",
        staging, target_table, result.updated, result.inserted,
    )
    return result

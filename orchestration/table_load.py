"""Per-table load orchestration (full replace or incremental upsert).

Data flow per table:
  config.json table entry + <tableId>.csv.manifest
  -> skip check (export disabled / nothing but ignored columns)
  -> column order check: manifest columns vs configured items
  -> input mapping check (when the job carries storage.input.tables)
  -> full:        DROP target -> CREATE target -> COPY target
  -> incremental: DROP/CREATE staging -> COPY staging
                  -> CREATE target if missing -> merge staging into target

State per table:
  PENDING -> [STAGING] -> LOADED -> [MERGED] -> DONE
  PENDING -> SKIPPED
  any     -> FAILED  (error propagates; the run stops at the first failure)
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import TYPE_CHECKING

import pyodbc

import config
from data_load.copy_loader import BulkLoader
from data_load.manifest import load_manifest
from errors import ConfigurationError, InternalError, QueryError, UserError
from merge.engine import upsert
from schema.table_writer import TableWriter

if TYPE_CHECKING:
    from data_load.manifest import Manifest
    from data_load.sql_executor import SqlExecutor
    from observability.event_tracker import LoadEventTracker
    from orchestration.table_config import TableConfig

logger = logging.getLogger(__name__)


class LoadState(enum.Enum):
    PENDING = "pending"
    STAGING = "staging"
    LOADED = "loaded"
    MERGED = "merged"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


def generate_staging_name(db_name: str) -> str:
    """``<target>_temp_<token>``; the token is unique per call."""
    token = uuid.uuid4().hex[: config.STAGING_TOKEN_LENGTH]
    return f"{db_name}{config.STAGING_SEPARATOR}{token}"


def check_manifest_columns(table_config: TableConfig, manifest: Manifest) -> None:
    """Exported CSV columns must match the loaded items, name for name, in order.

    COPY maps CSV fields by position, so a reordered export would silently
    load values into the wrong columns.
    """
    expected = table_config.column_names
    if manifest.columns != expected:
        raise ConfigurationError(
            f'Columns of table "{table_config.table_id}" do not match its export: '
            f"configured {expected}, exported {manifest.columns}. "
            f"Edit and re-save the configuration to fix the problem.",
            data={"configured": expected, "exported": manifest.columns},
        )


def check_input_mapping(table_config: TableConfig, input_mapping: dict[str, list[str]]) -> None:
    """The table must be in the input mapping with the same item list."""
    if table_config.table_id not in input_mapping:
        raise ConfigurationError(
            f'Table "{table_config.table_id}" is missing from input mapping. '
            f"Reloading the page and re-saving configuration may fix the problem."
        )
    mapped = input_mapping[table_config.table_id]
    configured = [item.name for item in table_config.items]
    if mapped != configured:
        raise ConfigurationError(
            f'Columns in configuration of table "{table_config.table_id}" do not match '
            f"with input mapping. Edit and re-save the configuration to fix the problem.",
            data={"configured": configured, "input_mapping": mapped},
        )


class TableLoader:
    """Runs one table through the load state machine.

    Holds no per-table state between calls apart from the ``states`` record
    kept for reporting.
    """

    def __init__(
        self,
        executor: SqlExecutor,
        data_dir: str,
        event_tracker: LoadEventTracker,
        input_mapping: dict[str, list[str]] | None = None,
        bulk_loader: BulkLoader | None = None,
    ) -> None:
        self.executor = executor
        self.data_dir = data_dir
        self.event_tracker = event_tracker
        self.input_mapping = input_mapping or {}
        self.writer = TableWriter(executor)
        self.bulk_loader = bulk_loader or BulkLoader(executor)
        self.states: dict[str, LoadState] = {}

    def process_table(self, table_config: TableConfig) -> str | None:
        """Load one table.

        Returns:
            The table id when the table was loaded, None when skipped.

        Raises:
            UserError: Configuration, schema, query or load failures.
            InternalError: Anything unclassified.
        """
        table_id = table_config.table_id
        self.states[table_id] = LoadState.PENDING

        try:
            with self.event_tracker.track("TABLE_TOTAL", table_config) as total_event:
                if not table_config.export or not table_config.columns:
                    reason = "export disabled" if not table_config.export else "no loaded columns"
                    logger.info("Skipping table %s: %s", table_id, reason)
                    total_event.status = "SKIPPED"
                    total_event.event_detail = reason
                    self.states[table_id] = LoadState.SKIPPED
                    return None

                manifest = load_manifest(self.data_dir, table_id)
                check_manifest_columns(table_config, manifest)
                if self.input_mapping:
                    check_input_mapping(table_config, self.input_mapping)

                if table_config.incremental:
                    rows = self.load_incremental(table_config, manifest)
                else:
                    rows = self.load_full(table_config, manifest)
                total_event.rows_loaded = rows or 0

            self.states[table_id] = LoadState.DONE
            logger.info("Successfully loaded %s into %s", table_id, table_config.db_name)
            return table_id

        except UserError:
            self.states[table_id] = LoadState.FAILED
            raise
        except pyodbc.Error as e:
            self.states[table_id] = LoadState.FAILED
            raise QueryError(str(e)) from e
        except Exception as e:
            self.states[table_id] = LoadState.FAILED
            logger.exception("Unexpected failure loading %s", table_id)
            raise InternalError(f"{type(e).__name__}: {e}") from e

    def load_full(self, table_config: TableConfig, manifest: Manifest) -> int | None:
        """DROP -> CREATE -> COPY straight into the target table."""
        with self.event_tracker.track("CREATE", table_config) as event:
            self.writer.drop(table_config.db_name)
            self.writer.create(table_config)
            event.table_created = True

        with self.event_tracker.track("COPY", table_config) as event:
            rows = self.bulk_loader.load_from_s3(manifest, table_config)
            event.rows_loaded = rows or 0
        self.states[table_config.table_id] = LoadState.LOADED
        return rows

    def load_incremental(self, table_config: TableConfig, manifest: Manifest) -> int | None:
        """COPY into a fresh staging table, then merge it into the target."""
        table_id = table_config.table_id
        staging_config = table_config.with_db_name(generate_staging_name(table_config.db_name))
        self.states[table_id] = LoadState.STAGING

        with self.event_tracker.track("STAGING", staging_config) as event:
            self.writer.drop(staging_config.db_name)
            self.writer.create(staging_config)
            event.table_created = True

        with self.event_tracker.track("COPY", staging_config) as event:
            rows = self.bulk_loader.load_from_s3(manifest, staging_config)
            event.rows_loaded = rows or 0
        self.states[table_id] = LoadState.LOADED

        with self.event_tracker.track("MERGE", table_config) as event:
            if not self.writer.exists(table_config.db_name):
                self.writer.create(table_config)
                event.table_created = True
            result = upsert(self.executor, staging_config, table_config.db_name)
            event.rows_updated = max(result.updated, 0)
            event.rows_inserted = max(result.inserted, 0)
        self.states[table_id] = LoadState.MERGED
        return rows

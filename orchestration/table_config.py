"""TableConfig + TableConfigLoader from ``<data_dir>/config.json``.

Drives table naming, column DDL, COPY targets and merge keys. The loader
validates everything that can be checked without touching the warehouse, so
configuration problems surface as ConfigurationError before any DDL runs.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace

import config
from connections import quote_identifier
from errors import ConfigurationError

logger = logging.getLogger(__name__)

IGNORE_TYPE = "ignore"

ALLOWED_TYPES = frozenset({
    "int", "int2", "int4", "int8",
    "smallint", "integer", "bigint",
    "decimal", "real", "double precision", "numeric",
    "float", "float4", "float8",
    "boolean",
    "char", "character", "nchar", "bpchar",
    "varchar", "character varying", "nvarchar", "text",
    "date", "timestamp", "timestamp without timezone",
})


@dataclass(frozen=True)
class ColumnConfig:
    """One entry of a table's ``items`` list."""

    name: str
    db_name: str
    type: str
    size: str | None = None
    nullable: bool = False
    default: str | None = None

    @property
    def is_ignored(self) -> bool:
        return self.type.lower() == IGNORE_TYPE


@dataclass(frozen=True)
class TableConfig:
    """Configuration for a single table load."""

    table_id: str
    db_name: str
    items: tuple[ColumnConfig, ...] = ()
    primary_key: tuple[str, ...] = ()
    incremental: bool = False
    export: bool = True

    @property
    def columns(self) -> list[ColumnConfig]:
        """Columns that take part in DDL, COPY and merge (ignored ones dropped)."""
        return [c for c in self.items if not c.is_ignored]

    @property
    def column_names(self) -> list[str]:
        """Exported (CSV) names of the loaded columns, in load order."""
        return [c.name for c in self.columns]

    @property
    def target_columns(self) -> list[str]:
        return [c.db_name for c in self.columns]

    def with_db_name(self, db_name: str) -> TableConfig:
        """Same column spec pointed at another table (staging)."""
        return replace(self, db_name=db_name)


@dataclass
class JobConfig:
    """Everything a writer run needs from config.json."""

    data_dir: str
    action: str = "run"
    db: dict = field(default_factory=dict)
    tables: list[TableConfig] = field(default_factory=list)
    # storage.input.tables: {source: [columns]}; empty when not provided
    input_mapping: dict[str, list[str]] = field(default_factory=dict)


def parse_column(raw: dict, table_id: str) -> ColumnConfig:
    col_type = str(raw.get("type") or "").strip()
    name = raw.get("name")
    if not name:
        raise ConfigurationError(f'Column without a name in table "{table_id}".')
    size = raw.get("size")
    default = raw.get("default")
    return ColumnConfig(
        name=str(name),
        db_name=str(raw.get("dbName") or name),
        type=col_type,
        size=str(size) if size not in (None, "") else None,
        nullable=bool(raw.get("nullable")),
        default=str(default) if default not in (None, "") else None,
    )


def parse_table(raw: dict) -> TableConfig:
    """Build and validate a TableConfig from a ``tables[]`` entry or row config."""
    table_id = raw.get("tableId")
    if not table_id:
        raise ConfigurationError("Table configuration is missing tableId.")
    db_name = raw.get("dbName") or table_id

    items = tuple(parse_column(item, table_id) for item in raw.get("items") or [])
    table = TableConfig(
        table_id=str(table_id),
        db_name=str(db_name),
        items=items,
        primary_key=tuple(str(pk) for pk in raw.get("primaryKey") or []),
        incremental=bool(raw.get("incremental", False)),
        export=bool(raw.get("export", True)),
    )
    _validate_table(table)
    return table


def _validate_table(table: TableConfig) -> None:
    # Tables that will be skipped are never checked
    if not table.export or not table.columns:
        return

    for column in table.columns:
        if column.type.lower() not in ALLOWED_TYPES:
            raise ConfigurationError(
                f'Unsupported type "{column.type}" of column "{column.name}" '
                f'in table "{table.table_id}". '
                f"Allowed types: {', '.join(sorted(ALLOWED_TYPES))}."
            )

    # Identifiers must fit Redshift's limit, including the staging suffix
    # appended on incremental loads.
    suffix_len = len(config.STAGING_SEPARATOR) + config.STAGING_TOKEN_LENGTH
    longest = table.db_name + ("x" * suffix_len if table.incremental else "")
    try:
        quote_identifier(longest)
        for column in table.columns:
            quote_identifier(column.db_name)
    except ValueError as e:
        raise ConfigurationError(f'Invalid identifier in table "{table.table_id}": {e}') from None

    target_columns = set(table.target_columns)
    unknown_pk = [pk for pk in table.primary_key if pk not in target_columns]
    if unknown_pk:
        raise ConfigurationError(
            f'Primary key column(s) {unknown_pk} of table "{table.table_id}" '
            f"are not among its loaded columns."
        )

    if table.incremental and not table.primary_key and table.columns:
        logger.warning(
            "Incremental table %s has no primary key; merge will only append rows",
            table.table_id,
        )


class TableConfigLoader:
    """Loads the job configuration from ``<data_dir>/config.json``.

    Supports both layouts the orchestrator produces: ``parameters.tables``
    (many tables per job) and a row config where ``parameters`` itself
    describes one table.
    """

    def __init__(self, data_dir: str) -> None:
        self.data_dir = data_dir

    @property
    def config_path(self) -> str:
        return os.path.join(self.data_dir, config.CONFIG_FILE_NAME)

    def read_raw(self) -> dict:
        try:
            with open(self.config_path, encoding="utf-8") as fh:
                return json.load(fh)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file {self.config_path} not found.") from None
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Configuration file {self.config_path} is not valid JSON: {e}") from None

    def load(self, raw: dict | None = None) -> JobConfig:
        """Parse the job config. ``raw`` skips re-reading an already read file."""
        if raw is None:
            raw = self.read_raw()
        parameters = raw.get("parameters") or {}
        action = raw.get("action") or "run"

        tables: list[TableConfig] = []
        if "tables" in parameters:
            tables = [parse_table(t) for t in parameters.get("tables") or []]
        elif parameters.get("tableId"):
            tables = [parse_table(parameters)]

        input_tables = ((raw.get("storage") or {}).get("input") or {}).get("tables") or []
        input_mapping = {
            str(t["source"]): list(t.get("columns") or [])
            for t in input_tables
            if t.get("source")
        }

        job = JobConfig(
            data_dir=self.data_dir,
            action=action,
            db=parameters.get("db") or {},
            tables=tables,
            input_mapping=input_mapping,
        )
        logger.info(
            "Loaded %d table config(s) for action '%s'", len(job.tables), job.action,
        )
        return job

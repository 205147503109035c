"""Writer application: action dispatch and run result.

One application per process. It owns the WarehouseSession (opened lazily on
first use, so a bad ``parameters.db`` fails before any connect attempt) and
the run result.

Actions:
  run             load every configured table, in order, stop at the first failure
  testConnection  ``select current_date`` on a fresh connection
  getTablesInfo   column catalog of the schema + orphaned staging tables
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Callable

import connectorx as cx

from connections import ConnectionParams, WarehouseSession
from data_load.sql_executor import SqlExecutor
from errors import ConfigurationError, UserError
from observability.event_tracker import LoadEventTracker
from orchestration.table_config import JobConfig
from orchestration.table_load import TableLoader
from schema.introspection import read_schema_columns, tables_info
from schema.staging_cleanup import find_orphaned_staging_tables

logger = logging.getLogger(__name__)


class Action(enum.Enum):
    RUN = "run"
    TEST_CONNECTION = "testConnection"
    GET_TABLES_INFO = "getTablesInfo"

    @classmethod
    def parse(cls, value: str) -> Action:
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Action '{value}' does not exist.") from None


@dataclass
class RunResult:
    """Outcome of the run action. ``uploaded`` grows as tables complete.

    A returned RunResult always has ``status == "success"``. A failed table
    ends the run with the raised UserError / InternalError instead, which
    main_load maps to exit code 1 or 2.
    """

    status: str = "success"
    uploaded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"status": self.status, "uploaded": list(self.uploaded)}


@dataclass
class ConnectionCheckResult:
    status: str = "success"

    def to_dict(self) -> dict:
        return {"status": self.status}


@dataclass
class TablesInfoResult:
    tables: dict[str, dict] = field(default_factory=dict)
    orphaned_staging_tables: list[str] = field(default_factory=list)
    status: str = "success"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "tables": self.tables,
            "orphanedStagingTables": list(self.orphaned_staging_tables),
        }


class WriterApplication:
    """Dispatches the configured action against one warehouse session."""

    def __init__(
        self,
        job: JobConfig,
        session_factory: Callable[[ConnectionParams], WarehouseSession] = WarehouseSession,
        read_sql: Callable = cx.read_sql,
        event_tracker: LoadEventTracker | None = None,
    ) -> None:
        self.job = job
        self.action = Action.parse(job.action)
        self._session_factory = session_factory
        self._read_sql = read_sql
        self._session: WarehouseSession | None = None
        self.event_tracker = event_tracker or LoadEventTracker()

    @property
    def params(self) -> ConnectionParams:
        return ConnectionParams.from_dict(self.job.db)

    @property
    def session(self) -> WarehouseSession:
        if self._session is None:
            self._session = self._session_factory(self.params)
        return self._session

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def run(self) -> RunResult | ConnectionCheckResult | TablesInfoResult:
        handlers = {
            Action.RUN: self.run_action,
            Action.TEST_CONNECTION: self.test_connection_action,
            Action.GET_TABLES_INFO: self.get_tables_info_action,
        }
        logger.info("Running action '%s'", self.action.value)
        return handlers[self.action]()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def run_action(self) -> RunResult:
        """Load every table in configuration order. Fail-fast."""
        result = RunResult()
        if not self.job.tables:
            logger.warning("No tables configured; nothing to load")
            return result

        loader = TableLoader(
            SqlExecutor(self.session),
            data_dir=self.job.data_dir,
            event_tracker=self.event_tracker,
            input_mapping=self.job.input_mapping,
        )
        try:
            for table_config in self.job.tables:
                uploaded = loader.process_table(table_config)
                if uploaded is not None:
                    result.uploaded.append(uploaded)
        finally:
            self.event_tracker.log_summary()

        logger.info("Run complete: %d table(s) uploaded", len(result.uploaded))
        return result

    def test_connection_action(self) -> ConnectionCheckResult:
        params = self.params
        try:
            with self.session.cursor() as cur:
                cur.execute("select current_date")
                cur.fetchone()
        except Exception as e:
            raise UserError(f"Connection failed: '{e}'") from e
        logger.info("Connection to %s:%s succeeded", params.host, params.port)
        return ConnectionCheckResult()

    def get_tables_info_action(self) -> TablesInfoResult:
        columns = read_schema_columns(self.params, read_sql=self._read_sql)
        info = tables_info(columns)
        orphaned = find_orphaned_staging_tables(list(info))
        orphaned_names = {o.name for o in orphaned}
        return TablesInfoResult(
            tables={name: t for name, t in info.items() if name not in orphaned_names},
            orphaned_staging_tables=sorted(orphaned_names),
        )

"""Shared fixtures: an in-memory stand-in for the Redshift pyodbc connection.

FakeWarehouse records every statement sent through any of its connections and
can be told to fail statements (raising pyodbc.Error) or to answer queries
with canned rows.
"""

from __future__ import annotations

import io
import json
from pathlib import Path

import pyodbc
import pytest

from connections import ConnectionParams, WarehouseSession
from data_load.sql_executor import SqlExecutor

PARAMS = ConnectionParams(
    host="redshift.example.com",
    database="dev",
    schema="public",
    user="writer",
    password="secret",
)

DB_CONFIG = {
    "host": "redshift.example.com",
    "port": 5439,
    "database": "dev",
    "schema": "public",
    "user": "writer",
    "#password": "secret",
}

_WRITE_PREFIXES = ("DROP", "CREATE", "COPY", "UPDATE", "DELETE", "INSERT")


class FakeCursor:
    def __init__(self, warehouse: FakeWarehouse) -> None:
        self.warehouse = warehouse
        self.description = None
        self.rowcount = -1
        self._rows: list[tuple] = []

    def execute(self, statement, *params):
        self.warehouse.statements.append(statement)
        self.warehouse.params.append(params)
        for failure in self.warehouse.failures:
            if failure["match"] in statement and failure["remaining"] > 0:
                failure["remaining"] -= 1
                raise pyodbc.Error("HY000", failure["message"])

        self.description = None
        self._rows = []
        self.rowcount = self.warehouse.default_rowcount
        for match, (columns, rows) in self.warehouse.responses.items():
            if match in statement:
                self.description = [(c,) for c in columns]
                self._rows = list(rows)
                self.rowcount = len(rows)
                break
        return self

    def fetchall(self):
        return list(self._rows)

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def close(self):
        pass


class FakeConnection:
    def __init__(self, warehouse: FakeWarehouse) -> None:
        self.warehouse = warehouse
        self.closed = False

    def cursor(self):
        return FakeCursor(self.warehouse)

    def close(self):
        self.closed = True


class FakeWarehouse:
    def __init__(self) -> None:
        self.statements: list[str] = []
        self.params: list[tuple] = []
        self.failures: list[dict] = []
        self.responses: dict[str, tuple[list[str], list[tuple]]] = {}
        self.connections: list[FakeConnection] = []
        self.default_rowcount = 0

    def connect(self, params: ConnectionParams) -> FakeConnection:
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    def fail(self, match: str, times: int = 1, message: str = "server closed the connection") -> None:
        """Raise pyodbc.Error for the next ``times`` statements containing ``match``."""
        self.failures.append({"match": match, "remaining": times, "message": message})

    def respond(self, match: str, columns: list[str], rows: list[tuple]) -> None:
        """Answer statements containing ``match`` with the given rows."""
        self.responses[match] = (columns, rows)

    @property
    def writes(self) -> list[str]:
        """DDL/DML/COPY statements only (catalog reads filtered out)."""
        return [s for s in self.statements if s.lstrip().upper().startswith(_WRITE_PREFIXES)]


class FakeS3Client:
    def __init__(self, manifests: dict[str, dict]) -> None:
        self.manifests = manifests
        self.requests: list[tuple[str, str]] = []

    def get_object(self, Bucket, Key):
        self.requests.append((Bucket, Key))
        body = json.dumps(self.manifests[Key]).encode("utf-8")
        return {"Body": io.BytesIO(body)}


@pytest.fixture(autouse=True)
def sleeps(monkeypatch) -> list[float]:
    """Record retry sleeps instead of sleeping."""
    calls: list[float] = []
    monkeypatch.setattr("data_load.sql_executor.time.sleep", calls.append)
    return calls


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def session(warehouse) -> WarehouseSession:
    return WarehouseSession(PARAMS, connect=warehouse.connect)


@pytest.fixture
def executor(session) -> SqlExecutor:
    return SqlExecutor(session)


def s3_manifest(columns: list[str], sliced: bool = False, key: str = "exports/simple.csv.gz", **extra) -> dict:
    manifest = {
        "columns": columns,
        "s3": {
            "isSliced": sliced,
            "region": "us-east-1",
            "bucket": "export-bucket",
            "key": key,
            "credentials": {
                "access_key_id": "AKIAEXAMPLE",
                "secret_access_key": "SECRETEXAMPLE",
                "session_token": "TOKENEXAMPLE",
            },
        },
    }
    manifest.update(extra)
    return manifest


def write_job(data_dir: Path, job: dict, manifests: dict[str, dict] | None = None) -> Path:
    """Lay out ``config.json`` and ``in/tables/<id>.csv.manifest`` files."""
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / "config.json").write_text(json.dumps(job), encoding="utf-8")
    tables_dir = data_dir / "in" / "tables"
    tables_dir.mkdir(parents=True, exist_ok=True)
    for table_id, manifest in (manifests or {}).items():
        (tables_dir / f"{table_id}.csv.manifest").write_text(json.dumps(manifest), encoding="utf-8")
    return data_dir


SIMPLE_TABLE = {
    "tableId": "simple",
    "dbName": "simple",
    "export": True,
    "incremental": False,
    "primaryKey": [],
    "items": [
        {"name": "id", "dbName": "id", "type": "int", "size": "", "nullable": False, "default": ""},
        {"name": "name", "dbName": "name", "type": "varchar", "size": "255", "nullable": True, "default": ""},
    ],
}

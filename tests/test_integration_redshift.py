"""Round-trip against a real Redshift cluster and S3 export.

Runs only when REDSHIFT_TEST_HOST and the S3 fixture variables are set:

    REDSHIFT_TEST_HOST, REDSHIFT_TEST_DATABASE, REDSHIFT_TEST_SCHEMA,
    REDSHIFT_TEST_USER, REDSHIFT_TEST_PASSWORD,
    S3_TEST_BUCKET, S3_TEST_REGION, S3_TEST_KEY (gzip CSV with header: id,name; 3 rows),
    AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, AWS_SESSION_TOKEN
"""

from __future__ import annotations

import os

import pytest

from connections import ConnectionParams, WarehouseSession
from data_load.copy_loader import BulkLoader
from data_load.manifest import Manifest
from data_load.sql_executor import SqlExecutor
from merge.engine import upsert
from orchestration.table_config import parse_table
from schema.table_writer import TableWriter

from conftest import SIMPLE_TABLE, s3_manifest

_REQUIRED_ENV = (
    "REDSHIFT_TEST_HOST", "REDSHIFT_TEST_DATABASE", "REDSHIFT_TEST_SCHEMA",
    "REDSHIFT_TEST_USER", "REDSHIFT_TEST_PASSWORD",
    "S3_TEST_BUCKET", "S3_TEST_REGION", "S3_TEST_KEY",
    "AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN",
)

pytestmark = pytest.mark.skipif(
    any(not os.getenv(name) for name in _REQUIRED_ENV),
    reason="Redshift integration environment not configured",
)


@pytest.fixture
def live_executor():
    params = ConnectionParams(
        host=os.environ["REDSHIFT_TEST_HOST"],
        database=os.environ["REDSHIFT_TEST_DATABASE"],
        schema=os.environ["REDSHIFT_TEST_SCHEMA"],
        user=os.environ["REDSHIFT_TEST_USER"],
        password=os.environ["REDSHIFT_TEST_PASSWORD"],
    )
    session = WarehouseSession(params)
    yield SqlExecutor(session)
    session.close()


def _live_manifest() -> Manifest:
    raw = s3_manifest(["id", "name"], key=os.environ["S3_TEST_KEY"])
    raw["s3"].update(
        bucket=os.environ["S3_TEST_BUCKET"],
        region=os.environ["S3_TEST_REGION"],
        credentials={
            "access_key_id": os.environ["AWS_ACCESS_KEY_ID"],
            "secret_access_key": os.environ["AWS_SECRET_ACCESS_KEY"],
            "session_token": os.environ["AWS_SESSION_TOKEN"],
        },
    )
    return Manifest.from_dict(raw, "simple")


def _rows(executor: SqlExecutor, table: str) -> list[tuple]:
    return [
        (r["id"], r["name"])
        for r in executor.fetch_all(f'SELECT "id", "name" FROM "{table}" ORDER BY "id"')
    ]


def test_full_load_round_trip(live_executor):
    table = parse_table({**SIMPLE_TABLE, "dbName": "it_simple"})
    writer = TableWriter(live_executor)
    writer.drop(table.db_name)
    writer.create(table)
    try:
        BulkLoader(live_executor).load_from_s3(_live_manifest(), table)
        assert len(_rows(live_executor, table.db_name)) == 3
    finally:
        writer.drop(table.db_name)


def test_merge_updates_and_inserts(live_executor):
    target = parse_table({**SIMPLE_TABLE, "dbName": "it_target", "incremental": True, "primaryKey": ["id"]})
    staging = target.with_db_name("it_target_temp_0000000000001")
    writer = TableWriter(live_executor)
    for table in (target, staging):
        writer.drop(table.db_name)
        writer.create(table)
    try:
        live_executor.execute("INSERT INTO \"it_target\" VALUES (1, 'A'), (2, 'B')")
        live_executor.execute("INSERT INTO \"it_target_temp_0000000000001\" VALUES (2, 'B2'), (3, 'C')")

        upsert(live_executor, staging, target.db_name)

        assert _rows(live_executor, "it_target") == [(1, "A"), (2, "B2"), (3, "C")]
        assert not writer.exists(staging.db_name)
    finally:
        writer.drop(staging.db_name)
        writer.drop(target.db_name)

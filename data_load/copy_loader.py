"""Redshift COPY wrapper: S3 export -> table.

Builds the manifest-driven COPY statement and runs it through the
SqlExecutor (redaction, retry, reconnect).

COPY contract (must stay byte-compatible with the exporter's CSV):
  - comma delimited, double-quote quoted CSV
  - literal ``NULL`` token for nulls
  - ACCEPTANYDATE: lenient date parsing instead of rejecting the row
  - TRUNCATECOLUMNS: oversize values are cut to the column width
  - GZIP compressed input
  - single-file exports carry a header row (IGNOREHEADER 1); sliced exports
    are read through a manifest-of-parts and have no header (MANIFEST)

Sliced exports with zero parts mean the source table was empty. COPY with an
empty manifest fails on the Redshift side, so the loader checks the parts list
first and skips the COPY entirely.

Credentials are the exporter's short-lived session token, inlined into the
statement. They never reach a log line: SqlExecutor redacts before logging.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

import config
from connections import quote_identifier, quote_literal
from errors import LoadError, QueryError

if TYPE_CHECKING:
    from data_load.manifest import Manifest, S3Location
    from data_load.sql_executor import SqlExecutor
    from orchestration.table_config import TableConfig

logger = logging.getLogger(__name__)


def build_copy_sql(table_name: str, location: S3Location) -> str:
    """Build the COPY statement for one table.

    Args:
        table_name: Target (or staging) table name, unquoted.
        location: S3 location and credentials from the export manifest.

    Returns:
        Single-line COPY statement ending with ``;``.
    """
    creds = location.credentials
    credentials = (
        f"aws_access_key_id={creds.access_key_id};"
        f"aws_secret_access_key={creds.secret_access_key};"
        f"token={creds.session_token}"
    )
    command = f"COPY {quote_identifier(table_name)} FROM {quote_literal(location.url)}"
    command += f" CREDENTIALS {quote_literal(credentials)}"
    command += (
        f" REGION AS {quote_literal(location.region)}"
        f" DELIMITER {quote_literal(config.COPY_DELIMITER)}"
        f" CSV QUOTE {quote_literal(config.COPY_QUOTE)}"
    )
    command += f" NULL AS {quote_literal(config.COPY_NULL_TOKEN)} ACCEPTANYDATE TRUNCATECOLUMNS"

    # Sliced files use manifest and no header
    if location.is_sliced:
        command += " MANIFEST"
    else:
        command += " IGNOREHEADER 1"
    command += " GZIP;"
    return command


def create_s3_client(location: S3Location):
    """boto3 S3 client authenticated with the export's session credentials."""
    kwargs = dict(
        region_name=location.region,
        aws_access_key_id=location.credentials.access_key_id,
        aws_secret_access_key=location.credentials.secret_access_key,
        aws_session_token=location.credentials.session_token,
    )
    if config.S3_ENDPOINT_URL:
        kwargs["endpoint_url"] = config.S3_ENDPOINT_URL
    return boto3.client("s3", **kwargs)


def fetch_slice_manifest(location: S3Location, client_factory: Callable = create_s3_client) -> dict:
    """Download and parse the manifest-of-parts of a sliced export.

    Raises:
        LoadError: If the object cannot be read or is not valid JSON.
    """
    try:
        client = client_factory(location)
        response = client.get_object(Bucket=location.bucket, Key=location.key)
        body = response["Body"].read()
        return json.loads(body)
    except (ClientError, BotoCoreError) as e:
        raise LoadError(f"Cannot download sliced manifest {location.url}: {e}") from e
    except (ValueError, TypeError) as e:
        raise LoadError(f"Sliced manifest {location.url} is not valid JSON: {e}") from e


class BulkLoader:
    """Loads a table from its S3 export. Keeps no state between calls."""

    def __init__(self, executor: SqlExecutor, client_factory: Callable | None = None) -> None:
        self.executor = executor
        self.client_factory = client_factory or create_s3_client

    def load_from_s3(self, manifest: Manifest, table_config: TableConfig) -> int | None:
        """COPY the export described by manifest into table_config.db_name.

        Returns:
            Rows loaded as reported by pg_last_copy_count(), 0 when a sliced
            export has no parts, None when the count could not be read.

        Raises:
            LoadError: On manifest download failure or COPY failure after retries.
        """
        location = manifest.s3
        table_name = table_config.db_name

        if location.is_sliced:
            parts = fetch_slice_manifest(location, self.client_factory)
            entries = parts.get("entries") or []
            if not entries:
                logger.info(
                    "Sliced export %s has no parts; skipping COPY into %s",
                    location.url, table_name,
                )
                return 0
            logger.info("Sliced export %s: %d part(s)", location.url, len(entries))

        try:
            self.executor.execute(build_copy_sql(table_name, location))
        except QueryError as e:
            raise LoadError(e.message, statement=e.statement, diagnostics=e.diagnostics) from e

        rows_copied = self._last_copy_count()
        if rows_copied is not None:
            logger.info("COPY loaded %d rows into %s", rows_copied, table_name)
            if manifest.rows_count is not None and rows_copied != manifest.rows_count:
                logger.warning(
                    "COPY row count mismatch for %s: manifest rows_count=%d, loaded=%d",
                    table_name, manifest.rows_count, rows_copied,
                )
        return rows_copied

    def _last_copy_count(self) -> int | None:
        try:
            count = self.executor.fetch_one("SELECT pg_last_copy_count();")
        except Exception:
            logger.debug("Could not read pg_last_copy_count()", exc_info=True)
            return None
        return int(count) if count is not None else None

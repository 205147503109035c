"""Environment variables, COPY/merge constants, and tool-level defaults.

Job configuration (credentials, tables) comes from ``<data_dir>/config.json``
and is parsed by orchestration.table_config. This module only holds settings
that belong to the deployment, not to a single job.
"""

import os

from dotenv import load_dotenv

# Load .env from the working directory if present
load_dotenv()

# --- Warehouse Connection ---
# ODBC driver name as registered in odbcinst.ini
ODBC_DRIVER = os.getenv("ODBC_DRIVER", "Amazon Redshift (x64)")
DEFAULT_PORT = int(os.getenv("REDSHIFT_DEFAULT_PORT", "5439"))
# Seconds before a connect attempt gives up
CONNECT_TIMEOUT = int(os.getenv("REDSHIFT_CONNECT_TIMEOUT", "30"))
# TCP keepalive idle seconds, long COPY statements outlive firewall timeouts otherwise
KEEPALIVES_IDLE = int(os.getenv("REDSHIFT_KEEPALIVES_IDLE", "60"))

# ---------------------------------------------------------------------------
# Statement retry
# ---------------------------------------------------------------------------
# Attempts per statement. Between attempts the connection is rebuilt and the
# executor sleeps attempt_index ** 2 seconds (0s, 1s, ...).
QUERY_MAX_RETRIES = int(os.getenv("QUERY_MAX_RETRIES", "3"))

# Diagnostic view queried after a failed statement (COPY rejections land here)
LOAD_ERRORS_QUERY = "SELECT * FROM stl_load_errors WHERE query = pg_last_query_id();"

# --- Staging Tables ---
# Incremental loads COPY into <target><STAGING_SEPARATOR><token> and merge from there.
STAGING_SEPARATOR = "_temp_"
STAGING_TOKEN_LENGTH = 13

# Redshift identifier limit in bytes
MAX_IDENTIFIER_LENGTH = 127

# --- S3 / COPY Contract ---
COPY_DELIMITER = ","
COPY_QUOTE = '"'
COPY_NULL_TOKEN = "NULL"
# Optional override for S3-compatible endpoints (manifest download only)
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None

# --- Job Layout ---
CONFIG_FILE_NAME = "config.json"
# Manifests live at <data_dir>/in/tables/<tableId>.csv.manifest
MANIFEST_DIR = os.path.join("in", "tables")
MANIFEST_SUFFIX = ".csv.manifest"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

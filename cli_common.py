"""CLI common boilerplate: logging setup and shutdown reporting for main_load.py.

Import this module BEFORE any other project imports in main_*.py files.
Module-level code puts the project root on sys.path.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

# Ensure project root is on sys.path for imports
sys.path.insert(0, str(Path(__file__).parent))

import config

if TYPE_CHECKING:
    from connections import WarehouseSession

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


class MetadataFormatter(logging.Formatter):
    """LOG_FORMAT plus the ``extra={"metadata": ...}`` payload as JSON.

    Error records carry their structured data (failed statement, rows from
    stl_load_errors) in ``metadata``; it is appended after the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        metadata = getattr(record, "metadata", None)
        if metadata:
            text += " " + json.dumps(metadata, default=str, sort_keys=True)
        return text


def setup_logging(quiet: bool = False) -> logging.Handler:
    """Configure root logging.

    Args:
        quiet: Silence all logging (non-run actions print only their JSON
            answer on stdout).

    Returns:
        The installed handler.
    """
    root = logging.getLogger()
    if quiet:
        handler: logging.Handler = logging.NullHandler()
        root.addHandler(handler)
        root.setLevel(logging.CRITICAL + 1)
        return handler

    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

    # Console handler on stderr; stdout carries the JSON result
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(MetadataFormatter(LOG_FORMAT))
    root.addHandler(console)
    return console


def log_connection_overhead(session: WarehouseSession | None) -> None:
    """Log cumulative connection overhead at the end of a run."""
    if session is None:
        return
    total_ms, count, reconnects = session.overhead()
    if count > 0:
        logger.info(
            "Connection overhead: %.1f ms total across %d connection(s) "
            "(%.1f ms avg, %d reconnect(s))",
            total_ms, count, total_ms / count, reconnects,
        )


def shutdown(session: WarehouseSession | None) -> None:
    """Report connection overhead and close the session."""
    if session is None:
        return
    log_connection_overhead(session)
    session.close()

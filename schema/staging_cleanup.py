"""Orphaned staging table detection.

Incremental loads create ``<target>_temp_<token>`` staging tables. The merge
drops them as its last step, so a staging table that is still present means a
load failed between CREATE and the final DROP.

They are reported, never dropped: the rows in a leftover staging table are the
only record of what the failed load was about to merge. An operator decides
whether to drop it or re-run.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import config

logger = logging.getLogger(__name__)

_STAGING_PATTERN = re.compile(
    r"^(?P<target>.+)" + re.escape(config.STAGING_SEPARATOR)
    + r"(?P<token>[0-9a-f]{%d})$" % config.STAGING_TOKEN_LENGTH
)


@dataclass(frozen=True)
class OrphanedStagingTable:
    name: str
    target: str


def parse_staging_name(table_name: str) -> OrphanedStagingTable | None:
    """Return the staging table split into name/target, or None if it is not one."""
    match = _STAGING_PATTERN.match(table_name)
    if match is None:
        return None
    return OrphanedStagingTable(name=table_name, target=match.group("target"))


def find_orphaned_staging_tables(table_names: list[str]) -> list[OrphanedStagingTable]:
    """Pick leftover staging tables out of a schema's table list.

    Args:
        table_names: All table names of the schema.

    Returns:
        Staging tables found, in input order.
    """
    orphaned = []
    for table_name in table_names:
        staging = parse_staging_name(table_name)
        if staging is None:
            continue
        orphaned.append(staging)
        logger.warning(
            "Orphaned staging table %s (target %s) left by a failed incremental "
            "load; drop it manually once inspected",
            staging.name, staging.target,
        )

    if not orphaned:
        logger.debug("No orphaned staging tables found")
    return orphaned

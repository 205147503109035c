"""LoadEventTracker context manager -> in-memory event list + log lines.

Records exactly one event per step per table. All tables in a run share one
run id, generated when the tracker is created.

Usage:
    tracker = LoadEventTracker()
    with tracker.track("COPY", table_config) as event:
        event.rows_loaded = loader.load_from_s3(manifest, table_config) or 0
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from orchestration.table_config import TableConfig

logger = logging.getLogger(__name__)


@dataclass
class LoadEvent:
    """Mutable event object: load code sets row counts inside the with block."""

    event_type: str
    table_id: str
    db_name: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float = 0.0
    status: str = "SUCCESS"
    error_message: str | None = None
    event_detail: str | None = None
    rows_loaded: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    table_created: bool = False


class LoadEventTracker:
    """Tracks load events for one writer run."""

    def __init__(self, run_id: str | None = None) -> None:
        self.run_id = run_id or uuid.uuid4().hex
        self.events: list[LoadEvent] = []

    @contextmanager
    def track(self, event_type: str, table_config: TableConfig):
        """Context manager that yields a LoadEvent for the caller to populate."""
        event = LoadEvent(
            event_type=event_type,
            table_id=table_config.table_id,
            db_name=table_config.db_name,
        )
        event.started_at = datetime.now(timezone.utc)
        try:
            yield event
            # Preserve explicitly-set statuses (SKIPPED)
            if event.status not in ("FAILED", "SKIPPED"):
                event.status = "SUCCESS"
        except Exception as e:
            event.status = "FAILED"
            event.error_message = str(e)[:4000]
            raise
        finally:
            event.completed_at = datetime.now(timezone.utc)
            event.duration_ms = (
                (event.completed_at - event.started_at).total_seconds() * 1000
            )
            self._record(event)

    def _record(self, event: LoadEvent) -> None:
        self.events.append(event)
        level = logging.ERROR if event.status == "FAILED" else logging.INFO
        logger.log(
            level,
            "[%s] %s %s -> %s: %s in %.1f ms (rows=%d)%s",
            self.run_id[:8], event.event_type, event.table_id, event.db_name,
            event.status, event.duration_ms, event.rows_loaded,
            f" {event.event_detail}" if event.event_detail else "",
        )

    def summary(self) -> dict[str, int]:
        """Count of events per status."""
        counts: dict[str, int] = {}
        for event in self.events:
            counts[event.status] = counts.get(event.status, 0) + 1
        return counts

    def log_summary(self) -> None:
        total_ms = sum(e.duration_ms for e in self.events)
        logger.info(
            "Run %s: %d event(s) in %.1f ms, %s",
            self.run_id, len(self.events), total_ms,
            ", ".join(f"{k}={v}" for k, v in sorted(self.summary().items())) or "no events",
        )

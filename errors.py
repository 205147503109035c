"""Failure classification for the writer.

UserError subclasses are problems the caller can fix (configuration, data,
credentials) and map to exit code 1. InternalError marks faults in the writer
itself and maps to exit code 2. Anything else escaping the application is
wrapped into InternalError by the orchestrator.
"""

from __future__ import annotations


class WriterError(Exception):
    """Base class carrying a structured payload next to the message."""

    exit_code = 1

    def __init__(self, message: str, data: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data or {}


class UserError(WriterError):
    """User-caused failure: fix the configuration or the data and rerun."""


class ConfigurationError(UserError):
    """Invalid or inconsistent configuration. Never retried."""


class SchemaError(ConfigurationError):
    """Table definition that cannot be turned into DDL."""


class QueryError(UserError):
    """Statement failed after all retries.

    ``statement`` is already redacted. ``diagnostics`` holds the rows read from
    ``stl_load_errors`` for the failed query, if any were available.
    """

    def __init__(
        self,
        message: str,
        statement: str = "",
        diagnostics: list[dict] | None = None,
    ) -> None:
        super().__init__(
            message,
            {"query": statement, "redshift_errors": diagnostics or []},
        )
        self.statement = statement
        self.diagnostics = diagnostics or []


class LoadError(QueryError):
    """COPY from S3 failed, or the sliced manifest could not be read."""


class InternalError(WriterError):
    """Unexpected fault inside the writer."""

    exit_code = 2

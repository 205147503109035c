"""Export manifests: where the CSV lives in S3 and how to read it.

The upstream exporter writes ``<data_dir>/in/tables/<tableId>.csv.manifest``
next to each export. Only the fields the writer consumes are modelled here.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

import config
from errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class S3Credentials:
    """Short-lived federation token for the export bucket."""

    access_key_id: str
    secret_access_key: str
    session_token: str

    def __repr__(self) -> str:
        return "S3Credentials(access_key_id=***, secret_access_key=***, session_token=***)"


@dataclass(frozen=True)
class S3Location:
    is_sliced: bool
    region: str
    bucket: str
    key: str
    credentials: S3Credentials

    @property
    def path(self) -> str:
        """``bucket/key`` as used in the COPY source URL."""
        return f"{self.bucket}/{self.key}"

    @property
    def url(self) -> str:
        return f"s3://{self.path}"


@dataclass(frozen=True)
class Manifest:
    columns: list[str] = field(default_factory=list)
    s3: S3Location | None = None
    # Exporter metadata; used for the post-COPY row count check when present
    rows_count: int | None = None

    @classmethod
    def from_dict(cls, raw: dict, table_id: str = "") -> Manifest:
        s3 = raw.get("s3")
        if not isinstance(s3, dict):
            raise ConfigurationError(f'Manifest of table "{table_id}" has no s3 section.')
        creds = s3.get("credentials") or {}
        try:
            location = S3Location(
                is_sliced=s3.get("isSliced") is True,
                region=str(s3["region"]),
                bucket=str(s3["bucket"]),
                key=str(s3["key"]),
                credentials=S3Credentials(
                    access_key_id=str(creds["access_key_id"]),
                    secret_access_key=str(creds["secret_access_key"]),
                    session_token=str(creds["session_token"]),
                ),
            )
        except KeyError as e:
            raise ConfigurationError(
                f'Manifest of table "{table_id}" is missing s3 field {e.args[0]}.'
            ) from None

        rows_count = raw.get("rows_count")
        if rows_count is not None:
            try:
                rows_count = int(rows_count)
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f'Manifest of table "{table_id}" has a non-numeric rows_count: {rows_count!r}.'
                ) from None
        return cls(
            columns=[str(c) for c in raw.get("columns") or []],
            s3=location,
            rows_count=rows_count,
        )


def manifest_path(data_dir: str, table_id: str) -> str:
    return os.path.join(data_dir, config.MANIFEST_DIR, table_id + config.MANIFEST_SUFFIX)


def load_manifest(data_dir: str, table_id: str) -> Manifest:
    """Read and parse the export manifest for a table."""
    path = manifest_path(data_dir, table_id)
    try:
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
    except FileNotFoundError:
        raise ConfigurationError(
            f'Manifest for table "{table_id}" not found at {path}.'
        ) from None
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'Manifest for table "{table_id}" is not valid JSON: {e}') from None

    manifest = Manifest.from_dict(raw, table_id)
    logger.debug(
        "Manifest for %s: %d column(s), sliced=%s, %s",
        table_id, len(manifest.columns), manifest.s3.is_sliced, manifest.s3.url,
    )
    return manifest

"""
JSON snapshots of the whole relational state.

A snapshot is one timestamped document holding every row of every user-data
table. One copy lives next to the database, one on the mirror; the freshest
one wins at boot.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional

from dateutil.parser import isoparse

from sitestore.db import SqlDbClient
from sitestore.errors import MirrorError, MirrorNotFound, SnapshotParseError
from sitestore.mirror import MirrorClient

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "database-backup.json"

SNAPSHOT_TABLES = ("blocks", "documents", "sections", "subsections", "admin_users")

# Parents first so references resolve as soon as each table lands.
RESTORE_ORDER = ("sections", "subsections", "blocks", "documents")

SECRET_COLUMNS = {"admin_users": ("password_hash",)}


@dataclass
class Snapshot:
    timestamp: datetime
    tables: dict = field(default_factory=dict)

    def rows(self, table: str) -> list[dict]:
        return self.tables.get(table, [])


@dataclass
class RestoreReport:
    restored: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    failed: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize(db: SqlDbClient) -> Snapshot:
    tables = {
        table: json.loads(
            json.dumps(
                db.dump_table(table, exclude=SECRET_COLUMNS.get(table, ())),
                default=_json_default,
            )
        )
        for table in SNAPSHOT_TABLES
    }
    return Snapshot(timestamp=datetime.now(timezone.utc), tables=tables)


def encode(snapshot: Snapshot) -> bytes:
    document = {"timestamp": snapshot.timestamp.isoformat()}
    document.update(snapshot.tables)
    return json.dumps(
        document, default=_json_default, ensure_ascii=False, indent=2
    ).encode("utf-8")


def decode(data: bytes) -> Snapshot:
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise SnapshotParseError(f"snapshot is not valid JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise SnapshotParseError("snapshot root must be an object")

    raw_timestamp = document.get("timestamp")
    if not isinstance(raw_timestamp, str):
        raise SnapshotParseError("snapshot has no timestamp")
    try:
        timestamp = isoparse(raw_timestamp)
    except ValueError as exc:
        raise SnapshotParseError(f"bad snapshot timestamp {raw_timestamp!r}") from exc
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    tables = {}
    for table in SNAPSHOT_TABLES:
        if table not in document:
            continue
        rows = document[table]
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise SnapshotParseError(f"snapshot table {table} must be a list of objects")
        tables[table] = rows
    return Snapshot(timestamp=timestamp, tables=tables)


def restore(snapshot: Snapshot, db: SqlDbClient) -> RestoreReport:
    """
    Replace each table with the snapshot's rows.

    Every table is swapped in its own transaction. A failure rolls back that
    table only and is recorded in the report; the remaining tables are still
    restored. Tables absent from the snapshot are left untouched, and admin
    credentials are never restored because the snapshot carries no hashes.
    """
    report = RestoreReport()
    for table in RESTORE_ORDER:
        if table not in snapshot.tables:
            report.skipped.append(table)
            continue
        try:
            db.replace_table(table, snapshot.rows(table))
        except Exception as exc:
            logger.error("Failed to restore table %s: %s", table, exc)
            report.failed[table] = str(exc)
        else:
            report.restored.append(table)
    logger.info(
        "Restored snapshot from %s: restored=%s skipped=%s failed=%s",
        snapshot.timestamp.isoformat(),
        report.restored,
        report.skipped,
        sorted(report.failed),
    )
    return report


@dataclass
class SnapshotStore:
    """Reads and writes the local and mirrored copies of the snapshot."""

    path: str
    mirror: Optional[MirrorClient] = None

    def load_local(self) -> Optional[Snapshot]:
        if not os.path.isfile(self.path):
            return None
        with open(self.path, "rb") as f:
            data = f.read()
        try:
            return decode(data)
        except SnapshotParseError as exc:
            logger.warning("Discarding local snapshot %s: %s", self.path, exc)
            return None

    def load_remote(self) -> Optional[Snapshot]:
        if self.mirror is None:
            return None
        try:
            data = self.mirror.download(SNAPSHOT_NAME)
        except MirrorNotFound:
            logger.info("Mirror holds no snapshot")
            return None
        except MirrorError as exc:
            logger.warning("Could not fetch mirror snapshot: %s", exc)
            return None
        try:
            return decode(data)
        except SnapshotParseError as exc:
            logger.warning("Discarding mirror snapshot: %s", exc)
            return None

    def save(self, snapshot: Snapshot) -> bool:
        """
        Write the local copy, then mirror it best-effort.

        Returns True when the mirror copy was written too.
        """
        data = encode(snapshot)
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        # One temp file per save; concurrent saves must not share it.
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        if self.mirror is None:
            return False
        try:
            self.mirror.upload(data, SNAPSHOT_NAME)
        except MirrorError as exc:
            logger.warning("Snapshot not mirrored: %s", exc)
            return False
        return True

    def capture(self, db: SqlDbClient) -> bool:
        return self.save(serialize(db))

    def checkpoint(self, db: SqlDbClient) -> None:
        """Capture after a mutation; a failed local write is logged, not raised."""
        try:
            self.capture(db)
        except OSError:
            logger.exception("Failed to write local snapshot %s", self.path)

"""
Boot-time reconciliation between local disk, the mirror and the snapshots.

Runs once per process start:

1. Probe the local snapshot and, when the mirror answers, the remote one.
2. Select the newer snapshot (ties keep local, which costs no transfer).
3. Restore it table by table.
4. Download every mirror file missing from local disk, and optionally
   rebuild the document rows from the mirror listing (cold resync).
5. Insert seed rows that an older snapshot may predate.
6. Save a fresh snapshot when anything changed.

The mirror is never required: every mirror failure is logged and the process
carries on with local state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from sitestore.auth import hash_password
from sitestore.blocks import DEFAULT_BLOCKS, seed_row
from sitestore.db import SqlDbClient
from sitestore.errors import CorruptPayload, MirrorError, MirrorUnreachable
from sitestore.local_store import LocalFileStore
from sitestore.mirror import MirrorClient, RemoteEntry, fetch_verified
from sitestore.payloads import infer_file_type, title_from_filename
from sitestore.snapshot import (
    SNAPSHOT_NAME,
    RestoreReport,
    Snapshot,
    SnapshotStore,
    restore,
)

logger = logging.getLogger(__name__)

RESERVED_NAMES = {SNAPSHOT_NAME}

RESYNC_MODES = ("auto", "always", "never")


def is_reserved(name: str) -> bool:
    return name in RESERVED_NAMES or name.startswith(".")


def select_snapshot(
    local: Optional[Snapshot], remote: Optional[Snapshot]
) -> tuple[Optional[str], Optional[Snapshot]]:
    if local is None and remote is None:
        return None, None
    if remote is None:
        return "local", local
    if local is None:
        return "remote", remote
    if remote.timestamp > local.timestamp:
        return "remote", remote
    return "local", local


@dataclass
class ReconcileReport:
    snapshot_source: Optional[str] = None
    restore: Optional[RestoreReport] = None
    mirror_reachable: bool = False
    mirror_files: int = 0
    downloaded: list = field(default_factory=list)
    corrupt: list = field(default_factory=list)
    resynced: bool = False
    seeded_blocks: list = field(default_factory=list)
    seeded_admin: bool = False
    snapshot_saved: bool = False

    @property
    def changed(self) -> bool:
        return bool(
            self.snapshot_source
            or self.downloaded
            or self.resynced
            or self.seeded_blocks
            or self.seeded_admin
        )


class Reconciler:
    def __init__(
        self,
        db: SqlDbClient,
        local_store: LocalFileStore,
        snapshots: SnapshotStore,
        mirror: Optional[MirrorClient] = None,
        *,
        resync_mode: str = "auto",
        admin_username: str = "admin",
        admin_password: str = "admin123",
    ):
        if resync_mode not in RESYNC_MODES:
            raise ValueError(f"resync_mode must be one of {RESYNC_MODES}")
        self.db = db
        self.local_store = local_store
        self.snapshots = snapshots
        self.mirror = mirror
        self.resync_mode = resync_mode
        self.admin_username = admin_username
        self.admin_password = admin_password

    def run(self) -> ReconcileReport:
        report = ReconcileReport()

        local = self.snapshots.load_local()
        remote = None
        if self.mirror is not None:
            report.mirror_reachable = self.mirror.probe()
            if report.mirror_reachable:
                remote = self.snapshots.load_remote()
            else:
                logger.warning("Mirror unreachable at boot, running on local state only")

        source, chosen = select_snapshot(local, remote)
        if chosen is None:
            logger.info("No snapshot found, keeping current database state")
        else:
            logger.info(
                "Selected %s snapshot from %s", source, chosen.timestamp.isoformat()
            )
            report.snapshot_source = source
            report.restore = restore(chosen, self.db)

        if report.mirror_reachable:
            entries = self._list_mirror()
            if entries is not None:
                report.mirror_files = len(entries)
                self._download_missing(entries, report)
                if self._should_resync(report, entries):
                    self.cold_resync(entries)
                    report.resynced = True

        self._seed(report)

        if report.changed:
            report.snapshot_saved = True
            self.snapshots.capture(self.db)

        logger.info(
            "Reconciliation done: snapshot=%s downloaded=%d corrupt=%d resynced=%s",
            report.snapshot_source,
            len(report.downloaded),
            len(report.corrupt),
            report.resynced,
        )
        return report

    def _list_mirror(self) -> Optional[list[RemoteEntry]]:
        try:
            entries = self.mirror.list_files()
        except MirrorError as exc:
            logger.warning("Could not list mirror files: %s", exc)
            return None
        return [entry for entry in entries if not is_reserved(entry.name)]

    def _download_missing(
        self, entries: list[RemoteEntry], report: ReconcileReport
    ) -> None:
        for entry in entries:
            if self.local_store.exists(entry.name):
                continue
            try:
                data = fetch_verified(
                    self.mirror, entry.name, expected_size=entry.size or None
                )
            except CorruptPayload as exc:
                logger.warning("Skipping corrupt mirror file %s: %s", entry.name, exc)
                report.corrupt.append(entry.name)
                continue
            except MirrorUnreachable as exc:
                logger.warning("Mirror dropped during file sync: %s", exc)
                return
            except MirrorError as exc:
                logger.warning("Could not download %s: %s", entry.name, exc)
                continue
            self.local_store.write(entry.name, data)
            report.downloaded.append(entry.name)
            logger.info("Restored %s from mirror (%d bytes)", entry.name, len(data))

    def _should_resync(
        self, report: ReconcileReport, entries: list[RemoteEntry]
    ) -> bool:
        if self.resync_mode == "always":
            return True
        if self.resync_mode == "never":
            return False
        # auto: only when nothing local could be lost.
        return (
            bool(entries)
            and report.snapshot_source is None
            and self.db.count_documents() == 0
        )

    def cold_resync(self, entries: list[RemoteEntry]) -> None:
        """
        Rebuild every document row from the mirror listing.

        Descriptions, ordering and section assignments are lost; files used
        as block images are not turned into documents.
        """
        block_images = {
            block.image.rsplit("/", 1)[-1]
            for block in self.db.list_blocks()
            if block.image
        }
        rows = [
            {
                "title": title_from_filename(entry.name),
                "description": "",
                "filename": entry.name,
                "original_name": entry.name,
                "file_size": entry.size,
                "file_type": infer_file_type(entry.name),
                "is_visible": True,
                "sort_order": 0,
            }
            for entry in entries
            if not is_reserved(entry.name) and entry.name not in block_images
        ]
        self.db.replace_documents(rows)
        logger.info("Cold resync rebuilt %d document rows from the mirror", len(rows))

    def _seed(self, report: ReconcileReport) -> None:
        for default in DEFAULT_BLOCKS:
            if self.db.get_block_by_name(default["name"]) is None:
                self.db.insert_block(**seed_row(default))
                report.seeded_blocks.append(default["name"])
                logger.info("Seeded block %s", default["name"])
        if self.db.get_admin(self.admin_username) is None:
            self.db.insert_admin(self.admin_username, hash_password(self.admin_password))
            report.seeded_admin = True
            logger.info("Seeded admin user %s", self.admin_username)

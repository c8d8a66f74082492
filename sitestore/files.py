"""
Request-time file handling: serve, accept and delete uploaded binaries.

Local disk is authoritative and always written first; the mirror is a
best-effort copy. A file missing locally is fetched from the mirror on
demand, verified, and cached before it is served.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sitestore.content import validate_placement
from sitestore.db import DocumentRecord, SqlDbClient
from sitestore.errors import (
    CorruptPayload,
    MirrorError,
    MirrorNotFound,
    NotFound,
    ValidationError,
)
from sitestore.local_store import LocalFileStore
from sitestore.mirror import MirrorClient, fetch_verified
from sitestore.payloads import (
    IMAGE_EXTENSIONS,
    ensure_allowed,
    ensure_safe_name,
    extension_of,
    generate_stored_name,
    infer_file_type,
    title_from_filename,
    verify_payload,
)
from sitestore.reconcile import is_reserved
from sitestore.snapshot import SnapshotStore

logger = logging.getLogger(__name__)

# Called as schedule(func, *args); FastAPI's BackgroundTasks.add_task fits.
Scheduler = Callable[..., Any]


@dataclass
class UploadMetadata:
    original_name: str
    title: Optional[str] = None
    description: Optional[str] = None
    is_visible: bool = True
    section_id: Optional[int] = None
    subsection_id: Optional[int] = None


class FileService:
    def __init__(
        self,
        db: SqlDbClient,
        local_store: LocalFileStore,
        snapshots: SnapshotStore,
        mirror: Optional[MirrorClient] = None,
        max_upload_bytes: int = 100 * 1024 * 1024,
    ):
        self.db = db
        self.local_store = local_store
        self.snapshots = snapshots
        self.mirror = mirror
        self.max_upload_bytes = max_upload_bytes

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def resolve(self, filename: str) -> bytes:
        """Return the stored bytes, repairing from the mirror when missing locally."""
        ensure_safe_name(filename)
        if self.local_store.exists(filename):
            return self.local_store.read(filename)
        return self._repair(filename)

    def _repair(self, filename: str) -> bytes:
        if self.mirror is None:
            raise NotFound(filename)
        logger.info("%s missing locally, fetching from mirror", filename)
        # Block images have no row; only their magic number can be checked.
        record = self.db.get_document_by_filename(filename)
        expected_size = record.file_size if record is not None else None
        try:
            data = fetch_verified(self.mirror, filename, expected_size=expected_size)
        except CorruptPayload as exc:
            logger.warning("Mirror copy of %s is corrupt: %s", filename, exc)
            self.local_store.delete(filename)
            raise NotFound(filename) from exc
        except MirrorNotFound as exc:
            logger.info("%s is on neither local disk nor the mirror", filename)
            raise NotFound(filename) from exc
        except MirrorError as exc:
            logger.warning("Could not repair %s from mirror: %s", filename, exc)
            raise NotFound(filename) from exc
        self.local_store.write(filename, data)
        logger.info("Restored %s from mirror (%d bytes)", filename, len(data))
        return data

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def _validate_upload(self, data: bytes, original_name: str) -> None:
        if not original_name:
            raise ValidationError("File name is required")
        ensure_allowed(original_name)
        if not data:
            raise ValidationError(f"{original_name} is empty")
        if len(data) > self.max_upload_bytes:
            raise ValidationError(
                f"{original_name} exceeds the {self.max_upload_bytes} byte limit"
            )
        try:
            verify_payload(original_name, data)
        except CorruptPayload as exc:
            raise ValidationError(str(exc)) from exc

    def commit(
        self,
        data: bytes,
        metadata: UploadMetadata,
        schedule: Optional[Scheduler] = None,
        checkpoint: bool = True,
    ) -> DocumentRecord:
        """
        Store an uploaded document and index it.

        The local write and the row insert must both succeed; otherwise the
        local file is removed and the error propagates. Mirroring happens
        afterwards and never fails the commit.
        """
        self._validate_upload(data, metadata.original_name)
        validate_placement(self.db, metadata.section_id, metadata.subsection_id)

        stored_name = generate_stored_name(metadata.original_name)
        self.local_store.write(stored_name, data)
        try:
            record = self.db.insert_document(
                title=(metadata.title or "").strip()
                or title_from_filename(metadata.original_name),
                description=metadata.description.strip() if metadata.description else None,
                filename=stored_name,
                original_name=metadata.original_name,
                file_size=len(data),
                file_type=infer_file_type(metadata.original_name),
                is_visible=metadata.is_visible,
                section_id=metadata.section_id,
                subsection_id=metadata.subsection_id,
            )
        except Exception:
            self.local_store.delete(stored_name)
            raise
        logger.info("Stored document %s as %s", metadata.original_name, stored_name)

        if checkpoint:
            self.checkpoint()
        self._mirror(stored_name, schedule)
        return record

    def commit_batch(
        self,
        uploads: list[tuple[bytes, str]],
        title: Optional[str] = None,
        description: Optional[str] = None,
        is_visible: bool = True,
        section_id: Optional[int] = None,
        subsection_id: Optional[int] = None,
        schedule: Optional[Scheduler] = None,
    ) -> list[DocumentRecord]:
        """Commit several files sharing one title; titles get a 1-based suffix."""
        if not uploads:
            raise ValidationError("No file uploaded")
        for data, original_name in uploads:
            self._validate_upload(data, original_name)
        validate_placement(self.db, section_id, subsection_id)

        records = []
        try:
            for index, (data, original_name) in enumerate(uploads, start=1):
                base_title = (title or "").strip() or title_from_filename(original_name)
                if len(uploads) > 1:
                    base_title = f"{base_title} {index}"
                metadata = UploadMetadata(
                    original_name=original_name,
                    title=base_title,
                    description=description,
                    is_visible=is_visible,
                    section_id=section_id,
                    subsection_id=subsection_id,
                )
                records.append(
                    self.commit(data, metadata, schedule=schedule, checkpoint=False)
                )
        finally:
            if records:
                self.checkpoint()
        return records

    def store_image(
        self, data: bytes, original_name: str, schedule: Optional[Scheduler] = None
    ) -> str:
        """Store a block image. It gets no document row."""
        if extension_of(original_name) not in IMAGE_EXTENSIONS:
            raise ValidationError(f"{original_name} is not an image")
        self._validate_upload(data, original_name)
        stored_name = generate_stored_name(original_name)
        self.local_store.write(stored_name, data)
        logger.info("Stored block image %s as %s", original_name, stored_name)
        self._mirror(stored_name, schedule)
        return stored_name

    def _mirror(self, filename: str, schedule: Optional[Scheduler]) -> None:
        if self.mirror is None:
            return
        if schedule is not None:
            schedule(self.push_to_mirror, filename)
        else:
            self.push_to_mirror(filename)

    def push_to_mirror(self, filename: str) -> bool:
        if self.mirror is None:
            return False
        try:
            data = self.local_store.read(filename)
        except NotFound:
            logger.warning("%s vanished before it could be mirrored", filename)
            return False
        try:
            self.mirror.upload(data, filename)
        except MirrorError as exc:
            logger.warning("Mirror copy of %s not created, kept locally: %s", filename, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def purge(self, document_id: int) -> None:
        """Delete a document everywhere. Local deletion never waits on the mirror."""
        record = self.db.get_document(document_id)
        if record is None:
            raise NotFound(f"Document {document_id}")
        self.local_store.delete(record.filename)
        self._remove_remote(record.filename)
        self.db.delete_document(document_id)
        logger.info("Deleted document %s (%s)", document_id, record.title)
        self.checkpoint()

    def _remove_remote(self, filename: str) -> None:
        if self.mirror is None:
            return
        try:
            self.mirror.remove(filename)
        except MirrorNotFound:
            logger.info("%s was not on the mirror", filename)
        except MirrorError as exc:
            logger.warning("Mirror copy of %s not removed: %s", filename, exc)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def checkpoint(self) -> None:
        self.snapshots.checkpoint(self.db)

    def sync_from_mirror(self) -> list[dict]:
        """Download every mirror file missing locally. Never touches rows."""
        if self.mirror is None:
            raise NotFound("No mirror configured")
        results = []
        for entry in self.mirror.list_files():
            if is_reserved(entry.name):
                continue
            if self.local_store.exists(entry.name):
                results.append({"name": entry.name, "status": "exists"})
                continue
            try:
                data = fetch_verified(self.mirror, entry.name, expected_size=entry.size or None)
            except (CorruptPayload, MirrorError) as exc:
                logger.warning("Could not sync %s: %s", entry.name, exc)
                results.append({"name": entry.name, "status": "failed"})
                continue
            self.local_store.write(entry.name, data)
            results.append({"name": entry.name, "status": "downloaded"})
        return results

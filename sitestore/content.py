"""
Content operations behind the admin panel: document metadata, content
blocks, sections and subsections. Every mutation ends with a snapshot.
"""

from __future__ import annotations

import logging
import platform
import time
from typing import Any, Optional

from sitestore.blocks import ContentBlock, block_from_record, encode_items_update
from sitestore.db import DocumentRecord, SqlDbClient
from sitestore.errors import NotFound, ValidationError
from sitestore.local_store import LocalFileStore
from sitestore.snapshot import SnapshotStore

logger = logging.getLogger(__name__)

BLOCK_TEXT_FIELDS = ("title", "subtitle", "content", "button_text", "button_link", "image")


def validate_placement(
    db: SqlDbClient, section_id: Optional[int], subsection_id: Optional[int]
) -> None:
    """References are either empty or point at existing, matching rows."""
    if section_id is not None and db.get_section(section_id) is None:
        raise ValidationError(f"Section {section_id} does not exist")
    if subsection_id is not None:
        subsection = db.get_subsection(subsection_id)
        if subsection is None:
            raise ValidationError(f"Subsection {subsection_id} does not exist")
        if section_id is not None and subsection.section_id != section_id:
            raise ValidationError(
                f"Subsection {subsection_id} does not belong to section {section_id}"
            )


def _clean_name(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{what} name is required")
    return value.strip()


class ContentService:
    def __init__(
        self,
        db: SqlDbClient,
        snapshots: SnapshotStore,
        local_store: Optional[LocalFileStore] = None,
    ):
        self.db = db
        self.snapshots = snapshots
        self.local_store = local_store
        self.started_at = time.monotonic()

    def _checkpoint(self) -> None:
        self.snapshots.checkpoint(self.db)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def list_documents(self, visible_only: bool = True) -> list[DocumentRecord]:
        return self.db.list_documents(visible_only=visible_only)

    def update_document(self, document_id: int, changes: dict) -> DocumentRecord:
        """
        Apply a metadata edit. Everything is validated before the row is
        touched, so a rejected edit leaves the previous values in place.
        """
        existing = self.db.get_document(document_id)
        if existing is None:
            raise NotFound(f"Document {document_id}")

        values: dict[str, Any] = {}
        if changes.get("title") is not None:
            title = str(changes["title"]).strip()
            if not title:
                raise ValidationError("Title cannot be empty")
            values["title"] = title
        if "description" in changes:
            description = changes["description"]
            values["description"] = description.strip() if description else None
        if changes.get("is_visible") is not None:
            values["is_visible"] = bool(changes["is_visible"])

        section_id = changes.get("section_id", existing.section_id)
        subsection_id = changes.get("subsection_id", existing.subsection_id)
        if "section_id" in changes or "subsection_id" in changes:
            if "section_id" in changes and "subsection_id" not in changes:
                if section_id != existing.section_id:
                    subsection_id = None
            validate_placement(self.db, section_id, subsection_id)
            values["section_id"] = section_id
            values["subsection_id"] = subsection_id

        if not values:
            return existing
        record = self.db.update_document(document_id, values)
        logger.info("Updated document %s: %s", document_id, sorted(values))
        self._checkpoint()
        return record

    def reorder_documents(self, order: list) -> None:
        if not isinstance(order, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) for i in order
        ):
            raise ValidationError("order must be a list of document ids")
        self.db.reorder_documents(order)
        logger.info("Reordered documents: %s", order)
        self._checkpoint()

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def list_blocks(self, visible_only: bool = True) -> list[ContentBlock]:
        return [block_from_record(r) for r in self.db.list_blocks(visible_only=visible_only)]

    def get_block(self, name: str) -> ContentBlock:
        record = self.db.get_block_by_name(name, visible_only=True)
        if record is None:
            raise NotFound(f"Block {name}")
        return block_from_record(record)

    def update_block(self, block_id: int, changes: dict) -> ContentBlock:
        existing = self.db.get_block(block_id)
        if existing is None:
            raise NotFound(f"Block {block_id}")

        values: dict[str, Any] = {
            key: changes[key] for key in BLOCK_TEXT_FIELDS if changes.get(key) is not None
        }
        if changes.get("items") is not None or changes.get("legal_info") is not None:
            values["items"] = encode_items_update(
                existing.name, changes.get("items"), changes.get("legal_info")
            )
        if changes.get("is_visible") is not None:
            values["is_visible"] = bool(changes["is_visible"])

        record = self.db.update_block(block_id, values)
        logger.info("Updated block %s (%s)", block_id, existing.name)
        self._checkpoint()
        return block_from_record(record)

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def section_tree(self, visible_only: bool = True) -> list[dict]:
        subsections = self.db.list_subsections(visible_only=visible_only)
        tree = []
        for section in self.db.list_sections(visible_only=visible_only):
            tree.append(
                {
                    "id": section.id,
                    "name": section.name,
                    "sort_order": section.sort_order,
                    "is_visible": bool(section.is_visible),
                    "subsections": [
                        {
                            "id": sub.id,
                            "section_id": sub.section_id,
                            "name": sub.name,
                            "sort_order": sub.sort_order,
                            "is_visible": bool(sub.is_visible),
                        }
                        for sub in subsections
                        if sub.section_id == section.id
                    ],
                }
            )
        return tree

    def create_section(self, name: str, sort_order: int = 0, is_visible: bool = True):
        record = self.db.insert_section(
            name=_clean_name(name, "Section"),
            sort_order=sort_order,
            is_visible=is_visible,
        )
        logger.info("Created section %s (%s)", record.id, record.name)
        self._checkpoint()
        return record

    def update_section(self, section_id: int, changes: dict):
        values: dict[str, Any] = {}
        if changes.get("name") is not None:
            values["name"] = _clean_name(changes["name"], "Section")
        if changes.get("sort_order") is not None:
            values["sort_order"] = int(changes["sort_order"])
        if changes.get("is_visible") is not None:
            values["is_visible"] = bool(changes["is_visible"])
        record = self.db.update_section(section_id, values)
        if record is None:
            raise NotFound(f"Section {section_id}")
        self._checkpoint()
        return record

    def delete_section(self, section_id: int) -> None:
        if not self.db.delete_section(section_id):
            raise NotFound(f"Section {section_id}")
        logger.info("Deleted section %s with its subsections", section_id)
        self._checkpoint()

    def create_subsection(
        self, section_id: int, name: str, sort_order: int = 0, is_visible: bool = True
    ):
        if self.db.get_section(section_id) is None:
            raise ValidationError(f"Section {section_id} does not exist")
        record = self.db.insert_subsection(
            section_id=section_id,
            name=_clean_name(name, "Subsection"),
            sort_order=sort_order,
            is_visible=is_visible,
        )
        logger.info("Created subsection %s in section %s", record.id, section_id)
        self._checkpoint()
        return record

    def update_subsection(self, subsection_id: int, changes: dict):
        values: dict[str, Any] = {}
        if changes.get("name") is not None:
            values["name"] = _clean_name(changes["name"], "Subsection")
        if changes.get("section_id") is not None:
            if self.db.get_section(changes["section_id"]) is None:
                raise ValidationError(f"Section {changes['section_id']} does not exist")
            values["section_id"] = changes["section_id"]
        if changes.get("sort_order") is not None:
            values["sort_order"] = int(changes["sort_order"])
        if changes.get("is_visible") is not None:
            values["is_visible"] = bool(changes["is_visible"])
        record = self.db.update_subsection(subsection_id, values)
        if record is None:
            raise NotFound(f"Subsection {subsection_id}")
        self._checkpoint()
        return record

    def delete_subsection(self, subsection_id: int) -> None:
        if not self.db.delete_subsection(subsection_id):
            raise NotFound(f"Subsection {subsection_id}")
        logger.info("Deleted subsection %s", subsection_id)
        self._checkpoint()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def server_info(self) -> dict:
        total = self.db.count_documents()
        visible = self.db.count_documents(visible_only=True)
        return {
            "documents": {"total": total, "visible": visible, "hidden": total - visible},
            "storage": {
                "uploads": self.local_store.total_bytes() if self.local_store else 0
            },
            "server": {
                "uptime": round(time.monotonic() - self.started_at, 3),
                "pythonVersion": platform.python_version(),
            },
        }

"""
Relational store: SQLAlchemy rows for documents, content blocks, sections,
subsections and admin credentials, plus the client the services talk to.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from dateutil.parser import isoparse
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo on storage anyway."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class DocumentRecord:
    id: int
    title: str
    description: Optional[str]
    filename: str
    original_name: str
    file_size: Optional[int]
    file_type: Optional[str]
    is_visible: bool
    sort_order: int
    section_id: Optional[int]
    subsection_id: Optional[int]
    created_at: Optional[datetime]

    def as_dict(self) -> dict:
        payload = {f.name: getattr(self, f.name) for f in fields(self)}
        payload["is_visible"] = bool(self.is_visible)
        payload["downloadUrl"] = f"/api/download/{self.filename}"
        return payload


@dataclass
class BlockRecord:
    id: int
    name: str
    title: Optional[str]
    subtitle: Optional[str]
    content: Optional[str]
    button_text: Optional[str]
    button_link: Optional[str]
    image: Optional[str]
    items: Optional[str]
    is_visible: bool
    updated_at: Optional[datetime]


@dataclass
class SectionRecord:
    id: int
    name: str
    sort_order: int
    is_visible: bool
    created_at: Optional[datetime]


@dataclass
class SubsectionRecord:
    id: int
    section_id: int
    name: str
    sort_order: int
    is_visible: bool
    created_at: Optional[datetime]


@dataclass
class AdminRecord:
    id: int
    username: str
    password_hash: str
    created_at: Optional[datetime]


def _to_record(cls, row):
    return cls(**{f.name: getattr(row, f.name) for f in fields(cls)})


class SqlDbClient:
    """
    SQLAlchemy-backed store. Accepts any SQLAlchemy URL; the service runs on a
    single SQLite file.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("database_url is required for SqlDbClient")
        engine_kwargs: dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite+pysqlite://") or ":memory:" in database_url:
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def list_documents(self, visible_only: bool = False) -> list[DocumentRecord]:
        stmt = select(DocumentRow).order_by(
            DocumentRow.sort_order.asc(),
            DocumentRow.created_at.desc(),
            DocumentRow.id.desc(),
        )
        if visible_only:
            stmt = stmt.where(DocumentRow.is_visible.is_(True))
        with self.Session() as session:
            return [_to_record(DocumentRecord, row) for row in session.scalars(stmt)]

    def get_document(self, document_id: int) -> Optional[DocumentRecord]:
        with self.Session() as session:
            row = session.get(DocumentRow, document_id)
            return _to_record(DocumentRecord, row) if row else None

    def get_document_by_filename(self, filename: str) -> Optional[DocumentRecord]:
        with self.Session() as session:
            row = session.execute(
                select(DocumentRow).where(DocumentRow.filename == filename)
            ).scalar_one_or_none()
            return _to_record(DocumentRecord, row) if row else None

    def insert_document(self, **values) -> DocumentRecord:
        values.setdefault("created_at", utcnow())
        with self.Session() as session:
            row = DocumentRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(DocumentRecord, row)

    def update_document(self, document_id: int, values: dict) -> Optional[DocumentRecord]:
        with self.Session() as session:
            row = session.get(DocumentRow, document_id)
            if not row:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            return _to_record(DocumentRecord, row)

    def delete_document(self, document_id: int) -> bool:
        with self.Session() as session:
            row = session.get(DocumentRow, document_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def reorder_documents(self, order: Iterable[int]) -> None:
        with self.Session() as session:
            for index, document_id in enumerate(order):
                session.execute(
                    update(DocumentRow)
                    .where(DocumentRow.id == document_id)
                    .values(sort_order=index)
                )
            session.commit()

    def count_documents(self, visible_only: bool = False) -> int:
        stmt = select(func.count()).select_from(DocumentRow)
        if visible_only:
            stmt = stmt.where(DocumentRow.is_visible.is_(True))
        with self.Session() as session:
            return session.execute(stmt).scalar_one()

    def replace_documents(self, rows: list[dict]) -> None:
        """Drop every document row and insert ``rows`` in one transaction."""
        with self.Session() as session, session.begin():
            session.execute(delete(DocumentRow))
            for values in rows:
                values.setdefault("created_at", utcnow())
                session.add(DocumentRow(**values))

    # ------------------------------------------------------------------
    # Content blocks
    # ------------------------------------------------------------------

    def list_blocks(self, visible_only: bool = False) -> list[BlockRecord]:
        stmt = select(BlockRow).order_by(BlockRow.id.asc())
        if visible_only:
            stmt = stmt.where(BlockRow.is_visible.is_(True))
        with self.Session() as session:
            return [_to_record(BlockRecord, row) for row in session.scalars(stmt)]

    def get_block(self, block_id: int) -> Optional[BlockRecord]:
        with self.Session() as session:
            row = session.get(BlockRow, block_id)
            return _to_record(BlockRecord, row) if row else None

    def get_block_by_name(
        self, name: str, visible_only: bool = False
    ) -> Optional[BlockRecord]:
        stmt = select(BlockRow).where(BlockRow.name == name)
        if visible_only:
            stmt = stmt.where(BlockRow.is_visible.is_(True))
        with self.Session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _to_record(BlockRecord, row) if row else None

    def insert_block(self, **values) -> BlockRecord:
        values.setdefault("updated_at", utcnow())
        with self.Session() as session:
            row = BlockRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(BlockRecord, row)

    def update_block(self, block_id: int, values: dict) -> Optional[BlockRecord]:
        with self.Session() as session:
            row = session.get(BlockRow, block_id)
            if not row:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.commit()
            return _to_record(BlockRecord, row)

    # ------------------------------------------------------------------
    # Sections and subsections
    # ------------------------------------------------------------------

    def list_sections(self, visible_only: bool = False) -> list[SectionRecord]:
        stmt = select(SectionRow).order_by(SectionRow.sort_order.asc(), SectionRow.id.asc())
        if visible_only:
            stmt = stmt.where(SectionRow.is_visible.is_(True))
        with self.Session() as session:
            return [_to_record(SectionRecord, row) for row in session.scalars(stmt)]

    def get_section(self, section_id: int) -> Optional[SectionRecord]:
        with self.Session() as session:
            row = session.get(SectionRow, section_id)
            return _to_record(SectionRecord, row) if row else None

    def insert_section(self, **values) -> SectionRecord:
        values.setdefault("created_at", utcnow())
        with self.Session() as session:
            row = SectionRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(SectionRecord, row)

    def update_section(self, section_id: int, values: dict) -> Optional[SectionRecord]:
        with self.Session() as session:
            row = session.get(SectionRow, section_id)
            if not row:
                return None
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
            return _to_record(SectionRecord, row)

    def delete_section(self, section_id: int) -> bool:
        """Subsections go with their section; documents lose the references."""
        with self.Session() as session, session.begin():
            row = session.get(SectionRow, section_id)
            if not row:
                return False
            subsection_ids = select(SubsectionRow.id).where(
                SubsectionRow.section_id == section_id
            )
            session.execute(
                update(DocumentRow)
                .where(DocumentRow.subsection_id.in_(subsection_ids))
                .values(subsection_id=None)
            )
            session.execute(
                update(DocumentRow)
                .where(DocumentRow.section_id == section_id)
                .values(section_id=None, subsection_id=None)
            )
            session.execute(
                delete(SubsectionRow).where(SubsectionRow.section_id == section_id)
            )
            session.delete(row)
            return True

    def list_subsections(
        self, section_id: Optional[int] = None, visible_only: bool = False
    ) -> list[SubsectionRecord]:
        stmt = select(SubsectionRow).order_by(
            SubsectionRow.sort_order.asc(), SubsectionRow.id.asc()
        )
        if section_id is not None:
            stmt = stmt.where(SubsectionRow.section_id == section_id)
        if visible_only:
            stmt = stmt.where(SubsectionRow.is_visible.is_(True))
        with self.Session() as session:
            return [_to_record(SubsectionRecord, row) for row in session.scalars(stmt)]

    def get_subsection(self, subsection_id: int) -> Optional[SubsectionRecord]:
        with self.Session() as session:
            row = session.get(SubsectionRow, subsection_id)
            return _to_record(SubsectionRecord, row) if row else None

    def insert_subsection(self, **values) -> SubsectionRecord:
        values.setdefault("created_at", utcnow())
        with self.Session() as session:
            row = SubsectionRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(SubsectionRecord, row)

    def update_subsection(
        self, subsection_id: int, values: dict
    ) -> Optional[SubsectionRecord]:
        """Documents in a subsection follow it when it moves to another section."""
        with self.Session() as session, session.begin():
            row = session.get(SubsectionRow, subsection_id)
            if not row:
                return None
            new_section_id = values.get("section_id")
            if new_section_id is not None and new_section_id != row.section_id:
                session.execute(
                    update(DocumentRow)
                    .where(DocumentRow.subsection_id == subsection_id)
                    .values(section_id=new_section_id)
                )
            for key, value in values.items():
                setattr(row, key, value)
            session.flush()
            return _to_record(SubsectionRecord, row)

    def delete_subsection(self, subsection_id: int) -> bool:
        with self.Session() as session, session.begin():
            row = session.get(SubsectionRow, subsection_id)
            if not row:
                return False
            session.execute(
                update(DocumentRow)
                .where(DocumentRow.subsection_id == subsection_id)
                .values(subsection_id=None)
            )
            session.delete(row)
            return True

    # ------------------------------------------------------------------
    # Admin credentials
    # ------------------------------------------------------------------

    def get_admin(self, username: str) -> Optional[AdminRecord]:
        with self.Session() as session:
            row = session.execute(
                select(AdminUserRow).where(AdminUserRow.username == username)
            ).scalar_one_or_none()
            return _to_record(AdminRecord, row) if row else None

    def insert_admin(self, username: str, password_hash: str) -> AdminRecord:
        with self.Session() as session:
            row = AdminUserRow(
                username=username, password_hash=password_hash, created_at=utcnow()
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_record(AdminRecord, row)

    def set_password_hash(self, username: str, password_hash: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(AdminUserRow)
                .where(AdminUserRow.username == username)
                .values(password_hash=password_hash)
            )
            session.commit()
            return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Whole-table access for snapshots
    # ------------------------------------------------------------------

    def dump_table(self, table: str, exclude: Iterable[str] = ()) -> list[dict]:
        model = TABLES[table]
        skipped = set(exclude)
        columns = [c for c in model.__table__.columns if c.name not in skipped]
        with self.Session() as session:
            rows = session.scalars(select(model).order_by(model.id.asc()))
            return [{c.name: getattr(row, c.key) for c in columns} for row in rows]

    def replace_table(self, table: str, rows: list[dict]) -> None:
        """
        Delete every row of ``table`` and insert ``rows`` with their original
        primary keys. Runs in a single transaction: all or nothing.
        """
        model = TABLES[table]
        columns = {c.name: c for c in model.__table__.columns}
        prepared = []
        for raw in rows:
            values = {}
            for name, value in raw.items():
                column = columns.get(name)
                if column is None:
                    continue
                if isinstance(column.type, DateTime) and isinstance(value, str):
                    value = isoparse(value)
                if isinstance(column.type, Boolean) and value is not None:
                    value = bool(value)
                values[name] = value
            prepared.append(values)
        with self.Session() as session, session.begin():
            session.execute(delete(model))
            if prepared:
                session.execute(insert(model), prepared)


Base = declarative_base()


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    filename = Column(String, nullable=False, unique=True)
    original_name = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    file_type = Column(String, nullable=True)
    is_visible = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)
    section_id = Column(Integer, ForeignKey("sections.id"), nullable=True, index=True)
    subsection_id = Column(
        Integer, ForeignKey("subsections.id"), nullable=True, index=True
    )
    created_at = Column(DateTime, nullable=True)


class BlockRow(Base):
    __tablename__ = "blocks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    title = Column(Text, nullable=True)
    subtitle = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    button_text = Column(String, nullable=True)
    button_link = Column(String, nullable=True)
    image = Column(String, nullable=True)
    items = Column(Text, nullable=True)
    is_visible = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime, nullable=True)


class SectionRow(Base):
    __tablename__ = "sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_visible = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=True)


class SubsectionRow(Base):
    __tablename__ = "subsections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(Integer, ForeignKey("sections.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    is_visible = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=True)


class AdminUserRow(Base):
    __tablename__ = "admin_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=True)


TABLES = {
    "documents": DocumentRow,
    "blocks": BlockRow,
    "sections": SectionRow,
    "subsections": SubsectionRow,
    "admin_users": AdminUserRow,
}

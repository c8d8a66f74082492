"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from sitestore.config import get_settings
from sitestore.content import ContentService
from sitestore.db import SqlDbClient
from sitestore.files import FileService
from sitestore.local_store import LocalFileStore
from sitestore.mirror import FtpMirrorClient, InMemoryMirrorClient, MirrorClient
from sitestore.snapshot import SnapshotStore

_db_client: SqlDbClient | None = None
_local_store: LocalFileStore | None = None
_mirror_client: MirrorClient | None = None
_mirror_resolved = False
_snapshot_store: SnapshotStore | None = None
_file_service: FileService | None = None
_content_service: ContentService | None = None


def get_db_client() -> SqlDbClient:
    """
    Return a singleton DB client so the engine and its pool are shared across
    requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    _db_client = SqlDbClient(settings.resolved_database_url)
    return _db_client


def get_local_store() -> LocalFileStore:
    global _local_store
    if _local_store:
        return _local_store
    _local_store = LocalFileStore(get_settings().uploads_dir)
    return _local_store


def get_mirror_client() -> MirrorClient | None:
    """
    Return the mirror client, or None when no mirror is configured. The
    client carries the breaker, so it must stay a singleton.
    """
    global _mirror_client, _mirror_resolved
    if _mirror_resolved:
        return _mirror_client

    settings = get_settings()
    if settings.use_in_memory_mirror:
        _mirror_client = InMemoryMirrorClient()
    elif settings.ftp_host:
        _mirror_client = FtpMirrorClient(
            host=settings.ftp_host,
            port=settings.ftp_port,
            user=settings.ftp_user,
            password=settings.ftp_password,
            remote_path=settings.ftp_path,
            timeout=settings.ftp_timeout,
        )
    else:
        _mirror_client = None
    _mirror_resolved = True
    return _mirror_client


def get_snapshot_store() -> SnapshotStore:
    global _snapshot_store
    if _snapshot_store:
        return _snapshot_store
    _snapshot_store = SnapshotStore(
        path=get_settings().snapshot_path, mirror=get_mirror_client()
    )
    return _snapshot_store


def get_file_service() -> FileService:
    global _file_service
    if _file_service:
        return _file_service
    _file_service = FileService(
        db=get_db_client(),
        local_store=get_local_store(),
        snapshots=get_snapshot_store(),
        mirror=get_mirror_client(),
        max_upload_bytes=get_settings().max_upload_bytes,
    )
    return _file_service


def get_content_service() -> ContentService:
    global _content_service
    if _content_service:
        return _content_service
    _content_service = ContentService(
        db=get_db_client(),
        snapshots=get_snapshot_store(),
        local_store=get_local_store(),
    )
    return _content_service


def reset_dependencies() -> None:
    """Forget every singleton; the next call rebuilds from current settings."""
    global _db_client, _local_store, _mirror_client, _mirror_resolved
    global _snapshot_store, _file_service, _content_service
    if _db_client is not None:
        _db_client.engine.dispose()
    _db_client = None
    _local_store = None
    _mirror_client = None
    _mirror_resolved = False
    _snapshot_store = None
    _file_service = None
    _content_service = None
    get_settings.cache_clear()

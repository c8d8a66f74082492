"""
HTTP routes for the site backend API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
)

from sitestore.auth import authenticate, change_password, require_admin
from sitestore.blocks import block_as_dict
from sitestore.config import Settings, get_settings
from sitestore.content import ContentService
from sitestore.db import SqlDbClient
from sitestore.dependencies import (
    get_content_service,
    get_db_client,
    get_file_service,
    get_mirror_client,
)
from sitestore.errors import MirrorError, ValidationError
from sitestore.files import FileService
from sitestore.mirror import MirrorClient
from sitestore.payloads import mime_type_for
from sitestore.schemas import (
    BlockUpdateRequest,
    ChangePasswordRequest,
    DocumentUpdateRequest,
    HealthResponse,
    ImageUploadResponse,
    LoginRequest,
    LoginResponse,
    ReorderRequest,
    SectionPayload,
    StatusResponse,
    SubsectionPayload,
    SyncMirrorResponse,
    UploadResponse,
    VerifyTokenResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Mounted without the API prefix.
uploads_router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _optional_int(value: Optional[str], field: str) -> Optional[int]:
    if value is None or value.strip() in ("", "null"):
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{field} must be an integer")


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: SqlDbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    return LoginResponse(**authenticate(db, payload.username, payload.password, settings))


@router.get("/verify-token", response_model=VerifyTokenResponse)
def verify_token(claims: dict = Depends(require_admin)):
    return VerifyTokenResponse(success=True, valid=True, user=claims)


@router.post("/admin/change-password", response_model=StatusResponse)
def admin_change_password(
    payload: ChangePasswordRequest,
    claims: dict = Depends(require_admin),
    db: SqlDbClient = Depends(get_db_client),
):
    change_password(
        db, claims.get("username", ""), payload.current_password, payload.new_password
    )
    return StatusResponse(message="Password changed")


# ----------------------------------------------------------------------
# Documents
# ----------------------------------------------------------------------


@router.get("/documents")
def list_documents(content: ContentService = Depends(get_content_service)):
    return [record.as_dict() for record in content.list_documents(visible_only=True)]


@router.get("/admin/documents", dependencies=[Depends(require_admin)])
def admin_list_documents(content: ContentService = Depends(get_content_service)):
    return [record.as_dict() for record in content.list_documents(visible_only=False)]


@router.post(
    "/admin/documents",
    response_model=UploadResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
def upload_documents(
    background_tasks: BackgroundTasks,
    file: Optional[list[UploadFile]] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    is_visible: str = Form("true"),
    section_id: Optional[str] = Form(None),
    subsection_id: Optional[str] = Form(None),
    files: FileService = Depends(get_file_service),
):
    """
    Store one or more uploaded files. Mirror copies are made after the
    response has been sent.
    """
    uploads = [(upload.file.read(), upload.filename or "") for upload in file or []]
    records = files.commit_batch(
        uploads,
        title=title,
        description=description,
        is_visible=is_visible.strip().lower() == "true",
        section_id=_optional_int(section_id, "section_id"),
        subsection_id=_optional_int(subsection_id, "subsection_id"),
        schedule=background_tasks.add_task,
    )
    return UploadResponse(
        ids=[record.id for record in records],
        count=len(records),
        message=f"Uploaded {len(records)} document(s)",
    )


@router.put(
    "/admin/documents/reorder",
    response_model=StatusResponse,
    dependencies=[Depends(require_admin)],
)
def reorder_documents(
    payload: ReorderRequest, content: ContentService = Depends(get_content_service)
):
    content.reorder_documents(payload.order)
    return StatusResponse(message="Document order updated")


@router.put("/admin/documents/{document_id}", dependencies=[Depends(require_admin)])
def update_document(
    document_id: int,
    payload: DocumentUpdateRequest,
    content: ContentService = Depends(get_content_service),
):
    record = content.update_document(document_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Document updated", "document": record.as_dict()}


@router.delete(
    "/admin/documents/{document_id}",
    response_model=StatusResponse,
    dependencies=[Depends(require_admin)],
)
def delete_document(document_id: int, files: FileService = Depends(get_file_service)):
    files.purge(document_id)
    return StatusResponse(message="Document deleted")


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------


@router.get("/download/{filename}")
def download(
    filename: str,
    mode: str = Query("download"),
    original: Optional[str] = Query(None),
    files: FileService = Depends(get_file_service),
):
    data = files.resolve(filename)
    disposition = "inline" if mode == "preview" else "attachment"
    headers = {
        "Content-Disposition": f'{disposition}; filename="{quote(original or filename)}"',
        **NO_CACHE_HEADERS,
    }
    return Response(content=data, media_type=mime_type_for(filename), headers=headers)


@uploads_router.get("/uploads/{filename}")
def serve_upload(filename: str, files: FileService = Depends(get_file_service)):
    return Response(content=files.resolve(filename), media_type=mime_type_for(filename))


@router.post(
    "/admin/blocks/upload-image",
    response_model=ImageUploadResponse,
    dependencies=[Depends(require_admin)],
)
def upload_block_image(
    background_tasks: BackgroundTasks,
    image: UploadFile = File(...),
    files: FileService = Depends(get_file_service),
):
    stored_name = files.store_image(
        image.file.read(), image.filename or "", schedule=background_tasks.add_task
    )
    return ImageUploadResponse(filename=stored_name, url=f"/uploads/{stored_name}")


# ----------------------------------------------------------------------
# Blocks
# ----------------------------------------------------------------------


@router.get("/blocks")
def list_blocks(content: ContentService = Depends(get_content_service)):
    return [block_as_dict(block) for block in content.list_blocks(visible_only=True)]


@router.get("/blocks/{name}")
def get_block(name: str, content: ContentService = Depends(get_content_service)):
    return block_as_dict(content.get_block(name))


@router.get("/admin/blocks", dependencies=[Depends(require_admin)])
def admin_list_blocks(content: ContentService = Depends(get_content_service)):
    return [block_as_dict(block) for block in content.list_blocks(visible_only=False)]


@router.put("/admin/blocks/{block_id}", dependencies=[Depends(require_admin)])
def update_block(
    block_id: int,
    payload: BlockUpdateRequest,
    content: ContentService = Depends(get_content_service),
):
    block = content.update_block(block_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Block updated", "block": block_as_dict(block)}


# ----------------------------------------------------------------------
# Sections
# ----------------------------------------------------------------------


@router.get("/sections")
def list_sections(content: ContentService = Depends(get_content_service)):
    return content.section_tree(visible_only=True)


@router.get("/admin/sections", dependencies=[Depends(require_admin)])
def admin_list_sections(content: ContentService = Depends(get_content_service)):
    return content.section_tree(visible_only=False)


@router.post("/admin/sections", status_code=201, dependencies=[Depends(require_admin)])
def create_section(
    payload: SectionPayload, content: ContentService = Depends(get_content_service)
):
    record = content.create_section(
        payload.name,
        sort_order=payload.sort_order or 0,
        is_visible=True if payload.is_visible is None else payload.is_visible,
    )
    return {"success": True, "id": record.id}


@router.put("/admin/sections/{section_id}", dependencies=[Depends(require_admin)])
def update_section(
    section_id: int,
    payload: SectionPayload,
    content: ContentService = Depends(get_content_service),
):
    content.update_section(section_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Section updated"}


@router.delete("/admin/sections/{section_id}", dependencies=[Depends(require_admin)])
def delete_section(section_id: int, content: ContentService = Depends(get_content_service)):
    content.delete_section(section_id)
    return {"success": True, "message": "Section deleted"}


@router.post(
    "/admin/subsections", status_code=201, dependencies=[Depends(require_admin)]
)
def create_subsection(
    payload: SubsectionPayload, content: ContentService = Depends(get_content_service)
):
    if payload.section_id is None:
        raise ValidationError("section_id is required")
    record = content.create_subsection(
        payload.section_id,
        payload.name,
        sort_order=payload.sort_order or 0,
        is_visible=True if payload.is_visible is None else payload.is_visible,
    )
    return {"success": True, "id": record.id}


@router.put(
    "/admin/subsections/{subsection_id}", dependencies=[Depends(require_admin)]
)
def update_subsection(
    subsection_id: int,
    payload: SubsectionPayload,
    content: ContentService = Depends(get_content_service),
):
    content.update_subsection(subsection_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Subsection updated"}


@router.delete(
    "/admin/subsections/{subsection_id}", dependencies=[Depends(require_admin)]
)
def delete_subsection(
    subsection_id: int, content: ContentService = Depends(get_content_service)
):
    content.delete_subsection(subsection_id)
    return {"success": True, "message": "Subsection deleted"}


# ----------------------------------------------------------------------
# Maintenance
# ----------------------------------------------------------------------


@router.get("/server-info", dependencies=[Depends(require_admin)])
def server_info(content: ContentService = Depends(get_content_service)):
    return content.server_info()


@router.get("/health", response_model=HealthResponse)
def health(
    settings: Settings = Depends(get_settings),
    mirror: Optional[MirrorClient] = Depends(get_mirror_client),
):
    if mirror is None:
        mirror_state = "disabled"
    elif mirror.breaker.is_write_allowed():
        mirror_state = "enabled"
    else:
        mirror_state = "writes-disabled"
    return HealthResponse(
        status="ok",
        timestamp=datetime.now(timezone.utc).isoformat(),
        jwtSecret="default" if settings.uses_default_secret else "configured",
        mirror=mirror_state,
    )


@router.post(
    "/admin/sync-mirror",
    response_model=SyncMirrorResponse,
    dependencies=[Depends(require_admin)],
)
def sync_mirror(files: FileService = Depends(get_file_service)):
    try:
        results = files.sync_from_mirror()
    except MirrorError as exc:
        logger.warning("Manual mirror sync failed: %s", exc)
        raise HTTPException(status_code=502, detail=f"Mirror sync failed: {exc}")
    downloaded = sum(1 for entry in results if entry["status"] == "downloaded")
    logger.info("Manual mirror sync downloaded %d file(s)", downloaded)
    return SyncMirrorResponse(success=True, files=results, downloaded=downloaded)

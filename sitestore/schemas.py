"""
Pydantic schemas for the site backend API.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class LoginResponse(BaseModel):
    success: bool
    token: str
    username: str
    expiresIn: str


class VerifyTokenResponse(BaseModel):
    success: bool
    valid: bool
    user: dict


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(default="", validation_alias="currentPassword")
    new_password: str = Field(default="", validation_alias="newPassword")

    model_config = {"populate_by_name": True}


class StatusResponse(BaseModel):
    success: bool = True
    message: str


class DocumentUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    is_visible: Optional[bool] = None
    section_id: Optional[int] = None
    subsection_id: Optional[int] = None


class ReorderRequest(BaseModel):
    order: list[int]


class UploadResponse(BaseModel):
    success: bool = True
    ids: list[int]
    count: int
    message: str


class ImageUploadResponse(BaseModel):
    success: bool = True
    filename: str
    url: str


class BlockUpdateRequest(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    content: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    image: Optional[str] = None
    items: Optional[Any] = None
    legal_info: Optional[str] = None
    is_visible: Optional[bool] = None


class SectionPayload(BaseModel):
    name: Optional[str] = Field(default=None, max_length=200)
    sort_order: Optional[int] = None
    is_visible: Optional[bool] = None


class SubsectionPayload(SectionPayload):
    section_id: Optional[int] = None


class SyncEntry(BaseModel):
    name: str
    status: Literal["exists", "downloaded", "failed"]


class SyncMirrorResponse(BaseModel):
    success: bool
    files: list[SyncEntry]
    downloaded: int


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    jwtSecret: Literal["configured", "default"]
    mirror: Literal["disabled", "enabled", "writes-disabled"]

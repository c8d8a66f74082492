"""
File naming, typing and integrity checks for uploaded payloads.
"""

from __future__ import annotations

import os
import re
import uuid

from sitestore.errors import CorruptPayload, ValidationError

ALLOWED_EXTENSIONS = {
    ".pdf",
    ".jpeg",
    ".jpg",
    ".png",
    ".gif",
    ".doc",
    ".docx",
    ".xls",
    ".xlsx",
    ".txt",
    ".zip",
}

IMAGE_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif"}

MIME_TYPES = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".zip": "application/zip",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".txt": "text/plain",
}

# Leading bytes every well-formed payload of the given extension starts with.
MAGIC_NUMBERS: dict[str, tuple[bytes, ...]] = {
    ".pdf": (b"%PDF-",),
    ".png": (b"\x89PNG\r\n\x1a\n",),
    ".jpg": (b"\xff\xd8\xff",),
    ".jpeg": (b"\xff\xd8\xff",),
    ".gif": (b"GIF87a", b"GIF89a"),
    ".zip": (b"PK\x03\x04", b"PK\x05\x06"),
    ".docx": (b"PK\x03\x04",),
    ".xlsx": (b"PK\x03\x04",),
    ".doc": (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",),
    ".xls": (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1",),
}

_SAFE_NAME = re.compile(r"^[^/\\\x00]+$")


def extension_of(filename: str) -> str:
    return os.path.splitext(filename)[1].lower()


def infer_file_type(filename: str) -> str:
    """Documents are tagged either ``pdf`` or ``image``."""
    return "pdf" if extension_of(filename) == ".pdf" else "image"


def mime_type_for(filename: str) -> str:
    return MIME_TYPES.get(extension_of(filename), "application/octet-stream")


def title_from_filename(filename: str, fallback: str = "Document") -> str:
    stem = os.path.splitext(os.path.basename(filename))[0]
    return stem or fallback


def generate_stored_name(original_name: str) -> str:
    return f"{uuid.uuid4().hex}{extension_of(original_name)}"


def ensure_safe_name(filename: str) -> str:
    """Reject names that could escape the storage directory."""
    if (
        not filename
        or filename in (".", "..")
        or not _SAFE_NAME.match(filename)
    ):
        raise ValidationError(f"Invalid filename: {filename!r}")
    return filename


def ensure_allowed(original_name: str) -> None:
    if extension_of(original_name) not in ALLOWED_EXTENSIONS:
        raise ValidationError(f"Unsupported file type: {original_name}")


def verify_payload(
    filename: str, data: bytes, expected_size: int | None = None
) -> None:
    """
    Raise CorruptPayload when ``data`` is not a plausible copy of ``filename``.

    The size is checked when ``expected_size`` is given; the magic number is
    checked for every extension listed in MAGIC_NUMBERS.
    """
    if expected_size is not None and len(data) != expected_size:
        raise CorruptPayload(
            f"{filename}: expected {expected_size} bytes, got {len(data)}"
        )
    signatures = MAGIC_NUMBERS.get(extension_of(filename))
    if signatures and not any(data.startswith(sig) for sig in signatures):
        raise CorruptPayload(f"{filename}: bad magic number")

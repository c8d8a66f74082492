"""
Content block variants.

The ``items`` column holds JSON whose shape depends on the block name: a list
of item objects for most blocks, a ``{"legal_info": ...}`` object for the
legal block. Rows are decoded once into a tagged variant here instead of
being sniffed on every read.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from sitestore.db import BlockRecord
from sitestore.errors import ValidationError

logger = logging.getLogger(__name__)

LEGAL_BLOCK = "documents-legal"

BLOCK_NAMES = (
    "hero",
    "about",
    "advantages",
    "courses",
    "contact",
    "footer",
    LEGAL_BLOCK,
)


@dataclass
class _BlockBase:
    id: int
    name: str
    title: Optional[str] = None
    subtitle: Optional[str] = None
    content: Optional[str] = None
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    image: Optional[str] = None
    is_visible: bool = True
    updated_at: Optional[datetime] = None


@dataclass
class ListItemsBlock(_BlockBase):
    items: list = field(default_factory=list)
    kind: str = "list"


@dataclass
class LegalTextBlock(_BlockBase):
    legal_info: str = ""
    kind: str = "legal"


ContentBlock = Union[ListItemsBlock, LegalTextBlock]


def _decode_items(record: BlockRecord) -> Any:
    if not record.items:
        return None
    try:
        return json.loads(record.items)
    except ValueError:
        logger.warning("Block %s has unreadable items JSON, ignoring it", record.name)
        return None


def block_from_record(record: BlockRecord) -> ContentBlock:
    common = dict(
        id=record.id,
        name=record.name,
        title=record.title,
        subtitle=record.subtitle,
        content=record.content,
        button_text=record.button_text,
        button_link=record.button_link,
        image=record.image,
        is_visible=bool(record.is_visible),
        updated_at=record.updated_at,
    )
    decoded = _decode_items(record)
    if record.name == LEGAL_BLOCK:
        legal_info = ""
        if isinstance(decoded, dict) and isinstance(decoded.get("legal_info"), str):
            legal_info = decoded["legal_info"]
        return LegalTextBlock(legal_info=legal_info, **common)
    items = decoded if isinstance(decoded, list) else []
    return ListItemsBlock(items=items, **common)


def block_as_dict(block: ContentBlock) -> dict:
    payload = asdict(block)
    if isinstance(block, LegalTextBlock):
        # Clients read the legal text from the items object.
        payload["items"] = {"legal_info": block.legal_info}
    return payload


def encode_items_update(name: str, items: Any = None, legal_info: Any = None) -> str:
    """Encode an incoming items/legal payload for the block called ``name``."""
    if name == LEGAL_BLOCK:
        if legal_info is None and isinstance(items, dict):
            legal_info = items.get("legal_info")
        if not isinstance(legal_info, str):
            raise ValidationError("legal_info must be a string")
        return json.dumps({"legal_info": legal_info}, ensure_ascii=False)
    if not isinstance(items, list):
        raise ValidationError(f"items for block {name} must be a list")
    return json.dumps(items, ensure_ascii=False)


DEFAULT_BLOCKS: list[dict] = [
    {
        "name": "hero",
        "title": "More than a driving school.",
        "subtitle": "An academy for future drivers!",
        "content": "Quality driving lessons with experienced instructors. Get your licence quickly and reliably!",
        "button_text": "Sign up now",
        "button_link": "contact",
    },
    {
        "name": "about",
        "title": "About us",
        "content": "For more than ten years we have helped thousands of students get their driving licence.",
    },
    {
        "name": "advantages",
        "title": "Why choose us",
        "items": [
            {"title": "Experienced instructors", "description": "At least 5 years of teaching"},
            {"title": "Modern cars", "description": "New and safe vehicles"},
            {"title": "Flexible schedule", "description": "Lessons when it suits you"},
        ],
    },
    {
        "name": "courses",
        "title": "Our courses",
        "items": [
            {"title": "Category B", "price": "from 25 000", "description": "Passenger cars"},
            {"title": "Category A", "price": "from 15 000", "description": "Motorcycles"},
            {"title": "Category C", "price": "from 35 000", "description": "Trucks"},
        ],
    },
    {
        "name": "contact",
        "title": "Contact us",
        "subtitle": "Leave a request",
        "content": "Fill in the form and we will get back to you shortly",
        "button_text": "Send request",
    },
    {
        "name": "footer",
        "content": "All rights reserved.",
        "items": [
            {"title": "Phone", "value": ""},
            {"title": "Email", "value": ""},
            {"title": "Address", "value": ""},
        ],
    },
    {
        "name": LEGAL_BLOCK,
        "title": "Legal information",
        "legal_info": "",
    },
]


def seed_row(default: dict) -> dict:
    """Column values for inserting a default block."""
    row = {
        "name": default["name"],
        "title": default.get("title", ""),
        "subtitle": default.get("subtitle", ""),
        "content": default.get("content", ""),
        "button_text": default.get("button_text", ""),
        "button_link": default.get("button_link", ""),
        "image": None,
        "is_visible": True,
    }
    if default["name"] == LEGAL_BLOCK:
        row["items"] = json.dumps({"legal_info": default.get("legal_info", "")})
    elif default.get("items"):
        row["items"] = json.dumps(default["items"], ensure_ascii=False)
    else:
        row["items"] = None
    return row

"""
On-disk directory holding uploaded binaries under opaque generated names.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass

from sitestore.errors import NotFound
from sitestore.payloads import ensure_safe_name

logger = logging.getLogger(__name__)


@dataclass
class LocalFileStore:
    root: str

    def __post_init__(self):
        os.makedirs(self.root, exist_ok=True)

    def path_for(self, filename: str) -> str:
        return os.path.join(self.root, ensure_safe_name(filename))

    def exists(self, filename: str) -> bool:
        return os.path.isfile(self.path_for(filename))

    def read(self, filename: str) -> bytes:
        path = self.path_for(filename)
        if not os.path.isfile(path):
            raise NotFound(filename)
        with open(path, "rb") as f:
            return f.read()

    def write(self, filename: str, data: bytes) -> None:
        """Write the whole file through a temporary sibling then rename it in place."""
        path = self.path_for(filename)
        fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def delete(self, filename: str) -> bool:
        path = self.path_for(filename)
        if not os.path.isfile(path):
            return False
        os.remove(path)
        return True

    def size(self, filename: str) -> int:
        return os.path.getsize(self.path_for(filename))

    def list_names(self) -> list[str]:
        return sorted(
            name
            for name in os.listdir(self.root)
            if not name.startswith(".") and os.path.isfile(os.path.join(self.root, name))
        )

    def total_bytes(self) -> int:
        return sum(self.size(name) for name in self.list_names())

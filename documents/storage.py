"""
documents/storage.py -- Local-disk storage for uploaded file bytes.

Only metadata lives in the database. The bytes go under Settings.upload_dir,
named by an opaque storage key (random hex + original extension) so client
supplied file names never reach the filesystem.

Allowed uploads are PDF and PNG/JPEG images; logos may also be WebP or GIF.
The check is on the declared content type only; file contents are not parsed.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path, PurePath

logger = logging.getLogger("agentpro.storage")

ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg", "image/jpg"})
LOGO_CONTENT_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif"})

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def is_allowed(content_type: str | None) -> bool:
    return (content_type or "").lower() in ALLOWED_CONTENT_TYPES


def is_logo(content_type: str | None) -> bool:
    return (content_type or "").lower() in LOGO_CONTENT_TYPES


def file_type_for(file_name: str, content_type: str) -> str:
    """Upper-cased extension shown in listings ("PDF", "PNG", "JPG")."""
    suffix = PurePath(file_name).suffix or _EXTENSIONS.get(content_type.lower(), "")
    return suffix.lstrip(".").upper()


class LocalStorage:
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path.parent != self.root.resolve():
            raise ValueError(f"Invalid storage key: {key!r}")
        return path

    def save(self, data: bytes, content_type: str) -> str:
        """Write data and return its storage key."""
        key = secrets.token_hex(16) + _EXTENSIONS.get(content_type.lower(), "")
        self._path(key).write_bytes(data)
        return key

    def path(self, key: str) -> Path:
        return self._path(key)

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        """Remove the bytes for key. Missing files are logged, not raised."""
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            logger.warning("Stored file already missing (key=%s)", key)

    def delete_many(self, keys: list[str]) -> None:
        for key in keys:
            self.delete(key)

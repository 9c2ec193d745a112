"""
Local filesystem storage provider for development and tests.

Files land under ``<base_dir>/uploads/<key>``; their URL points at the
tenant-checked ``/api/v1/documents/files/<key>`` route.
"""

import logging
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote

from crm.core.exceptions import StorageError
from crm.storage.provider import StorageProvider

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    name = "local"

    def __init__(self, base_dir: str, public_base_url: str = ""):
        self.base_dir = Path(base_dir)
        self.public_base_url = public_base_url.rstrip("/")
        (self.base_dir / "uploads").mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        clean_key = key.lstrip("/").replace("\\", "/")
        root = (self.base_dir / "uploads").resolve()
        path = (root / clean_key).resolve()
        if root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def _url(self, key: str) -> str:
        return f"{self.public_base_url}/api/v1/documents/files/{quote(key.lstrip('/'))}"

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def copy_in(self, src: bytes | BinaryIO, key: str, content_type: str = "application/octet-stream") -> str:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = src.read() if hasattr(src, "read") else src
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Could not write {key}: {exc}") from exc
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return self._url(key)

    def read(self, key: str) -> bytes:
        path = self._get_path(key)
        if not path.exists():
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def delete(self, key: str) -> None:
        self._get_path(key).unlink(missing_ok=True)

"""
Object storage interface.

Keys are slash-separated paths that start with the tenant id, such as
``acme/quotations/<uuid>-Quotation-QT-00001.pdf``. Providers return the
public (or signed) URL of a stored object from ``copy_in``.
"""

from typing import BinaryIO


class StorageProvider:
    name = "base"

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def copy_in(self, src: bytes | BinaryIO, key: str, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    def read(self, key: str) -> bytes:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

"""
Storage provider selection.

``STORAGE_PROVIDER`` picks the backend: ``local`` (default) or ``blob``
(Azure Blob Storage).
"""

from flask import current_app

from crm.storage.blob_provider import BlobStorageProvider
from crm.storage.local_provider import LocalStorageProvider
from crm.storage.provider import StorageProvider


def get_storage() -> StorageProvider:
    cfg = current_app.config
    if cfg.get("STORAGE_PROVIDER") == "blob":
        return BlobStorageProvider(
            cfg.get("AZURE_BLOB_CONNECTION"),
            cfg.get("AZURE_BLOB_CONTAINER"),
            cfg.get("STORAGE_URL_EXPIRES", 3600),
        )
    return LocalStorageProvider(cfg["LOCAL_STORAGE_DIR"], cfg.get("PUBLIC_BASE_URL", ""))

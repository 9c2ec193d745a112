"""
Azure Blob Storage provider.

Objects are uploaded into a single container; download URLs are
read-only SAS links valid for ``expires_s`` seconds.
"""

from datetime import datetime, timedelta, timezone
from typing import BinaryIO, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from crm.core.exceptions import StorageError
from crm.storage.provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    name = "blob"

    def __init__(self, connection_string: str, container: str, url_expires_s: int = 3600):
        if not connection_string or not container:
            raise StorageError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(connection_string)
        self._container = container
        self._url_expires_s = url_expires_s

    def _client(self, key: str):
        return self._service.get_blob_client(self._container, key.lstrip("/"))

    def _sas_url(self, key: str, expires_s: int, permission: BlobSasPermissions, **kwargs) -> str:
        expiry = datetime.now(timezone.utc) + timedelta(seconds=expires_s)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self._container,
            blob_name=key.lstrip("/"),
            account_key=self._service.credential.account_key,
            permission=permission,
            expiry=expiry,
            **kwargs,
        )
        return f"{self._client(key).url}?{sas}"

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        return self._sas_url(key, expires_s, BlobSasPermissions(read=True))

    def exists(self, key: str) -> bool:
        return self._client(key).exists()

    def copy_in(self, src: bytes | BinaryIO, key: str, content_type: str = "application/octet-stream") -> str:
        try:
            self._client(key).upload_blob(
                src, overwrite=True, content_settings=ContentSettings(content_type=content_type),
            )
        except AzureError as exc:
            raise StorageError(f"Blob upload failed for {key}: {exc}") from exc
        return self.get_download_url(key, self._url_expires_s)

    def read(self, key: str) -> bytes:
        try:
            return self._client(key).download_blob().readall()
        except ResourceNotFoundError as exc:
            raise StorageError(f"Object not found: {key}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client(key).delete_blob()
        except ResourceNotFoundError:
            return

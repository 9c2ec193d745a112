"""
Document Service — metadata rows for files kept in object storage.

Functions:
    - create_document:          register an already-stored file
    - upload_document:          store an uploaded file, then register it
    - store_generated_document: store bytes produced server-side (PDFs)
    - list_entity_documents:    documents attached to one entity, newest first
    - get_document
    - get_document_file:        resolve a storage key to (document, bytes)
    - delete_document:          creator-only; removes the row, and the blob
                                once no other document points at it

Storage keys always start with the owning tenant id
(``<tenant>/documents/<entityType>/...``, ``<tenant>/quotations/...``) and
belong to exactly one document.
"""

import logging
import uuid

from sqlalchemy import select
from werkzeug.utils import secure_filename

from crm.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from crm.models import db
from crm.models.document import Document
from crm.storage import get_storage
from crm.utils.helpers import (
    db_commit,
    get_for_tenant,
    integer,
    json_dict,
    pick,
    require_fields,
    text,
)

logger = logging.getLogger(__name__)

_REQUIRED = (
    "name",
    ("fileUrl", "file_url"),
    ("fileKey", "file_key"),
    ("fileType", "file_type"),
    ("entityType", "entity_type"),
    ("entityId", "entity_id"),
)


def storage_key(tenant_id: str, *parts) -> str:
    return "/".join([tenant_id, *(str(p).strip("/") for p in parts)])


def _key_in_use(key: str) -> bool:
    return db.session.execute(
        select(Document.id).where(Document.file_key == key).limit(1)
    ).first() is not None


def _claim_key(tenant_id: str, key: str) -> str:
    if not key.startswith(f"{tenant_id}/") or ".." in key.split("/"):
        raise ValidationError(
            f"fileKey must start with '{tenant_id}/'", details={"fileKey": "invalid"},
        )
    if _key_in_use(key):
        raise ConflictError("Document", "file_key", key)
    return key


def _new_document(tenant_id, user_id, **fields) -> Document:
    document = Document(tenant_id=tenant_id, created_by=user_id, **fields)
    db.session.add(document)
    db_commit("Document")
    logger.info(
        "Document created",
        extra={"tenant_id": tenant_id, "document_id": document.id,
               "entity_type": document.entity_type, "entity_id": document.entity_id},
    )
    return document


def create_document(tenant_id: str, data: dict, user_id: str) -> dict:
    """Register a file that is already in storage.

    Raises:
        ValidationError: one of name, fileUrl, fileKey, fileType,
            entityType, entityId is missing, or fileKey lies outside the
            tenant's key space.
        ConflictError: another document already owns fileKey.
    """
    require_fields(data, *_REQUIRED)
    key = _claim_key(tenant_id, text(500)(pick(data, "fileKey", "file_key")))
    document = _new_document(
        tenant_id, user_id,
        name=text(255)(data["name"]),
        file_url=text(1000)(pick(data, "fileUrl", "file_url")),
        file_key=key,
        file_type=text(100)(pick(data, "fileType", "file_type")),
        file_size=integer(pick(data, "fileSize", "file_size")) or 0,
        entity_type=text(50)(pick(data, "entityType", "entity_type")),
        entity_id=text(50)(pick(data, "entityId", "entity_id")),
        description=text()(pick(data, "description")),
        doc_metadata=json_dict(pick(data, "metadata")),
    )
    return document.to_dict()


def store_generated_document(tenant_id: str, *, content: bytes, key: str, name: str,
                             file_type: str, entity_type: str, entity_id: str,
                             user_id: str, metadata: dict | None = None,
                             description: str | None = None) -> dict:
    """Upload *content* under *key* and register it as a Document."""
    key = _claim_key(tenant_id, key)
    url = get_storage().copy_in(content, key, file_type)
    document = _new_document(
        tenant_id, user_id,
        name=name[:255],
        file_url=url,
        file_key=key,
        file_type=file_type,
        file_size=len(content),
        entity_type=entity_type,
        entity_id=str(entity_id),
        description=description,
        doc_metadata=metadata or {},
    )
    return document.to_dict()


def upload_document(tenant_id: str, file, form: dict, user_id: str) -> dict:
    """Store a multipart upload (werkzeug FileStorage) and register it.

    Raises:
        ValidationError: no file, or entityType/entityId missing.
    """
    if file is None or not file.filename:
        raise ValidationError("file is required", details={"file": "required"})
    require_fields(form, ("entityType", "entity_type"), ("entityId", "entity_id"))
    entity_type = text(50)(pick(form, "entityType", "entity_type"))
    entity_id = text(50)(pick(form, "entityId", "entity_id"))
    filename = secure_filename(file.filename) or "upload"
    content = file.read()
    if not content:
        raise ValidationError("Uploaded file is empty", details={"file": "empty"})

    key = storage_key(tenant_id, "documents", entity_type, f"{uuid.uuid4()}-{filename}")
    return store_generated_document(
        tenant_id,
        content=content,
        key=key,
        name=text(255)(pick(form, "name")) or filename,
        file_type=file.mimetype or "application/octet-stream",
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        description=text()(pick(form, "description")),
    )


def list_entity_documents(tenant_id: str, entity_type: str, entity_id: str) -> list[dict]:
    rows = db.session.execute(
        select(Document)
        .where(
            Document.tenant_id == tenant_id,
            Document.entity_type == entity_type,
            Document.entity_id == str(entity_id),
        )
        .order_by(Document.created_at.desc(), Document.id.desc())
    ).scalars().all()
    return [d.to_dict() for d in rows]


def get_document(tenant_id: str, document_id) -> dict:
    return get_for_tenant(Document, tenant_id, document_id, "Document").to_dict()


def get_document_file(tenant_id: str, key: str) -> tuple[dict, bytes]:
    document = db.session.execute(
        select(Document).where(Document.tenant_id == tenant_id, Document.file_key == key)
    ).scalars().first()
    if document is None:
        raise NotFoundError(resource="Document", resource_id=key, tenant_id=tenant_id)
    storage = get_storage()
    if not storage.exists(key):
        logger.warning("Stored file missing", extra={"tenant_id": tenant_id, "document_id": document.id})
        raise NotFoundError(resource="Document file", resource_id=key, tenant_id=tenant_id)
    return document.to_dict(), storage.read(key)


def delete_document(tenant_id: str, document_id, user_id: str) -> None:
    """Delete a document, and its stored file unless another row shares the key.

    Raises:
        NotFoundError: no such document in this tenant.
        PermissionDeniedError: the caller did not create it.
    """
    document = get_for_tenant(Document, tenant_id, document_id, "Document")
    if document.created_by != user_id:
        raise PermissionDeniedError("Only the creator can delete this document")
    key = document.file_key
    db.session.delete(document)
    db_commit("Document")
    if key and not _key_in_use(key):
        get_storage().delete(key)
    logger.info(
        "Document deleted",
        extra={"tenant_id": tenant_id, "document_id": document_id, "user_id": user_id},
    )

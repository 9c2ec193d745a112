"""
Document model — metadata row pointing at an object-storage blob.
"""

from crm.models import db
from crm.models.base import TenantModel


class Document(TenantModel):
    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_tenant_entity", "tenant_id", "entity_type", "entity_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    file_key = db.Column(db.String(500), nullable=False)
    file_url = db.Column(db.String(1000), nullable=False)
    file_type = db.Column(db.String(100), nullable=False, comment="MIME type")
    file_size = db.Column(db.Integer)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text)
    doc_metadata = db.Column("metadata", db.JSON, default=dict)
    created_by = db.Column(db.String(100), nullable=False)

    def to_dict(self):
        return {
            "id": str(self.id),
            "name": self.name,
            "fileKey": self.file_key,
            "fileUrl": self.file_url,
            "fileType": self.file_type,
            "fileSize": self.file_size or 0,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "description": self.description or "",
            "metadata": self.doc_metadata or {},
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.name} on {self.entity_type}/{self.entity_id}>"

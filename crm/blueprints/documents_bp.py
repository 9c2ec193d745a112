"""
Documents Blueprint — file metadata attached to CRM entities.

Endpoints:
    POST    /api/v1/documents                               register a stored file
    POST    /api/v1/documents/upload                        multipart upload (file + entityType/entityId)
    GET     /api/v1/documents/files/<key>                   file bytes (local storage backend)
    GET     /api/v1/documents/<entity_type>/<entity_id>     documents of one entity
    GET     /api/v1/documents/<id>
    DELETE  /api/v1/documents/<id>                          creator only
"""

import io

from flask import Blueprint, g, jsonify, request, send_file

from crm.blueprints import json_body
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import document_service

documents_bp = Blueprint("documents", __name__, url_prefix="/api/v1/documents")


@documents_bp.route("", methods=["POST"])
@track_activity("create", "document")
@require_permission("crm.documents.create")
@require_credits("crm.documents.create")
def create_document():
    return jsonify(document_service.create_document(g.tenant_id, json_body(), g.jwt_user_id)), 201


@documents_bp.route("/upload", methods=["POST"])
@track_activity("import", "document")
@require_permission("crm.documents.create")
@require_credits("crm.documents.create")
def upload_document():
    document = document_service.upload_document(
        g.tenant_id, request.files.get("file"), request.form.to_dict(), g.jwt_user_id,
    )
    return jsonify(document), 201


@documents_bp.route("/files/<path:key>", methods=["GET"])
@require_permission("crm.documents.read")
def download_file(key):
    document, content = document_service.get_document_file(g.tenant_id, key)
    return send_file(
        io.BytesIO(content),
        mimetype=document["fileType"] or "application/octet-stream",
        as_attachment=False,
        download_name=document["name"],
    )


@documents_bp.route("/<entity_type>/<entity_id>", methods=["GET"])
@require_permission("crm.documents.read")
def list_entity_documents(entity_type, entity_id):
    items = document_service.list_entity_documents(g.tenant_id, entity_type, entity_id)
    return jsonify({"items": items, "total": len(items)}), 200


@documents_bp.route("/<int:document_id>", methods=["GET"])
@require_permission("crm.documents.read")
def get_document(document_id):
    return jsonify(document_service.get_document(g.tenant_id, document_id)), 200


@documents_bp.route("/<int:document_id>", methods=["DELETE"])
@track_activity("delete", "document", severity="medium")
@require_permission("crm.documents.delete")
def delete_document(document_id):
    document_service.delete_document(g.tenant_id, document_id, g.jwt_user_id)
    return jsonify({"message": "Document deleted", "id": str(document_id)}), 200

"""
PDF Blueprint — quotation documents.

Endpoints:
    POST  /api/v1/pdf/quotation                 { quotationId, saveToStorage?, options? }
    GET   /api/v1/pdf/quotation/<id>            download
    GET   /api/v1/pdf/quotation/<id>/preview    HTML preview of the same layout

With ``saveToStorage`` (alias ``saveToS3``) the PDF is uploaded and
registered as a Document (201 with the document); otherwise the bytes are
returned as an attachment.

options: { "format": "A4" | "Letter" | ..., "margin": { "top": "1cm", ... } }
"""

import io
import logging

from flask import Blueprint, g, jsonify, make_response, request, send_file

from crm.blueprints import json_body
from crm.core.exceptions import PdfRenderError, StorageError, ValidationError
from crm.middleware.permission_required import require_credits, require_permission, track_activity
from crm.services import pdf_service
from crm.utils.errors import E, server_error
from crm.utils.helpers import boolean, pick

logger = logging.getLogger(__name__)

pdf_bp = Blueprint("pdf", __name__, url_prefix="/api/v1/pdf")


def _pdf_response(content: bytes, filename: str):
    response = send_file(
        io.BytesIO(content),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=filename,
    )
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


def _failed(exc):
    logger.error(
        "Quotation PDF failed: %s", exc,
        extra={"tenant_id": g.tenant_id, "user_id": g.jwt_user_id},
    )
    code = E.STORAGE if isinstance(exc, StorageError) else E.PDF_RENDER
    return server_error("Failed to generate PDF", exc, code=code)


@pdf_bp.route("/quotation", methods=["POST"])
@track_activity("generate", "quotation_pdf", severity="medium")
@require_permission("crm.quotations.read")
@require_credits("crm.pdf.generate")
def generate_quotation():
    data = json_body()
    quotation_id = pick(data, "quotationId", "quotation_id")
    if not quotation_id:
        raise ValidationError("Quotation ID is required", details={"quotationId": "required"})
    save = boolean(pick(data, "saveToStorage", "saveToS3", "save_to_storage", default=False))
    options = data.get("options") if isinstance(data.get("options"), dict) else {}

    try:
        content, quotation = pdf_service.generate_quotation_pdf(g.tenant_id, quotation_id, options)
        if save:
            document = pdf_service.save_quotation_pdf(g.tenant_id, quotation, content, g.jwt_user_id)
            return jsonify(document), 201
    except (PdfRenderError, StorageError) as exc:
        return _failed(exc)
    return _pdf_response(content, pdf_service.pdf_filename(quotation))


@pdf_bp.route("/quotation/<quotation_id>", methods=["GET"])
@track_activity("generate", "quotation_pdf")
@require_permission("crm.quotations.read")
@require_credits("crm.pdf.generate")
def download_quotation(quotation_id):
    options = {"format": request.args["format"]} if request.args.get("format") else {}
    try:
        content, quotation = pdf_service.generate_quotation_pdf(g.tenant_id, quotation_id, options)
    except PdfRenderError as exc:
        return _failed(exc)
    return _pdf_response(content, pdf_service.pdf_filename(quotation))


@pdf_bp.route("/quotation/<quotation_id>/preview", methods=["GET"])
@require_permission("crm.quotations.read")
def preview_quotation(quotation_id):
    html = pdf_service.preview_quotation_html(g.tenant_id, quotation_id)
    response = make_response(html, 200)
    response.headers["Content-Type"] = "text/html; charset=utf-8"
    return response

"""
Quotation PDF Service.

Functions:
    - build_context:           quotation + account + contact + issuing company → template context
    - preview_quotation_html:  HTML rendering of the template
    - generate_quotation_pdf:  render the PDF (bounded by PDF_RENDER_TIMEOUT)
    - save_quotation_pdf:      upload the PDF and register it as a Document

The issuing company block comes from the tenant's ``settings["company"]``
(name, legalName, addressLines, gstin, footer); the tenant name is used
when none is configured.
"""

import logging
import uuid

from flask import current_app

from crm.models.commercial import Quotation
from crm.models.tenant import Tenant
from crm.pdf.quotation_template import build_quotation_context, render_quotation_html
from crm.pdf.renderer import ReportlabRenderer, render_with_timeout
from crm.services import document_service
from crm.utils.helpers import get_for_tenant

logger = logging.getLogger(__name__)


def get_renderer():
    cfg = current_app.config
    return ReportlabRenderer(
        default_format=cfg.get("PDF_DEFAULT_FORMAT", "A4"),
        default_margin_cm=cfg.get("PDF_DEFAULT_MARGIN_CM", 1.0),
    )


def _company(tenant_id: str) -> dict:
    tenant = Tenant.query.filter_by(tenant_id=tenant_id).first()
    if tenant is None:
        return {}
    company = dict((tenant.settings or {}).get("company") or {})
    company.setdefault("name", tenant.name)
    return company


def load_quotation(tenant_id: str, quotation_id) -> Quotation:
    return get_for_tenant(Quotation, tenant_id, quotation_id, "Quotation")


def build_context(tenant_id: str, quotation: Quotation) -> dict:
    return build_quotation_context(
        quotation.to_dict(),
        account=quotation.account.to_dict() if quotation.account else None,
        contact=quotation.contact.to_dict() if quotation.contact else None,
        company=_company(tenant_id),
    )


def preview_quotation_html(tenant_id: str, quotation_id) -> str:
    quotation = load_quotation(tenant_id, quotation_id)
    return render_quotation_html(build_context(tenant_id, quotation))


def generate_quotation_pdf(tenant_id: str, quotation_id, options: dict | None = None) -> tuple[bytes, Quotation]:
    """Render a quotation to PDF bytes.

    Raises:
        NotFoundError: quotation missing in this tenant.
        PdfRenderError: renderer failure, timeout or empty output.
    """
    quotation = load_quotation(tenant_id, quotation_id)
    context = build_context(tenant_id, quotation)
    timeout = current_app.config.get("PDF_RENDER_TIMEOUT", 60)
    renderer = get_renderer()
    content = render_with_timeout(renderer, context, options, timeout=timeout)
    logger.info(
        "Quotation PDF rendered",
        extra={"tenant_id": tenant_id, "quotation_id": quotation.id,
               "bytes": len(content), "renderer": renderer.name},
    )
    return content, quotation


def pdf_filename(quotation: Quotation) -> str:
    return f"Quotation-{quotation.quotation_number}.pdf"


def save_quotation_pdf(tenant_id: str, quotation: Quotation, content: bytes, user_id: str) -> dict:
    """Upload under ``<tenant>/quotations/<uuid>-Quotation-<number>.pdf`` and create the Document."""
    filename = pdf_filename(quotation)
    key = document_service.storage_key(tenant_id, "quotations", f"{uuid.uuid4()}-{filename}")
    return document_service.store_generated_document(
        tenant_id,
        content=content,
        key=key,
        name=filename,
        file_type="application/pdf",
        entity_type="quotation",
        entity_id=str(quotation.id),
        user_id=user_id,
        metadata={
            "quotationNumber": quotation.quotation_number,
            "accountName": quotation.account.company_name if quotation.account else None,
            "issueDate": quotation.issue_date.isoformat() if quotation.issue_date else None,
        },
    )

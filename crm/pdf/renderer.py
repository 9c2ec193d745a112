"""
PDF renderers for quotation contexts.

``PdfRenderer`` is the interface; ``ReportlabRenderer`` is the production
implementation (reportlab platypus). ``render_with_timeout`` runs any
renderer in a worker thread and gives up after the configured timeout.

Options (all optional):
    format:     "A4" (default) | "A3" | "Letter" | "Legal"
    landscape:  bool
    margin:     number (cm), "1cm" / "10mm" / "0.5in", or a dict with
                top/right/bottom/left in those units
"""

import io
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A3, A4, LEGAL, LETTER, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, inch, mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from crm.core.exceptions import PdfRenderError
from crm.pdf.quotation_template import format_currency

logger = logging.getLogger(__name__)

PAGE_SIZES = {"A4": A4, "A3": A3, "LETTER": LETTER, "LEGAL": LEGAL}
DEFAULT_MARGIN_CM = 1.0
_UNITS = {"cm": cm, "mm": mm, "in": inch, "pt": 1.0, "": cm}
_LENGTH_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*(cm|mm|in|pt)?\s*$")
_ITEM_COLUMN_FRACTIONS = (0.06, 0.08, 0.07, 0.09, 0.22, 0.06, 0.11, 0.11, 0.06, 0.14)


def parse_length(value, default_cm: float = DEFAULT_MARGIN_CM) -> float:
    """Length in points from a number (cm) or a "<n><unit>" string."""
    if value is None or value == "":
        return default_cm * cm
    if isinstance(value, (int, float)):
        return float(value) * cm
    match = _LENGTH_RE.match(str(value))
    if not match:
        raise PdfRenderError(f"Invalid margin value: {value!r}")
    return float(match.group(1)) * _UNITS[match.group(2) or ""]


def page_setup(options: dict | None, default_format: str = "A4",
               default_margin_cm: float = DEFAULT_MARGIN_CM) -> tuple[tuple, dict]:
    """Resolve (pagesize, margins) from renderer options."""
    options = options or {}
    fmt = str(options.get("format") or default_format).upper()
    if fmt not in PAGE_SIZES:
        raise PdfRenderError(f"Unsupported page format: {fmt}")
    pagesize = PAGE_SIZES[fmt]
    if options.get("landscape"):
        pagesize = landscape(pagesize)

    margin = options.get("margin")
    sides = ("top", "right", "bottom", "left")
    if isinstance(margin, dict):
        margins = {s: parse_length(margin.get(s), default_margin_cm) for s in sides}
    else:
        length = parse_length(margin, default_margin_cm)
        margins = {s: length for s in sides}
    return pagesize, margins


class PdfRenderer:
    """Turns a quotation context into PDF bytes."""

    name = "base"

    def render(self, context: dict, options: dict | None = None) -> bytes:
        raise NotImplementedError


class ReportlabRenderer(PdfRenderer):
    name = "reportlab"

    def __init__(self, default_format: str = "A4", default_margin_cm: float = DEFAULT_MARGIN_CM):
        self.default_format = default_format
        self.default_margin_cm = default_margin_cm
        styles = getSampleStyleSheet()
        self.styles = {
            "title": ParagraphStyle("QTitle", parent=styles["Title"], alignment=TA_RIGHT,
                                    textColor=colors.HexColor("#1a73e8")),
            "company": ParagraphStyle("QCompany", parent=styles["Heading1"], fontSize=16, spaceAfter=4),
            "h2": ParagraphStyle("QH2", parent=styles["Heading2"], fontSize=13, spaceBefore=10),
            "h3": ParagraphStyle("QH3", parent=styles["Heading3"], fontSize=10, spaceBefore=6, spaceAfter=2),
            "body": ParagraphStyle("QBody", parent=styles["BodyText"], fontSize=9, leading=12),
            "right": ParagraphStyle("QRight", parent=styles["BodyText"], fontSize=9, alignment=TA_RIGHT),
            "cell": ParagraphStyle("QCell", parent=styles["BodyText"], fontSize=7.5, leading=9),
            "footer": ParagraphStyle("QFooter", parent=styles["BodyText"], fontSize=8,
                                     textColor=colors.grey, alignment=1),
        }

    def _p(self, text, style="body"):
        return Paragraph(escape(str(text)), self.styles[style])

    def _header(self, ctx, width):
        company = ctx["company"]
        left = [self._p(company["name"], "company")] if company["name"] else []
        for line in [company["legalName"], *company["addressLines"]]:
            if line:
                left.append(self._p(line))
        if company["gstin"]:
            left.append(self._p(f"GSTIN: {company['gstin']}"))
        right = [
            self._p("QUOTATION", "title"),
            self._p(f"Quotation #: {ctx['quotationNumber']}", "right"),
            self._p(f"Date: {ctx['issueDate']}", "right"),
            self._p(f"Valid Until: {ctx['validUntil']}", "right"),
        ]
        table = Table([[left or "", right]], colWidths=[width * 0.5, width * 0.5])
        table.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.HexColor("#eeeeee")),
        ]))
        return table

    def _items_table(self, ctx, money, width):
        head = ["S. No.", "Type", "Status", "SKU", "Description", "Qty",
                "Unit Price", "Total Price", "GST", "Total (Inc. GST)"]
        data = [[self._p(h, "cell") for h in head]]
        for row in ctx["items"]:
            data.append([
                self._p(row["index"], "cell"),
                self._p(row["type"], "cell"),
                self._p(row["status"], "cell"),
                self._p(row["sku"], "cell"),
                self._p(row["description"], "cell"),
                self._p(row["quantity"], "cell"),
                self._p(money(row["unitPrice"]), "cell"),
                self._p(money(row["amount"]), "cell"),
                self._p(row["gst"], "cell"),
                self._p(money(row["total"]), "cell"),
            ])
        if not ctx["items"]:
            data.append([self._p("No items", "cell")] + [""] * (len(head) - 1))

        table = Table(data, repeatRows=1,
                      colWidths=[width * f for f in _ITEM_COLUMN_FRACTIONS])
        style = [
            ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#dddddd")),
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f5f5f5")),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]
        for i in range(2, len(data), 2):
            style.append(("BACKGROUND", (0, i), (-1, i), colors.HexColor("#f9f9f9")))
        if not ctx["items"]:
            style.append(("SPAN", (0, 1), (-1, 1)))
        table.setStyle(TableStyle(style))
        return table

    def _totals(self, ctx, money):
        table = Table(
            [
                ["Subtotal:", money(ctx["subtotal"])],
                ["GST:", money(ctx["gstTotal"])],
                ["Total:", money(ctx["total"])],
            ],
            colWidths=[3 * cm, 4.5 * cm],
            hAlign="RIGHT",
        )
        table.setStyle(TableStyle([
            ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
            ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
            ("FONTNAME", (0, 2), (-1, 2), "Helvetica-Bold"),
            ("LINEABOVE", (0, 2), (-1, 2), 1.5, colors.black),
        ]))
        return table

    def _terms(self, ctx):
        terms = ctx["terms"]
        flow = [self._p("Terms and Conditions", "h2")]
        for title, text in (
            ("Prices:", terms.get("prices")),
            ("BOQ:", terms.get("boq")),
            ("Payment Terms:", terms.get("paymentTerms")),
            ("Renewal Term:", ctx["renewalTerm"]),
            ("Validity:", f"Quotation is valid till {ctx['validUntil']}"),
            ("Notes:", ctx["notes"]),
        ):
            if text:
                flow += [self._p(title, "h3"), self._p(text)]
        return flow

    def render(self, context: dict, options: dict | None = None) -> bytes:
        pagesize, margins = page_setup(options, self.default_format, self.default_margin_cm)
        currency = context.get("currency", "INR")

        def money(amount):
            return format_currency(amount, currency, symbol=False)

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=pagesize,
            topMargin=margins["top"],
            rightMargin=margins["right"],
            bottomMargin=margins["bottom"],
            leftMargin=margins["left"],
            title=f"Quotation {context.get('quotationNumber', '')}",
        )
        width = pagesize[0] - margins["left"] - margins["right"] - 12  # frame padding
        story = [self._header(context, width), Spacer(1, 0.5 * cm), self._p("Customer Information", "h2")]
        customer = [
            ("To", context["accountName"]),
            ("Address", context["address"]),
            ("Contact", context["contactName"]),
            ("Email", context["contactEmail"]),
            ("Phone", context["contactPhone"]),
            ("OEM", context["oem"]),
        ]
        for label, value in customer:
            if value:
                story.append(Paragraph(f"<b>{label}:</b> {escape(str(value))}", self.styles["body"]))
        story += [
            self._p("Quotation Items", "h2"),
            self._items_table(context, money, width),
            self._totals(context, money),
            *self._terms(context),
            Spacer(1, 1 * cm),
            self._p(context["company"]["footer"], "footer"),
        ]
        doc.build(story)
        return buffer.getvalue()


def render_with_timeout(renderer: PdfRenderer, context: dict, options: dict | None = None,
                        timeout: float = 60) -> bytes:
    """Run *renderer* in a worker thread, waiting at most *timeout* seconds.

    Raises:
        PdfRenderError: timeout, renderer failure, or empty output.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pdf-render")
    future = executor.submit(renderer.render, context, options)
    try:
        content = future.result(timeout=timeout)
    except FutureTimeout as exc:
        future.cancel()
        raise PdfRenderError(f"PDF rendering timed out after {timeout}s") from exc
    except PdfRenderError:
        raise
    except Exception as exc:
        logger.exception("PDF renderer %s failed", renderer.name)
        raise PdfRenderError(str(exc)) from exc
    finally:
        executor.shutdown(wait=False)

    if not content:
        raise PdfRenderError("Generated PDF is empty")
    return content

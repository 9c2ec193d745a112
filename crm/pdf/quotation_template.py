"""
Quotation document template.

``build_quotation_context`` turns a Quotation (plus its account, contact
and the issuing company) into a plain dict; ``render_quotation_html``
renders that dict as the HTML preview, and the PDF renderer lays out the
same dict with reportlab.
"""

from datetime import date, datetime

from flask import render_template_string

from crm.models.commercial import DEFAULT_TERMS, normalize_item
from crm.utils.helpers import parse_date, to_float

CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "AED": "AED ",
    "SGD": "S$",
}

ADDRESS_FALLBACK = "Address not provided"


def _group_indian(integer_part: str) -> str:
    """12345678 -> 1,23,45,678 (last three digits, then pairs)."""
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs) + "," + tail


def format_currency(amount, currency: str = "INR", symbol: bool = True) -> str:
    """Format money with two decimals.

    INR uses Indian digit grouping (1,23,456.00); other currencies use
    thousands grouping. ``symbol=False`` prefixes the ISO code instead of
    the symbol (reportlab's base fonts have no rupee glyph).
    """
    currency = (currency or "INR").upper()
    value = round(to_float(amount), 2)
    sign = "-" if value < 0 else ""
    integer_part, decimals = f"{abs(value):.2f}".split(".")
    if currency == "INR":
        grouped = _group_indian(integer_part)
    else:
        grouped = f"{int(integer_part):,}"
    prefix = CURRENCY_SYMBOLS.get(currency, f"{currency} ") if symbol else f"{currency} "
    return f"{sign}{prefix}{grouped}.{decimals}"


def format_date(value) -> str:
    """19 October 2026. Unparseable input comes back as given (or "")."""
    if isinstance(value, datetime):
        value = value.date()
    parsed = value if isinstance(value, date) else parse_date(value)
    if parsed is None:
        return str(value or "")
    return f"{parsed.day} {parsed.strftime('%B %Y')}"


def _address_parts(addr) -> list[str]:
    if not isinstance(addr, dict):
        return []
    parts = [addr.get(k) for k in ("street", "city", "state")]
    parts.append(addr.get("postalCode") or addr.get("zipCode"))
    parts.append(addr.get("country"))
    return [str(p).strip() for p in parts if p and str(p).strip()]


def build_address(account) -> str:
    """Billing address, else shipping address, else a fixed placeholder."""
    if not account:
        return ADDRESS_FALLBACK
    for field in ("billingAddress", "shippingAddress"):
        parts = _address_parts(account.get(field))
        if parts:
            return ", ".join(parts)
    return ADDRESS_FALLBACK


def build_quotation_context(quotation: dict, account: dict | None = None,
                            contact: dict | None = None, company: dict | None = None) -> dict:
    """Everything the template and the renderer need, already formatted."""
    currency = quotation.get("quoteCurrency") or quotation.get("currency") or "INR"
    items = [normalize_item(i) for i in quotation.get("items") or []]
    subtotal = sum(i["amount"] for i in items)
    gst_total = sum(i["gstAmount"] for i in items)
    terms = {**DEFAULT_TERMS, **{k: v for k, v in (quotation.get("terms") or {}).items() if v}}
    company = company or {}

    rows = []
    for index, item in enumerate(items, start=1):
        raw = (quotation.get("items") or [])[index - 1]
        rows.append({
            "index": index,
            "type": raw.get("type") or "Product",
            "status": raw.get("status") or "New",
            "sku": item["sku"] or "N/A",
            "description": item["description"],
            "quantity": f"{item['quantity']:g}",
            "unitPrice": item["unitPrice"],
            "amount": item["amount"],
            "gst": f"{item['gst']:g}%",
            "total": item["total"],
        })

    contact_name = ""
    if contact:
        contact_name = f"{contact.get('firstName') or ''} {contact.get('lastName') or ''}".strip()

    return {
        "currency": currency,
        "quotationNumber": quotation.get("quotationNumber") or "",
        "issueDate": format_date(quotation.get("issueDate")),
        "validUntil": format_date(quotation.get("validUntil")),
        "oem": quotation.get("oem") or "",
        "accountName": (account or {}).get("companyName") or "Customer Name",
        "address": build_address(account),
        "contactName": contact_name or "Contact Person",
        "contactEmail": (contact or {}).get("email") or "N/A",
        "contactPhone": (contact or {}).get("phone") or "",
        "items": rows,
        "subtotal": round(subtotal, 2),
        "gstTotal": round(gst_total, 2),
        "total": round(subtotal + gst_total, 2),
        "terms": terms,
        "renewalTerm": quotation.get("renewalTerm") or "",
        "notes": quotation.get("notes") or "",
        "company": {
            "name": company.get("name") or "",
            "legalName": company.get("legalName") or "",
            "addressLines": list(company.get("addressLines") or []),
            "gstin": company.get("gstin") or "",
            "footer": company.get("footer") or "Thank you for your business!",
        },
    }


_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Quotation {{ q.quotationNumber }}</title>
  <style>
    body { font-family: Arial, sans-serif; margin: 0; padding: 20px; color: #333; }
    .header { padding-bottom: 20px; margin-bottom: 20px; border-bottom: 1px solid #eee; overflow: hidden; }
    .header-left { float: left; width: 50%; }
    .header-right { float: right; width: 50%; text-align: right; }
    table { width: 100%; border-collapse: collapse; margin: 20px 0; }
    th, td { padding: 8px; border: 1px solid #ddd; font-size: 12px; }
    th { background-color: #f5f5f5; text-align: left; text-transform: uppercase; color: #555; }
    td.num { text-align: right; }
    tr:nth-child(even) { background-color: #f9f9f9; }
    .totals { width: 300px; margin-left: auto; }
    .totals div { display: flex; justify-content: space-between; padding: 4px 0; }
    .totals .grand { border-top: 2px solid #000; font-weight: bold; }
    .footer { margin-top: 50px; text-align: center; font-size: 12px; color: #777; border-top: 1px solid #eee; padding-top: 20px; }
  </style>
</head>
<body>
  <div class="header">
    <div class="header-left">
      <h1>{{ q.company.name }}</h1>
      {% if q.company.legalName %}<p>{{ q.company.legalName }}</p>{% endif %}
      {% for line in q.company.addressLines %}<p>{{ line }}</p>{% endfor %}
      {% if q.company.gstin %}<p>GSTIN: {{ q.company.gstin }}</p>{% endif %}
    </div>
    <div class="header-right">
      <h2>QUOTATION</h2>
      <p><strong>Quotation #:</strong> {{ q.quotationNumber }}</p>
      <p><strong>Date:</strong> {{ q.issueDate }}</p>
      <p><strong>Valid Until:</strong> {{ q.validUntil }}</p>
    </div>
  </div>

  <h2>Customer Information</h2>
  <p><strong>To:</strong> {{ q.accountName }}</p>
  <p><strong>Address:</strong> {{ q.address }}</p>
  <p><strong>Contact:</strong> {{ q.contactName }}</p>
  <p><strong>Email:</strong> {{ q.contactEmail }}</p>
  {% if q.contactPhone %}<p><strong>Phone:</strong> {{ q.contactPhone }}</p>{% endif %}
  {% if q.oem %}<p><strong>OEM:</strong> {{ q.oem }}</p>{% endif %}

  <h2>Quotation Items</h2>
  <table>
    <thead>
      <tr>
        <th>S. No.</th><th>Type</th><th>Status</th><th>SKU</th><th>Description</th>
        <th>Quantity</th><th>Unit Price</th><th>Total Price</th><th>GST</th><th>Total (Inc. GST)</th>
      </tr>
    </thead>
    <tbody>
      {% for row in q["items"] %}
      <tr>
        <td>{{ row.index }}</td><td>{{ row.type }}</td><td>{{ row.status }}</td>
        <td>{{ row.sku }}</td><td>{{ row.description }}</td>
        <td class="num">{{ row.quantity }}</td>
        <td class="num">{{ money(row.unitPrice) }}</td>
        <td class="num">{{ money(row.amount) }}</td>
        <td class="num">{{ row.gst }}</td>
        <td class="num">{{ money(row.total) }}</td>
      </tr>
      {% else %}
      <tr><td colspan="10">No items</td></tr>
      {% endfor %}
    </tbody>
  </table>
  <div class="totals">
    <div><span>Subtotal:</span><span>{{ money(q.subtotal) }}</span></div>
    <div><span>GST:</span><span>{{ money(q.gstTotal) }}</span></div>
    <div class="grand"><span>Total:</span><span>{{ money(q.total) }}</span></div>
  </div>

  <h2>Terms and Conditions</h2>
  <h3>Prices:</h3><p>{{ q.terms.prices }}</p>
  <h3>BOQ:</h3><p>{{ q.terms.boq }}</p>
  <h3>Payment Terms:</h3><p>{{ q.terms.paymentTerms }}</p>
  {% if q.renewalTerm %}<h3>Renewal Term:</h3><p>{{ q.renewalTerm }}</p>{% endif %}
  <h3>Validity:</h3><p>Quotation is valid till {{ q.validUntil }}</p>
  {% if q.notes %}<h3>Notes:</h3><p>{{ q.notes }}</p>{% endif %}

  <div class="footer"><p>{{ q.company.footer }}</p></div>
</body>
</html>
"""


def render_quotation_html(context: dict) -> str:
    currency = context.get("currency", "INR")
    return render_template_string(
        _HTML, q=context, money=lambda amount: format_currency(amount, currency),
    )

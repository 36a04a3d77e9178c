from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib import colors
from reportlab.platypus import Table, TableStyle
import io

from pdf_console.shared.document_schema import DocumentData
from pdf_console.shared.document_types import DocumentType, get_type_config, normalize_document_type
from pdf_console.shared.errors import RenderError
from pdf_console.shared.formatter import (
    display_text,
    format_currency,
    format_long_date,
    format_quantity,
    format_short_date,
    wrap_text,
)

DEFAULT_COMPANY_NAME = "Your Company"
DEFAULT_COMPANY_INFO = "123 Company St, City, State 12345\nPhone: (123) 456-7890\nEmail: info@yourcompany.com"

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"

PAGE_WIDTH, PAGE_HEIGHT = A4
LEFT_MARGIN = 20 * mm
RIGHT_MARGIN = 20 * mm
TOP = PAGE_HEIGHT - 20 * mm
BOTTOM = 22 * mm
CONTENT_WIDTH = PAGE_WIDTH - LEFT_MARGIN - RIGHT_MARGIN
LINE_GAP = 5 * mm
SECTION_GAP = 8 * mm

ITEM_COL_WIDTHS = [85 * mm, 20 * mm, 30 * mm, 35 * mm]
PAYMENT_COL_WIDTHS = [30 * mm, 35 * mm, 70 * mm, 35 * mm]

TABLE_STYLE = [
    # Header row
    ("FONT", (0, 0), (-1, 0), FONT_BOLD, 10),
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F5F5F5")),
    ("LINEBELOW", (0, 0), (-1, 0), 1, colors.HexColor("#000000")),
    ("TOPPADDING", (0, 0), (-1, 0), 6),
    ("BOTTOMPADDING", (0, 0), (-1, 0), 6),

    # Data rows
    ("FONT", (0, 1), (-1, -1), FONT, 9),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ("BOX", (0, 0), (-1, -1), 1, colors.HexColor("#000000")),
    ("INNERGRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#CCCCCC")),
    ("LEFTPADDING", (0, 0), (-1, -1), 5),
    ("RIGHTPADDING", (0, 0), (-1, -1), 5),
    ("TOPPADDING", (0, 1), (-1, -1), 4),
    ("BOTTOMPADDING", (0, 1), (-1, -1), 4),
]


class _Pages:
    """Tracks the current page and draws the page-number footer."""

    def __init__(self, pdf, footer_text):
        self.pdf = pdf
        self.footer_text = footer_text
        self.number = 1

    def footer(self):
        self.pdf.setFont(FONT, 8)
        self.pdf.setFillColor(colors.HexColor("#666666"))
        self.pdf.drawString(LEFT_MARGIN, 12 * mm, self.footer_text)
        self.pdf.drawRightString(PAGE_WIDTH - RIGHT_MARGIN, 12 * mm, f"Page {self.number}")
        self.pdf.setFillColor(colors.black)

    def new_page(self):
        self.footer()
        self.pdf.showPage()
        self.number += 1
        return TOP

    def ensure_room(self, y, needed):
        if y - needed < BOTTOM:
            return self.new_page()
        return y


def _draw_flowing_table(pdf, pages, table, y):
    """Draw a table, splitting it across pages (header row repeats). Returns the new y."""
    while True:
        available = y - BOTTOM
        _, h = table.wrapOn(pdf, CONTENT_WIDTH, available)
        if h <= available:
            table.drawOn(pdf, LEFT_MARGIN, y - h)
            return y - h
        parts = table.split(CONTENT_WIDTH, available)
        if len(parts) < 2:
            if y >= TOP:
                # A single row taller than a page; draw it and let it clip
                table.drawOn(pdf, LEFT_MARGIN, y - h)
                return max(y - h, BOTTOM)
            y = pages.new_page()
            continue
        head, table = parts[0], parts[1]
        _, head_h = head.wrapOn(pdf, CONTENT_WIDTH, available)
        head.drawOn(pdf, LEFT_MARGIN, y - head_h)
        y = pages.new_page()


def _letterhead(pdf, company_name, company_info):
    pdf.setFont(FONT_BOLD, 14)
    pdf.drawCentredString(PAGE_WIDTH / 2, TOP, company_name)
    y = TOP - LINE_GAP
    pdf.setFont(FONT, 9)
    for line in wrap_text(company_info, max_width_chars=90):
        pdf.drawCentredString(PAGE_WIDTH / 2, y, line)
        y -= LINE_GAP * 0.8
    y -= LINE_GAP * 0.4
    pdf.setStrokeColor(colors.HexColor("#000000"))
    pdf.setLineWidth(1)
    pdf.line(LEFT_MARGIN, y, PAGE_WIDTH - RIGHT_MARGIN, y)
    return y - SECTION_GAP


def _header(pdf, config, data, title, y):
    pdf.setFont(FONT_BOLD, 22)
    pdf.drawString(LEFT_MARGIN, y - 6 * mm, title)

    right = PAGE_WIDTH - RIGHT_MARGIN
    header_y = y
    pdf.setFont(FONT_BOLD, 11)
    pdf.drawRightString(right, header_y, f"{title.title()} #: {display_text(data.number)}")
    header_y -= LINE_GAP * 0.9
    pdf.setFont(FONT, 10)
    pdf.drawRightString(right, header_y, f"Date: {format_long_date(data.issue_date)}")
    if data.status:
        header_y -= LINE_GAP * 0.9
        pdf.drawRightString(right, header_y, f"Status: {data.status}")

    y = min(y - 6 * mm, header_y) - SECTION_GAP

    pdf.setFont(FONT_BOLD, 11)
    pdf.setFillColor(colors.HexColor("#4D4D4D"))
    pdf.drawString(LEFT_MARGIN, y, config.party_label)
    pdf.setFillColor(colors.black)
    y -= LINE_GAP
    pdf.setFont(FONT, 11)
    pdf.drawString(LEFT_MARGIN + 3 * mm, y, display_text(data.party.name))
    pdf.setFont(FONT, 9)
    for line in data.party.contact_lines():
        for wrapped in wrap_text(line, max_width_chars=70):
            y -= LINE_GAP * 0.8
            pdf.drawString(LEFT_MARGIN + 3 * mm, y, wrapped)
    return y - SECTION_GAP


def _items_table(data, document_type):
    price_label = "Cost" if document_type == DocumentType.PURCHASE_ORDER else "Unit Price"
    rows = [["Description", "Qty", price_label, "Total"]]
    for item in data.line_items:
        text = wrap_text(display_text(item.description), max_width_chars=48)
        if item.note:
            text += wrap_text(item.note, max_width_chars=48)
        rows.append([
            "\n".join(text),
            format_quantity(item.quantity),
            format_currency(item.unit_price),
            format_currency(item.total),
        ])
    if len(rows) == 1:
        rows.append(["No line items", "", "", ""])

    table = Table(rows, colWidths=ITEM_COL_WIDTHS, repeatRows=1)
    table.setStyle(TableStyle(TABLE_STYLE + [
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("ALIGN", (0, 0), (0, -1), "LEFT"),
    ]))
    return table


def _payments_table(data):
    rows = [["Date", "Method", "Note", "Amount"]]
    for payment in data.payments:
        rows.append([
            format_short_date(payment.payment_date),
            display_text(payment.method),
            "\n".join(wrap_text(payment.note, max_width_chars=40)) or "",
            format_currency(payment.amount),
        ])
    table = Table(rows, colWidths=PAYMENT_COL_WIDTHS, repeatRows=1)
    table.setStyle(TableStyle(TABLE_STYLE + [
        ("ALIGN", (3, 0), (3, -1), "RIGHT"),
    ]))
    return table


def _totals(pdf, pages, config, data, y):
    lines = [("Subtotal", format_currency(data.subtotal_amount))]
    if data.tax_rate:
        lines.append((f"Tax ({format_quantity(data.tax_rate)}%)", format_currency(data.tax)))
    else:
        lines.append(("Tax", format_currency(data.tax)))
    lines.append(("Total", format_currency(data.grand_total)))
    lines.append((config.paid_label, format_currency(data.paid)))
    lines.append(("Balance Due", format_currency(data.balance)))

    y = pages.ensure_room(y, len(lines) * LINE_GAP * 1.2 + LINE_GAP)
    right = PAGE_WIDTH - RIGHT_MARGIN
    label_x = right - 45 * mm
    y -= LINE_GAP
    for label, amount in lines:
        bold = label in ("Total", "Balance Due")
        pdf.setFont(FONT_BOLD if bold else FONT, 11 if bold else 10)
        pdf.drawRightString(label_x, y, label)
        pdf.drawRightString(right, y, amount)
        y -= LINE_GAP * 1.2
    return y - SECTION_GAP * 0.5


def _notes(pdf, pages, notes, y):
    lines = wrap_text(notes.strip(), max_width_chars=95)
    y = pages.ensure_room(y, LINE_GAP * 2)
    pdf.setFont(FONT_BOLD, 10)
    pdf.drawString(LEFT_MARGIN, y, "Notes:")
    y -= LINE_GAP * 0.9
    for line in lines:
        y = pages.ensure_room(y, LINE_GAP)
        pdf.setFont(FONT, 9)
        pdf.setFillColor(colors.HexColor("#333333"))
        pdf.drawString(LEFT_MARGIN + 3 * mm, y, line)
        pdf.setFillColor(colors.black)
        y -= LINE_GAP * 0.8
    return y


def _render_document(document_type, data, company_name, company_info):
    config = get_type_config(document_type)
    title = config.title
    if document_type == DocumentType.ESTIMATE and data.is_sample:
        title = "SAMPLE"

    buffer = io.BytesIO()
    # invariant=1 fixes the creation date and document id so output is reproducible
    pdf = canvas.Canvas(buffer, pagesize=A4, invariant=1)
    pdf.setTitle(f"{title.title()} {display_text(data.number)}")
    pdf.setAuthor(company_name)

    pages = _Pages(pdf, f"{title.title()} {display_text(data.number)}")

    y = _letterhead(pdf, company_name, company_info)
    y = _header(pdf, config, data, title, y)

    y = _draw_flowing_table(pdf, pages, _items_table(data, document_type), y)
    y = _totals(pdf, pages, config, data, y - SECTION_GAP)

    if data.payments:
        y = pages.ensure_room(y, LINE_GAP * 4)
        pdf.setFont(FONT_BOLD, 11)
        pdf.drawString(LEFT_MARGIN, y, config.payments_label)
        y -= LINE_GAP * 0.6
        y = _draw_flowing_table(pdf, pages, _payments_table(data), y) - SECTION_GAP

    if data.notes and data.notes.strip():
        _notes(pdf, pages, data.notes, y)

    pages.footer()
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def render_invoice(data, company_name=DEFAULT_COMPANY_NAME, company_info=DEFAULT_COMPANY_INFO):
    return _render_document(DocumentType.INVOICE, data, company_name, company_info)


def render_estimate(data, company_name=DEFAULT_COMPANY_NAME, company_info=DEFAULT_COMPANY_INFO):
    return _render_document(DocumentType.ESTIMATE, data, company_name, company_info)


def render_purchase_order(data, company_name=DEFAULT_COMPANY_NAME, company_info=DEFAULT_COMPANY_INFO):
    return _render_document(DocumentType.PURCHASE_ORDER, data, company_name, company_info)


RENDERERS = {
    DocumentType.INVOICE: render_invoice,
    DocumentType.ESTIMATE: render_estimate,
    DocumentType.PURCHASE_ORDER: render_purchase_order,
}


def render(document_type, data, company_name=DEFAULT_COMPANY_NAME, company_info=DEFAULT_COMPANY_INFO) -> bytes:
    """
    Render a document to PDF bytes.

    Same input gives byte-identical output. Missing optional fields render as
    "N/A" or blank; only missing identity (type/id) raises.

    Raises:
        RenderError: If ``data`` is not document data or does not match ``document_type``.
    """
    document_type = normalize_document_type(document_type)
    if not isinstance(data, DocumentData):
        raise RenderError(f"Expected DocumentData, got {type(data).__name__}")
    if not data.document_id:
        raise RenderError("Document data has no document id")
    if data.document_type != document_type:
        raise RenderError(
            f"Document data is a {data.document_type.value}, cannot render as {document_type.value}"
        )
    return RENDERERS[document_type](data, company_name=company_name, company_info=company_info)

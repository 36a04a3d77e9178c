"""
Read access to the Glide-synced tables and the single write the pipeline does:
storing the PDF URL back on the document row.
"""

import logging
from datetime import datetime, timezone

import pydantic
from sqlalchemy import func, or_

from pdf_console.db import session_scope
from pdf_console.db.source_models import (
    HEADER_MODELS,
    GlAccount,
    GlInvoiceLine,
    GlCustomerPayment,
    GlEstimateLine,
    GlCustomerCredit,
    GlProduct,
    GlVendorPayment,
)

from .document_schema import DocumentData
from .document_types import DocumentType, get_type_config, normalize_document_type
from .errors import NotFoundError, RenderError

logger = logging.getLogger(__name__)


def _first_text(*values):
    for value in values:
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _party(account):
    if account is None:
        return {}
    return {
        "name": account.account_name,
        "uid": account.account_uid,
        "address": account.account_address,
        "city": account.account_city,
        "state": account.account_state,
        "zip_code": account.account_zip,
        "phone": account.account_phone,
        "email": account.account_email,
    }


def display_number(document_type, header) -> str:
    """Document number shown on the PDF; falls back to prefix + id when the UID is empty."""
    config = get_type_config(document_type)
    uid = getattr(header, config.uid_field, None)
    if uid and str(uid).strip():
        return str(uid).strip()
    prefix = config.file_prefix
    if document_type == DocumentType.ESTIMATE and getattr(header, "is_a_sample", False):
        prefix = "SMP"
    return f"{prefix}#{header.id}"


class DocumentSource:
    """Repository over the gl_* tables, one short session per call."""

    def _header(self, session, document_type, document_id):
        config = get_type_config(document_type)
        model = HEADER_MODELS[config.table_name]
        header = session.get(model, str(document_id))
        if header is None:
            raise NotFoundError(document_type.value, document_id)
        return header

    def fetch(self, document_type, document_id) -> DocumentData:
        """
        Assemble the structured data for one document.

        Raises:
            NotFoundError: If the header row does not exist.
            RenderError: If the row cannot be turned into document data.
        """
        document_type = normalize_document_type(document_type)
        with session_scope() as session:
            header = self._header(session, document_type, document_id)
            account = None
            if header.rowid_accounts:
                account = (
                    session.query(GlAccount)
                    .filter(GlAccount.glide_row_id == header.rowid_accounts)
                    .first()
                )

            if document_type == DocumentType.INVOICE:
                raw = self._invoice(session, header)
            elif document_type == DocumentType.ESTIMATE:
                raw = self._estimate(session, header)
            else:
                raw = self._purchase_order(session, header)

            raw.update({
                "document_type": document_type,
                "document_id": header.id,
                "number": display_number(document_type, header),
                "party": _party(account),
                "tax_rate": header.tax_rate,
                "tax_amount": header.tax_amount,
                "subtotal": header.subtotal,
                "total": header.total_amount,
            })

        try:
            return DocumentData(**raw)
        except pydantic.ValidationError as e:
            raise RenderError(
                f"Invalid {document_type.value} data for {document_id}: {e.error_count()} field error(s)",
                details={"errors": e.errors(include_url=False)},
            )

    def _invoice(self, session, header):
        lines = []
        payments = []
        if header.glide_row_id:
            lines = (
                session.query(GlInvoiceLine)
                .filter(GlInvoiceLine.rowid_invoices == header.glide_row_id)
                .order_by(GlInvoiceLine.id)
                .all()
            )
            payments = (
                session.query(GlCustomerPayment)
                .filter(GlCustomerPayment.rowid_invoices == header.glide_row_id)
                .order_by(GlCustomerPayment.date_of_payment, GlCustomerPayment.id)
                .all()
            )
        return {
            "issue_date": header.invoice_order_date,
            "status": header.payment_status,
            "notes": header.notes,
            "amount_paid": header.total_paid,
            "line_items": [
                {
                    "description": _first_text(line.renamed_product_name, line.product_name_display),
                    "quantity": line.qty_sold,
                    "unit_price": line.price_sold,
                    "line_total": line.line_total,
                    "note": line.product_sale_note,
                }
                for line in lines
            ],
            "payments": [
                {
                    "payment_date": p.date_of_payment,
                    "amount": p.payment_amount,
                    "method": p.type_of_payment,
                    "note": p.payment_note,
                }
                for p in payments
            ],
        }

    def _estimate(self, session, header):
        lines = []
        credits = []
        if header.glide_row_id:
            lines = (
                session.query(GlEstimateLine)
                .filter(GlEstimateLine.rowid_estimates == header.glide_row_id)
                .order_by(GlEstimateLine.id)
                .all()
            )
            credits = (
                session.query(GlCustomerCredit)
                .filter(GlCustomerCredit.rowid_estimates == header.glide_row_id)
                .order_by(GlCustomerCredit.date_of_payment, GlCustomerCredit.id)
                .all()
            )
        return {
            "issue_date": header.estimate_date,
            "status": header.status,
            "notes": header.notes,
            "is_sample": bool(header.is_a_sample),
            "amount_paid": header.total_credits,
            "line_items": [
                {
                    "description": line.product_name_display,
                    "quantity": line.qty_sold,
                    "unit_price": line.price_sold,
                    "line_total": line.line_total,
                    "note": line.product_sale_note,
                }
                for line in lines
            ],
            "payments": [
                {
                    "payment_date": c.date_of_payment,
                    "amount": c.payment_amount,
                    "method": c.payment_type,
                    "note": c.payment_note,
                }
                for c in credits
            ],
        }

    def _purchase_order(self, session, header):
        products = []
        payments = []
        if header.glide_row_id:
            products = (
                session.query(GlProduct)
                .filter(GlProduct.rowid_purchase_orders == header.glide_row_id)
                .order_by(GlProduct.id)
                .all()
            )
            payments = (
                session.query(GlVendorPayment)
                .filter(GlVendorPayment.rowid_purchase_orders == header.glide_row_id)
                .order_by(GlVendorPayment.date_of_payment, GlVendorPayment.id)
                .all()
            )
        return {
            "issue_date": header.po_date,
            "status": header.payment_status,
            "notes": header.po_notes,
            "amount_paid": header.total_paid,
            "line_items": [
                {
                    "description": _first_text(
                        product.display_name, product.new_product_name, product.vendor_product_name
                    ),
                    "quantity": product.total_qty_purchased,
                    "unit_price": product.cost,
                    "note": product.purchase_notes,
                }
                for product in products
            ],
            "payments": [
                {
                    "payment_date": p.date_of_payment,
                    "amount": p.payment_amount,
                    "note": p.vendor_purchase_note,
                }
                for p in payments
            ],
        }

    def get_pdf_url(self, document_type, document_id):
        """Stored PDF URL, or None. Raises NotFoundError if the row is missing."""
        document_type = normalize_document_type(document_type)
        with session_scope() as session:
            header = self._header(session, document_type, document_id)
            url = header.supabase_pdf_url
            return url if url else None

    def set_pdf_url(self, document_type, document_id, url):
        document_type = normalize_document_type(document_type)
        with session_scope() as session:
            header = self._header(session, document_type, document_id)
            header.supabase_pdf_url = url
            header.updated_at = datetime.now(timezone.utc)
        logger.debug(f"Stored PDF URL for {document_type.value} {document_id}")

    def list_document_ids(self, document_type, limit, include_existing=False):
        """
        IDs of documents eligible for generation, ordered by id.

        Rows without a UID are skipped (still being synced). Unless
        ``include_existing`` is set, only rows without a stored URL are returned.
        """
        document_type = normalize_document_type(document_type)
        config = get_type_config(document_type)
        model = HEADER_MODELS[config.table_name]
        uid_column = getattr(model, config.uid_field)

        with session_scope() as session:
            query = session.query(model.id).filter(uid_column.isnot(None), uid_column != "")
            if not include_existing:
                query = query.filter(
                    or_(model.supabase_pdf_url.is_(None), model.supabase_pdf_url == "")
                )
            rows = query.order_by(model.id).limit(limit).all()
            return [row[0] for row in rows]

    def coverage(self, document_type):
        """``(total rows, rows with a stored PDF URL)`` for one document type."""
        document_type = normalize_document_type(document_type)
        model = HEADER_MODELS[get_type_config(document_type).table_name]
        with session_scope() as session:
            total = session.query(func.count(model.id)).scalar() or 0
            with_pdf = (
                session.query(func.count(model.id))
                .filter(model.supabase_pdf_url.isnot(None), model.supabase_pdf_url != "")
                .scalar()
            ) or 0
        return total, with_pdf

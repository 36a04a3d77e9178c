"""
Glide-synced source tables the PDFs are built from.

Rows relate through ``glide_row_id``: a child row stores its parent's
``glide_row_id`` in a ``rowid_<parent>`` column (no database foreign keys, the
sync engine writes rows in arbitrary order).
"""

from sqlalchemy import Column, String, Integer, Text, Boolean, Numeric

from .db import Base, UTCDateTime


class GlAccount(Base):
    __tablename__ = "gl_accounts"

    id = Column(String(64), primary_key=True)
    glide_row_id = Column(String(64), nullable=True, index=True)
    account_uid = Column(String(64), nullable=True)
    account_name = Column(String(255), nullable=True)
    account_address = Column(Text, nullable=True)
    account_city = Column(String(128), nullable=True)
    account_state = Column(String(64), nullable=True)
    account_zip = Column(String(32), nullable=True)
    account_email = Column(String(255), nullable=True)
    account_phone = Column(String(64), nullable=True)


class GlInvoice(Base):
    __tablename__ = "gl_invoices"

    id = Column(String(64), primary_key=True)
    glide_row_id = Column(String(64), nullable=True, index=True)
    rowid_accounts = Column(String(64), nullable=True, index=True)
    invoice_uid = Column(String(64), nullable=True)
    invoice_order_date = Column(UTCDateTime, nullable=True)
    payment_status = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    tax_rate = Column(Numeric(8, 4), nullable=True)
    tax_amount = Column(Numeric(14, 2), nullable=True)
    subtotal = Column(Numeric(14, 2), nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=True)
    total_paid = Column(Numeric(14, 2), nullable=True)
    supabase_pdf_url = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, nullable=True)


class GlInvoiceLine(Base):
    __tablename__ = "gl_invoice_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    glide_row_id = Column(String(64), nullable=True)
    rowid_invoices = Column(String(64), nullable=True, index=True)
    rowid_products = Column(String(64), nullable=True)
    product_name_display = Column(String(255), nullable=True)
    renamed_product_name = Column(String(255), nullable=True)
    qty_sold = Column(Numeric(14, 3), nullable=True)
    price_sold = Column(Numeric(14, 2), nullable=True)
    line_total = Column(Numeric(14, 2), nullable=True)
    product_sale_note = Column(Text, nullable=True)


class GlCustomerPayment(Base):
    __tablename__ = "gl_customer_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    glide_row_id = Column(String(64), nullable=True)
    rowid_invoices = Column(String(64), nullable=True, index=True)
    payment_amount = Column(Numeric(14, 2), nullable=True)
    date_of_payment = Column(UTCDateTime, nullable=True)
    type_of_payment = Column(String(64), nullable=True)
    payment_note = Column(Text, nullable=True)


class GlEstimate(Base):
    __tablename__ = "gl_estimates"

    id = Column(String(64), primary_key=True)
    glide_row_id = Column(String(64), nullable=True, index=True)
    rowid_accounts = Column(String(64), nullable=True, index=True)
    estimate_uid = Column(String(64), nullable=True)
    estimate_date = Column(UTCDateTime, nullable=True)
    status = Column(String(32), nullable=True)
    is_a_sample = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    tax_rate = Column(Numeric(8, 4), nullable=True)
    tax_amount = Column(Numeric(14, 2), nullable=True)
    subtotal = Column(Numeric(14, 2), nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=True)
    total_credits = Column(Numeric(14, 2), nullable=True)
    supabase_pdf_url = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, nullable=True)


class GlEstimateLine(Base):
    __tablename__ = "gl_estimate_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    glide_row_id = Column(String(64), nullable=True)
    rowid_estimates = Column(String(64), nullable=True, index=True)
    rowid_products = Column(String(64), nullable=True)
    product_name_display = Column(String(255), nullable=True)
    qty_sold = Column(Numeric(14, 3), nullable=True)
    price_sold = Column(Numeric(14, 2), nullable=True)
    line_total = Column(Numeric(14, 2), nullable=True)
    product_sale_note = Column(Text, nullable=True)


class GlCustomerCredit(Base):
    __tablename__ = "gl_customer_credits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    glide_row_id = Column(String(64), nullable=True)
    rowid_estimates = Column(String(64), nullable=True, index=True)
    payment_amount = Column(Numeric(14, 2), nullable=True)
    date_of_payment = Column(UTCDateTime, nullable=True)
    payment_type = Column(String(64), nullable=True)
    payment_note = Column(Text, nullable=True)


class GlPurchaseOrder(Base):
    __tablename__ = "gl_purchase_orders"

    id = Column(String(64), primary_key=True)
    glide_row_id = Column(String(64), nullable=True, index=True)
    rowid_accounts = Column(String(64), nullable=True, index=True)
    purchase_order_uid = Column(String(64), nullable=True)
    po_date = Column(UTCDateTime, nullable=True)
    payment_status = Column(String(32), nullable=True)
    po_notes = Column(Text, nullable=True)
    tax_rate = Column(Numeric(8, 4), nullable=True)
    tax_amount = Column(Numeric(14, 2), nullable=True)
    subtotal = Column(Numeric(14, 2), nullable=True)
    total_amount = Column(Numeric(14, 2), nullable=True)
    total_paid = Column(Numeric(14, 2), nullable=True)
    supabase_pdf_url = Column(Text, nullable=True)
    updated_at = Column(UTCDateTime, nullable=True)


class GlProduct(Base):
    """Products double as purchase-order lines."""
    __tablename__ = "gl_products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    glide_row_id = Column(String(64), nullable=True)
    rowid_purchase_orders = Column(String(64), nullable=True, index=True)
    display_name = Column(String(255), nullable=True)
    vendor_product_name = Column(String(255), nullable=True)
    new_product_name = Column(String(255), nullable=True)
    total_qty_purchased = Column(Numeric(14, 3), nullable=True)
    cost = Column(Numeric(14, 2), nullable=True)
    purchase_notes = Column(Text, nullable=True)
    samples = Column(Boolean, nullable=False, default=False)


class GlVendorPayment(Base):
    __tablename__ = "gl_vendor_payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    glide_row_id = Column(String(64), nullable=True)
    rowid_purchase_orders = Column(String(64), nullable=True, index=True)
    payment_amount = Column(Numeric(14, 2), nullable=True)
    date_of_payment = Column(UTCDateTime, nullable=True)
    vendor_purchase_note = Column(Text, nullable=True)


HEADER_MODELS = {
    "gl_invoices": GlInvoice,
    "gl_estimates": GlEstimate,
    "gl_purchase_orders": GlPurchaseOrder,
}

"""
Document types handled by the PDF pipeline.

Type strings arrive in several spellings ("purchaseOrder", "purchase-order",
"po", ...). They are normalized once, here, and everything downstream works with
the ``DocumentType`` enum and its ``DOCUMENT_TYPES`` entry.
"""

from dataclasses import dataclass
from enum import Enum

from .errors import ValidationError


class DocumentType(str, Enum):
    INVOICE = "invoice"
    ESTIMATE = "estimate"
    PURCHASE_ORDER = "purchase_order"


@dataclass(frozen=True)
class DocumentTypeConfig:
    table_name: str
    uid_field: str
    date_field: str
    storage_folder: str
    file_prefix: str
    title: str
    party_label: str
    payments_label: str
    paid_label: str


DOCUMENT_TYPES = {
    DocumentType.INVOICE: DocumentTypeConfig(
        table_name="gl_invoices",
        uid_field="invoice_uid",
        date_field="invoice_order_date",
        storage_folder="Invoices",
        file_prefix="INV",
        title="INVOICE",
        party_label="Bill To:",
        payments_label="Payments",
        paid_label="Amount Paid",
    ),
    DocumentType.ESTIMATE: DocumentTypeConfig(
        table_name="gl_estimates",
        uid_field="estimate_uid",
        date_field="estimate_date",
        storage_folder="Estimates",
        file_prefix="EST",
        title="ESTIMATE",
        party_label="Customer:",
        payments_label="Credits",
        paid_label="Credits Applied",
    ),
    DocumentType.PURCHASE_ORDER: DocumentTypeConfig(
        table_name="gl_purchase_orders",
        uid_field="purchase_order_uid",
        date_field="po_date",
        storage_folder="PurchaseOrders",
        file_prefix="PO",
        title="PURCHASE ORDER",
        party_label="Vendor:",
        payments_label="Vendor Payments",
        paid_label="Amount Paid",
    ),
}

DOCUMENT_TYPE_ALIASES = {
    "invoice": DocumentType.INVOICE,
    "invoices": DocumentType.INVOICE,
    "inv": DocumentType.INVOICE,
    "bill": DocumentType.INVOICE,
    "bills": DocumentType.INVOICE,
    "estimate": DocumentType.ESTIMATE,
    "estimates": DocumentType.ESTIMATE,
    "est": DocumentType.ESTIMATE,
    "quote": DocumentType.ESTIMATE,
    "quotes": DocumentType.ESTIMATE,
    "purchaseorder": DocumentType.PURCHASE_ORDER,
    "purchaseorders": DocumentType.PURCHASE_ORDER,
    "purchase-order": DocumentType.PURCHASE_ORDER,
    "purchase-orders": DocumentType.PURCHASE_ORDER,
    "purchase_order": DocumentType.PURCHASE_ORDER,
    "purchase_orders": DocumentType.PURCHASE_ORDER,
    "po": DocumentType.PURCHASE_ORDER,
    "pos": DocumentType.PURCHASE_ORDER,
}


def normalize_document_type(value) -> DocumentType:
    """
    Convert any accepted spelling of a document type into ``DocumentType``.

    Raises:
        ValidationError: If the value is empty or not a known type.
    """
    if isinstance(value, DocumentType):
        return value
    if not value or not isinstance(value, str):
        raise ValidationError("Document type cannot be empty")

    key = value.strip().lower()
    if key in DOCUMENT_TYPE_ALIASES:
        return DOCUMENT_TYPE_ALIASES[key]
    raise ValidationError(f"Unsupported document type: {value}")


def get_type_config(document_type) -> DocumentTypeConfig:
    return DOCUMENT_TYPES[normalize_document_type(document_type)]


def document_type_for_table(table_name) -> DocumentType:
    """Map a source table name (``gl_invoices`` etc.) to its document type."""
    for document_type, config in DOCUMENT_TYPES.items():
        if config.table_name == table_name:
            return document_type
    raise ValidationError(f"Unsupported table: {table_name}")

"""
Shared fixtures for the pipeline tests: a throwaway SQLite database, seeded
gl_* rows, and fakes for the renderer, storage and clock.
"""

import os
import shutil
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from pdf_console.db import dispose_engine, init_db, session_scope
from pdf_console.db.source_models import (
    GlAccount,
    GlInvoice,
    GlInvoiceLine,
    GlCustomerPayment,
    GlEstimate,
    GlEstimateLine,
    GlPurchaseOrder,
    GlProduct,
    GlVendorPayment,
)
from pdf_console.shared.config import Config
from pdf_console.shared.errors import StorageError
from pdf_console.shared.service import DocumentPipeline
from pdf_console.shared.storage import LocalStorage, StorageAdapter

T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class TempDatabaseTestCase(unittest.TestCase):
    """Each test gets its own SQLite file and storage directory."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="pdf-test-")
        self.db_url = f"sqlite:///{os.path.join(self.tmpdir, 'test.db')}"
        with patch.dict(os.environ, {"DATABASE_URL": self.db_url}):
            dispose_engine()
            init_db()

    def tearDown(self):
        dispose_engine()
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class MutableClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingRenderer:
    """Renderer stand-in: returns small fake PDF bytes and remembers each call."""

    def __init__(self, fail_ids=(), error=None):
        self.calls = []
        self.fail_ids = set(fail_ids)
        self.error = error or ValueError("layout exploded")
        self._lock = threading.Lock()
        self.version = 1

    def __call__(self, document_type, data):
        with self._lock:
            self.calls.append((document_type.value, data.document_id))
        if data.document_id in self.fail_ids:
            raise self.error
        return f"%PDF-1.4 {document_type.value} {data.document_id} v{self.version}".encode("ascii")

    @property
    def call_count(self):
        with self._lock:
            return len(self.calls)


class FlakyStorage(StorageAdapter):
    """Local storage that raises queued errors before succeeding."""

    def __init__(self, root_dir):
        self.inner = LocalStorage(root_dir)
        self.errors = []
        self.store_calls = []
        self.always_fail = None

    def store(self, key, data):
        self.store_calls.append(key)
        if self.always_fail is not None:
            raise self.always_fail
        if self.errors:
            raise self.errors.pop(0)
        return self.inner.store(key, data)

    def exists(self, key):
        return self.inner.exists(key)

    def get(self, key):
        return self.inner.get(key)

    def url_for(self, key):
        return self.inner.url_for(key)


def transient_error():
    return StorageError("HTTP 503 from storage", transient=True)


def permanent_error():
    return StorageError("HTTP 403 from storage", transient=False)


def make_config(tmpdir, **overrides):
    environ = {
        "PDF_STORAGE_BACKEND": "local",
        "PDF_STORAGE_DIR": os.path.join(tmpdir, "pdfs"),
        "PDF_BATCH_WORKERS": "4",
        "PDF_GENERATION_TIMEOUT_SECONDS": "30",
    }
    environ.update({key: str(value) for key, value in overrides.items()})
    return Config(environ=environ)


def make_pipeline(tmpdir, renderer=None, storage=None, clock=None, **config_overrides):
    return DocumentPipeline(
        config=make_config(tmpdir, **config_overrides),
        renderer=renderer or RecordingRenderer(),
        storage=storage,
        clock=clock,
    )


def seed_account(glide_row_id="ACC-ROW-1", name="Acme Retail"):
    with session_scope() as session:
        session.add(GlAccount(
            id=f"acc-{glide_row_id}",
            glide_row_id=glide_row_id,
            account_uid="ACME",
            account_name=name,
            account_address="1 Main St",
            account_city="Springfield",
            account_state="IL",
            account_zip="62701",
            account_email="ap@acme.test",
        ))


def seed_invoice(document_id, uid=None, pdf_url=None, lines=2, payments=1, account_row="ACC-ROW-1"):
    row_id = f"INV-ROW-{document_id}"
    with session_scope() as session:
        session.add(GlInvoice(
            id=document_id,
            glide_row_id=row_id,
            rowid_accounts=account_row,
            invoice_uid=uid if uid is not None else f"INV#{document_id}",
            invoice_order_date=datetime(2023, 1, 1, tzinfo=timezone.utc),
            payment_status="Unpaid",
            notes="Net 30",
            tax_rate=0,
            supabase_pdf_url=pdf_url,
        ))
        for n in range(lines):
            session.add(GlInvoiceLine(
                rowid_invoices=row_id,
                product_name_display=f"Widget {n + 1}",
                qty_sold=2,
                price_sold=10,
                line_total=20,
            ))
        for n in range(payments):
            session.add(GlCustomerPayment(
                rowid_invoices=row_id,
                payment_amount=15,
                date_of_payment=datetime(2023, 1, 15, tzinfo=timezone.utc),
                type_of_payment="Check",
            ))


def seed_estimate(document_id, uid=None, pdf_url=None, is_sample=False):
    row_id = f"EST-ROW-{document_id}"
    with session_scope() as session:
        session.add(GlEstimate(
            id=document_id,
            glide_row_id=row_id,
            rowid_accounts="ACC-ROW-1",
            estimate_uid=uid if uid is not None else f"EST#{document_id}",
            estimate_date=datetime(2023, 2, 1, tzinfo=timezone.utc),
            status="draft",
            is_a_sample=is_sample,
            supabase_pdf_url=pdf_url,
        ))
        session.add(GlEstimateLine(
            rowid_estimates=row_id,
            product_name_display="Sample kit",
            qty_sold=1,
            price_sold=99.5,
        ))


def seed_purchase_order(document_id, uid=None, pdf_url=None):
    row_id = f"PO-ROW-{document_id}"
    with session_scope() as session:
        session.add(GlPurchaseOrder(
            id=document_id,
            glide_row_id=row_id,
            rowid_accounts="ACC-ROW-1",
            purchase_order_uid=uid if uid is not None else f"PO#{document_id}",
            po_date=datetime(2023, 3, 1, tzinfo=timezone.utc),
            supabase_pdf_url=pdf_url,
        ))
        session.add(GlProduct(
            rowid_purchase_orders=row_id,
            vendor_product_name="Raw material",
            total_qty_purchased=100,
            cost=1.25,
        ))
        session.add(GlVendorPayment(
            rowid_purchase_orders=row_id,
            payment_amount=50,
            date_of_payment=datetime(2023, 3, 10, tzinfo=timezone.utc),
        ))

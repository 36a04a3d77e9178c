"""
The PDF pipeline as one object: single and batch generation, maintenance
sweeps, and the operator actions on failure records.

The Flask app and the scheduled jobs both talk to a ``DocumentPipeline``;
nothing outside this module wires the pieces together.
"""

import logging
from datetime import timedelta
from functools import partial

from pdf_console.db import get_generation_counts, get_run_metadata, get_run_logs
from pdf_console.pdf_generator.pdf.pdf_generator import render

from .batch_runner import BatchCoordinator, BatchItem
from .config import Config
from .document_types import DocumentType, document_type_for_table, normalize_document_type
from .errors import ValidationError
from .failure_tracker import FailureTracker, RetryPolicy, utc_now
from .generator import DocumentGenerator
from .source import DocumentSource
from .storage import build_storage

logger = logging.getLogger(__name__)

STATS_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

TRIGGER_EVENTS = ("INSERT", "UPDATE")


def _percent(part, whole):
    return round(part * 100.0 / whole, 1) if whole else 0.0


def _stats_block(total, with_pdf, generated):
    successful = generated.get("generated", 0) + generated.get("existing", 0)
    failed = generated.get("failed", 0)
    return {
        "totalDocuments": total,
        "documentsWithPDF": with_pdf,
        "documentsWithoutPDF": total - with_pdf,
        "pdfCoverage": _percent(with_pdf, total),
        "recentGenerations": {
            "total": successful + failed,
            "successful": successful,
            "failed": failed,
            "successRate": _percent(successful, successful + failed),
        },
    }


class DocumentPipeline:
    def __init__(self, config=None, source=None, storage=None, renderer=None,
                 tracker=None, clock=None, audit=True):
        self.config = config or Config()
        self.clock = clock or utc_now
        self.source = source or DocumentSource()
        self.storage = storage or build_storage(self.config)
        self.renderer = renderer or partial(
            render,
            company_name=self.config.COMPANY_NAME,
            company_info=self.config.COMPANY_INFO,
        )
        self.tracker = tracker or FailureTracker(RetryPolicy.from_config(self.config), clock=self.clock)
        self.generator = DocumentGenerator(
            self.source,
            self.storage,
            self.renderer,
            self.tracker,
            timeout_seconds=self.config.GENERATION_TIMEOUT_SECONDS,
            audit=audit,
        )
        self.batch = BatchCoordinator(self.generator, max_workers=self.config.BATCH_WORKERS, audit=audit)

    def shutdown(self, wait_seconds=0):
        return self.generator.shutdown(wait_seconds)

    # ---------- generation ----------

    def generate_document(self, document_type, document_id, force_regenerate=False,
                          overwrite_existing=False):
        return self.generator.generate(
            document_type,
            document_id,
            force_regenerate=force_regenerate,
            overwrite_existing=overwrite_existing,
            trigger="manual",
        )

    def batch_generate(self, items, force_regenerate=False, overwrite_existing=False, cancel_event=None):
        return self.batch.run(
            items,
            force_regenerate=force_regenerate,
            overwrite_existing=overwrite_existing,
            trigger="batch",
            cancel_event=cancel_event,
        )

    def scan_for_missing(self, force_regenerate=False, batch_size=None, document_types=None):
        """
        Generate PDFs for documents that have none.

        Takes up to ``batch_size`` documents in total, filling from invoices,
        then estimates, then purchase orders. With ``force_regenerate`` the
        documents that already have a PDF are included too.
        """
        batch_size = batch_size or self.config.SCAN_BATCH_SIZE
        if batch_size < 1:
            raise ValidationError("batchSize must be at least 1")
        types = [normalize_document_type(t) for t in document_types] if document_types else list(DocumentType)

        items = []
        for document_type in types:
            remaining = batch_size - len(items)
            if remaining <= 0:
                break
            ids = self.source.list_document_ids(document_type, remaining, include_existing=force_regenerate)
            items.extend(BatchItem(document_type.value, document_id) for document_id in ids)

        logger.info(f"Scan found {len(items)} document(s) to generate")
        # Rows without a URL own nothing in storage, so their base key is safe to overwrite
        return self.batch.run(
            items,
            force_regenerate=force_regenerate,
            overwrite_existing=True,
            trigger="scan",
        )

    def process_due_retries(self, limit=None):
        """Regenerate every failure whose next attempt is due, soonest first."""
        limit = limit or self.config.RETRY_BATCH_SIZE
        due = self.tracker.due_for_retry(limit=limit, now=self.clock())
        items = [BatchItem(record.document_type, record.document_id) for record in due]
        logger.info(f"{len(items)} failure(s) due for retry")
        return self.batch.run(items, force_regenerate=True, overwrite_existing=True, trigger="retry")

    def handle_trigger(self, payload):
        """
        Generate the PDF for a row reported by a database trigger webhook.

        ``payload`` is ``{"type": "INSERT" | "UPDATE", "table": ..., "record": {"id": ...}}``.
        Other event types are acknowledged and ignored.

        Raises:
            ValidationError: If a field is missing or the table is not a document table.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Trigger payload must be a JSON object")
        event_type = payload.get("type")
        table = payload.get("table")
        record = payload.get("record")
        if not event_type or not table or not record:
            raise ValidationError("Missing required fields: type, table, record")
        if str(event_type).upper() not in TRIGGER_EVENTS:
            logger.info(f"Ignoring {event_type} trigger on {table}")
            return {"success": True, "message": f"Ignoring trigger of type: {event_type}"}

        document_type = document_type_for_table(table)
        if not isinstance(record, dict) or not record.get("id"):
            raise ValidationError("Trigger record has no id")
        logger.info(f"{event_type} trigger on {table} for {record['id']}")
        return self.generator.generate(document_type, record["id"], trigger="webhook")

    # ---------- monitoring ----------

    def stats(self, time_range="24h"):
        """PDF coverage per document type plus recent generation outcomes over ``time_range``."""
        if time_range not in STATS_RANGES:
            raise ValidationError(
                f"timeRange must be one of {', '.join(STATS_RANGES)}, got {time_range!r}"
            )
        since = self.clock() - STATS_RANGES[time_range]
        counts = get_generation_counts(since)

        by_type = {}
        totals = {"total": 0, "with_pdf": 0, "generated": {}}
        for document_type in DocumentType:
            total, with_pdf = self.source.coverage(document_type)
            generated = counts.get(document_type.value, {})
            by_type[document_type.value] = _stats_block(total, with_pdf, generated)
            totals["total"] += total
            totals["with_pdf"] += with_pdf
            for status, count in generated.items():
                totals["generated"][status] = totals["generated"].get(status, 0) + count

        return {
            "timeRange": time_range,
            "since": since.isoformat(),
            "types": by_type,
            "overall": _stats_block(totals["total"], totals["with_pdf"], totals["generated"]),
        }

    # ---------- failure records ----------

    def list_failures(self, resolved=None, requires_manual_intervention=None, document_type=None, limit=None):
        return self.tracker.list_failures(
            resolved=resolved,
            requires_manual_intervention=requires_manual_intervention,
            document_type=document_type,
            limit=limit,
        )

    def get_failure(self, failure_id):
        return self.tracker.get(failure_id)

    def failure_summary(self):
        return self.tracker.summary(now=self.clock())

    def retry_failure(self, failure_id):
        """Regenerate now, ignoring ``next_attempt`` and the manual flag."""
        record = self.tracker.get(failure_id)
        if record.resolved:
            raise ValidationError(f"Failure record {failure_id} is already resolved")
        logger.info(f"Operator retry of failure {failure_id} ({record.document_type} {record.document_id})")
        return self.generator.generate(
            record.document_type,
            record.document_id,
            force_regenerate=True,
            overwrite_existing=True,
            trigger="retry",
        )

    def reset_failure(self, failure_id):
        return self.tracker.reset(failure_id)

    def resolve_failure(self, failure_id):
        return self.tracker.resolve(failure_id)

    def purge_resolved(self, older_than_days=None):
        days = self.config.PURGE_AFTER_DAYS if older_than_days is None else older_than_days
        if days < 0:
            raise ValidationError("olderThanDays cannot be negative")
        cutoff = self.clock() - timedelta(days=days)
        return self.tracker.purge_resolved(cutoff)

    # ---------- audit ----------

    def get_run(self, run_id):
        run = get_run_metadata(run_id)
        if run is None:
            return None
        run["logs"] = get_run_logs(run_id)
        return run


def build_pipeline(config=None) -> DocumentPipeline:
    return DocumentPipeline(config or Config())

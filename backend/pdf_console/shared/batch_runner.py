import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pdf_console.db import start_run, finish_run

from .errors import BatchProcessingError
from .generator import GenerationResult, STATUS_FAILED

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    document_type: str
    document_id: str


@dataclass
class BatchSummary:
    run_id: str
    trigger: str
    results: List[GenerationResult] = field(default_factory=list)
    cancelled: bool = False

    @property
    def success_count(self):
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self):
        return sum(1 for r in self.results if not r.success)

    @property
    def manual_intervention_count(self):
        return sum(1 for r in self.results if r.requires_manual_intervention)

    def to_dict(self):
        return {
            "runId": self.run_id,
            "trigger": self.trigger,
            "total": len(self.results),
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "manualInterventionCount": self.manual_intervention_count,
            "cancelled": self.cancelled,
            "results": [r.to_dict() for r in self.results],
        }


def parse_batch_items(payload) -> List[BatchItem]:
    """
    Accept either batch request shape and return the items in request order.

      {"items": [{"type": "invoice", "id": "..."}, ...]}
      {"documentType": "invoice", "documentIds": ["...", ...]}

    Items are not validated here beyond shape; unknown types come back as
    per-item failures from the generator.

    Raises:
        BatchProcessingError: If the payload matches neither shape.
    """
    if not isinstance(payload, dict):
        raise BatchProcessingError("Batch request body must be a JSON object")

    if "items" in payload:
        raw_items = payload["items"]
        if not isinstance(raw_items, list):
            raise BatchProcessingError("'items' must be a list")
        items = []
        for index, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise BatchProcessingError(f"items[{index}] must be an object")
            document_type = raw.get("type", raw.get("documentType"))
            document_id = raw.get("id", raw.get("documentId"))
            items.append(BatchItem(
                document_type="" if document_type is None else str(document_type),
                document_id="" if document_id is None else str(document_id),
            ))
        return items

    if "documentIds" in payload:
        document_ids = payload["documentIds"]
        if not isinstance(document_ids, list):
            raise BatchProcessingError("'documentIds' must be a list")
        document_type = payload.get("documentType")
        if not document_type:
            raise BatchProcessingError("'documentType' is required with 'documentIds'")
        return [BatchItem(str(document_type), str(document_id)) for document_id in document_ids]

    raise BatchProcessingError("Batch request needs 'items' or 'documentType' + 'documentIds'")


class BatchCoordinator:
    """
    Run many generations on a fixed-size worker pool.

    One item failing never affects another; results come back in input order
    whatever order the workers finish in. Setting ``cancel_event`` stops items
    that have not started yet (they are reported as cancelled); items already
    running finish normally.
    """

    def __init__(self, generator, max_workers=4, audit=True):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.generator = generator
        self.max_workers = max_workers
        self.audit = audit

    def run(self, items, force_regenerate=False, overwrite_existing=False,
            trigger="batch", cancel_event: Optional[threading.Event] = None) -> BatchSummary:
        items = list(items)
        run_id = str(uuid.uuid4())
        summary = BatchSummary(run_id=run_id, trigger=trigger)
        logger.info(f"Starting {trigger} run {run_id} with {len(items)} item(s)")

        if self.audit:
            try:
                start_run(run_id, trigger, len(items))
            except Exception as e:
                logger.warning(f"Could not record start of run {run_id}: {e}")

        def process(item):
            if cancel_event is not None and cancel_event.is_set():
                return GenerationResult(
                    document_type=item.document_type,
                    document_id=item.document_id,
                    success=False,
                    status=STATUS_FAILED,
                    error="Batch cancelled before this item started",
                    error_type="cancelled",
                )
            try:
                return self.generator.generate(
                    item.document_type,
                    item.document_id,
                    force_regenerate=force_regenerate,
                    overwrite_existing=overwrite_existing,
                    trigger=trigger,
                    run_id=run_id,
                )
            except Exception as e:
                # generate() reports its own failures; this only catches bugs
                logger.exception(f"Unhandled error for {item.document_type} {item.document_id}")
                return GenerationResult(
                    document_type=item.document_type,
                    document_id=item.document_id,
                    success=False,
                    status=STATUS_FAILED,
                    error=str(e),
                    error_type="unknown_error",
                )

        workers = min(self.max_workers, len(items)) or 1
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pdf-batch") as pool:
            # map() yields in submission order
            summary.results = list(pool.map(process, items))

        summary.cancelled = cancel_event is not None and cancel_event.is_set()

        if self.audit:
            try:
                finish_run(run_id, summary.success_count, summary.failed_count, datetime.now(timezone.utc))
            except Exception as e:
                logger.warning(f"Could not record end of run {run_id}: {e}")

        logger.info(
            f"Run {run_id} finished: {summary.success_count} succeeded, "
            f"{summary.failed_count} failed, {summary.manual_intervention_count} need manual intervention"
        )
        return summary

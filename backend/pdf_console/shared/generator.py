"""
Single-document generation: fetch -> render -> store -> write URL back.

``DocumentGenerator.generate`` never raises for per-document problems; every
outcome comes back as a ``GenerationResult`` so batch callers can keep going.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

from pdf_console.db import record_attempt

from .document_types import normalize_document_type
from .errors import (
    PipelineError,
    ValidationError,
    NotFoundError,
    RenderError,
    GenerationTimeoutError,
)
from .storage import base_key, content_key

logger = logging.getLogger(__name__)

STATUS_GENERATED = "generated"
STATUS_EXISTING = "existing"
STATUS_FAILED = "failed"


@dataclass
class GenerationResult:
    document_type: str
    document_id: str
    success: bool
    status: str
    url: Optional[str] = None
    storage_key: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    retryable: bool = False
    requires_manual_intervention: bool = False
    failure_id: Optional[int] = None
    retry_count: Optional[int] = None
    duration_ms: int = 0
    details: dict = field(default_factory=dict)

    def to_dict(self):
        out = {
            "documentType": self.document_type,
            "documentId": self.document_id,
            "success": self.success,
            "status": self.status,
            "url": self.url,
        }
        if self.success:
            out["storageKey"] = self.storage_key
        else:
            out.update({
                "error": self.error,
                "errorType": self.error_type,
                "retryable": self.retryable,
                "requiresManualIntervention": self.requires_manual_intervention,
                "failureId": self.failure_id,
                "retryCount": self.retry_count,
            })
        out["durationMs"] = self.duration_ms
        return out


class DocumentLocks:
    """In-process lock per (document type, document id); entries are dropped when idle."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    @contextmanager
    def hold(self, document_type, document_id):
        key = (document_type, document_id)
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


class DocumentGenerator:
    def __init__(self, source, storage, renderer, tracker, timeout_seconds=60, locks=None, audit=True):
        self.source = source
        self.storage = storage
        self.renderer = renderer
        self.tracker = tracker
        self.timeout_seconds = timeout_seconds
        self.locks = locks or DocumentLocks()
        self.audit = audit
        self._abandoned = set()
        self._abandoned_guard = threading.Lock()

    def shutdown(self, wait_seconds=0):
        """Give renders that outlived their deadline up to ``wait_seconds`` to finish."""
        with self._abandoned_guard:
            threads = list(self._abandoned)
        for thread in threads:
            thread.join(timeout=wait_seconds)
        return sum(1 for thread in threads if thread.is_alive())

    @property
    def abandoned_renders(self):
        with self._abandoned_guard:
            self._abandoned = {t for t in self._abandoned if t.is_alive()}
            return len(self._abandoned)

    def generate(self, document_type, document_id, force_regenerate=False,
                 overwrite_existing=False, trigger="manual", run_id=None) -> GenerationResult:
        started = time.monotonic()
        raw_type = document_type
        try:
            document_type = normalize_document_type(document_type)
            document_id = str(document_id).strip() if document_id is not None else ""
            if not document_id:
                raise ValidationError("Document id cannot be empty")
        except ValidationError as e:
            return self._finish(
                self._failed(str(raw_type), str(document_id or ""), e), started, trigger, run_id
            )

        with self.locks.hold(document_type, document_id):
            deadline = time.monotonic() + self.timeout_seconds
            result = self._generate_locked(
                document_type, document_id, force_regenerate, overwrite_existing, deadline
            )
        return self._finish(result, started, trigger, run_id)

    def _generate_locked(self, document_type, document_id, force_regenerate, overwrite_existing, deadline):
        type_name = document_type.value
        logger.info(
            f"Generating {type_name} {document_id} "
            f"(force={force_regenerate}, overwrite={overwrite_existing})"
        )
        try:
            if not force_regenerate:
                existing_url = self.source.get_pdf_url(document_type, document_id)
                if existing_url:
                    logger.info(f"{type_name} {document_id} already has a PDF, skipping render")
                    return GenerationResult(
                        document_type=type_name,
                        document_id=document_id,
                        success=True,
                        status=STATUS_EXISTING,
                        url=existing_url,
                    )

            data = self.source.fetch(document_type, document_id)
            pdf_bytes = self._render(document_type, data, deadline)

            key = base_key(document_type, document_id)
            if not overwrite_existing and self.storage.exists(key):
                key = content_key(document_type, document_id, pdf_bytes)

            self._check_deadline(deadline, type_name, document_id)
            url = self.storage.store(key, pdf_bytes)
            self.source.set_pdf_url(document_type, document_id, url)

        except NotFoundError as e:
            logger.warning(f"{type_name} {document_id}: {e}")
            return self._flag_missing(type_name, document_id, e)

        except ValidationError as e:
            logger.warning(f"{type_name} {document_id}: {e}")
            return self._failed(type_name, document_id, e)

        except PipelineError as e:
            logger.error(f"Generation failed for {type_name} {document_id} [{e.error_type}]: {e}")
            return self._track_failure(type_name, document_id, e)

        except Exception as e:
            logger.exception(f"Unexpected error generating {type_name} {document_id}")
            return self._track_failure(type_name, document_id, PipelineError(f"Unexpected error: {e}"))

        try:
            self.tracker.record_success(document_type, document_id)
        except Exception:
            # PDF is stored; the due-retry sweep regenerates and resolves it later
            logger.exception(f"Could not resolve failure record for {type_name} {document_id}")
        logger.info(f"Generated {type_name} {document_id} -> {url}")
        return GenerationResult(
            document_type=type_name,
            document_id=document_id,
            success=True,
            status=STATUS_GENERATED,
            url=url,
            storage_key=key,
        )

    def _render(self, document_type, data, deadline):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise GenerationTimeoutError(f"No time left to render {document_type.value} {data.document_id}")
        outcome = {}

        def run():
            try:
                outcome["pdf"] = self.renderer(document_type, data)
            except Exception as e:
                outcome["error"] = e

        # One thread per attempt, not a shared pool
        thread = threading.Thread(
            target=run, name=f"pdf-render-{document_type.value}-{data.document_id}", daemon=True
        )
        thread.start()
        thread.join(timeout=remaining)
        if thread.is_alive():
            # Threads cannot be interrupted; the late result is discarded
            with self._abandoned_guard:
                self._abandoned.add(thread)
            logger.warning(f"Abandoned render of {document_type.value} {data.document_id} after timeout")
            raise GenerationTimeoutError(
                f"Rendering {document_type.value} {data.document_id} exceeded {self.timeout_seconds}s"
            )

        error = outcome.get("error")
        if isinstance(error, PipelineError):
            raise error
        if error is not None:
            raise RenderError(f"Renderer failed: {error}")
        pdf_bytes = outcome.get("pdf")
        if not pdf_bytes:
            raise RenderError("Renderer returned no content")
        return pdf_bytes

    def _check_deadline(self, deadline, type_name, document_id):
        if time.monotonic() > deadline:
            raise GenerationTimeoutError(
                f"Generating {type_name} {document_id} exceeded {self.timeout_seconds}s"
            )

    @staticmethod
    def _failed(type_name, document_id, error, record=None):
        result = GenerationResult(
            document_type=type_name,
            document_id=document_id,
            success=False,
            status=STATUS_FAILED,
            error=str(error),
            error_type=getattr(error, "error_type", "unknown_error"),
            retryable=getattr(error, "retryable", False),
            details=getattr(error, "details", {}) or {},
        )
        if record is not None:
            result.failure_id = record.id
            result.retry_count = record.retry_count
            result.requires_manual_intervention = record.requires_manual_intervention
        return result

    def _track_failure(self, type_name, document_id, error):
        try:
            record = self.tracker.record_failure(
                type_name,
                document_id,
                str(error),
                error_type=error.error_type,
                retryable=error.retryable,
            )
        except Exception:
            logger.exception(f"Could not record failure for {type_name} {document_id}")
            record = None
        return self._failed(type_name, document_id, error, record)

    def _flag_missing(self, type_name, document_id, error):
        # A record left pending here would stay due forever
        try:
            record = self.tracker.flag_missing(type_name, document_id, str(error))
        except Exception:
            logger.exception(f"Could not flag failure record for missing {type_name} {document_id}")
            record = None
        return self._failed(type_name, document_id, error, record)

    def _finish(self, result, started, trigger, run_id):
        result.duration_ms = int((time.monotonic() - started) * 1000)
        if self.audit:
            try:
                record_attempt(
                    document_type=result.document_type,
                    document_id=result.document_id,
                    trigger=trigger,
                    status=result.status,
                    error_type=result.error_type,
                    error_message=result.error,
                    url=result.url,
                    duration_ms=result.duration_ms,
                    run_id=run_id,
                )
            except Exception as e:
                logger.warning(f"Audit log write failed for {result.document_type} {result.document_id}: {e}")
        return result

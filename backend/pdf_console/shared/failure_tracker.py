"""
Failure tracking and retry scheduling for PDF generation.

One unresolved ``FailureRecord`` per (document type, document id) moves through

    PendingRetry -> ManualIntervention -> Resolved

Every write is a versioned UPDATE (optimistic locking on ``version``); a
writer that loses a race gets ``StaleDataError``, re-reads the row and applies
its change again. First-failure inserts race on the partial unique index
instead and are retried the same way.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from pdf_console.db import FailureRecord, session_scope

from .document_types import normalize_document_type
from .errors import FailureNotFoundError, ValidationError

logger = logging.getLogger(__name__)

_MAX_WRITE_ATTEMPTS = 10


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff: ``delay(n) = min(base * 2**(n-1), max)``.

    With the defaults (300s base, 1 day cap, 10 retries) the waits are 5m, 10m,
    20m, 40m, 80m, 160m, 320m, 640m, 1280m, then the record is handed to an
    operator.
    """
    max_retries: int = 10
    base_seconds: int = 300
    max_seconds: int = 86400

    def delay_seconds(self, retry_count: int) -> int:
        if retry_count < 1:
            return 0
        # Cap the exponent so very large counts don't build huge ints
        exponent = min(retry_count - 1, 32)
        return min(self.base_seconds * (2 ** exponent), self.max_seconds)

    def delay(self, retry_count: int) -> timedelta:
        return timedelta(seconds=self.delay_seconds(retry_count))

    def requires_manual_intervention(self, retry_count: int) -> bool:
        return retry_count >= self.max_retries

    @classmethod
    def from_config(cls, config):
        return cls(
            max_retries=config.MAX_RETRIES,
            base_seconds=config.RETRY_BASE_SECONDS,
            max_seconds=config.RETRY_MAX_SECONDS,
        )


class FailureTracker:
    def __init__(self, policy=None, clock=None):
        self.policy = policy or RetryPolicy()
        self.clock = clock or utc_now

    def _now(self):
        return self.clock()

    @staticmethod
    def _active(session, document_type, document_id):
        return (
            session.query(FailureRecord)
            .filter(
                FailureRecord.document_type == document_type,
                FailureRecord.document_id == str(document_id),
                FailureRecord.resolved.is_(False),
            )
            .one_or_none()
        )

    def record_failure(self, document_type, document_id, error_message,
                       error_type="unknown_error", retryable=True) -> FailureRecord:
        """
        Create or advance the failure record for a document.

        Non-retryable errors go straight to manual intervention. Otherwise the
        record is escalated once ``retry_count`` reaches ``policy.max_retries``.
        """
        document_type = normalize_document_type(document_type).value
        document_id = str(document_id)

        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            try:
                with session_scope() as session:
                    now = self._now()
                    record = self._active(session, document_type, document_id)
                    if record is None:
                        record = FailureRecord(
                            document_type=document_type,
                            document_id=document_id,
                            retry_count=1,
                            first_attempt=now,
                            last_attempt=now,
                            resolved=False,
                            requires_manual_intervention=False,
                        )
                        session.add(record)
                    else:
                        record.retry_count += 1
                        record.last_attempt = now

                    record.error_type = error_type
                    record.error_message = error_message
                    record.next_attempt = now + self.policy.delay(record.retry_count)
                    record.updated_at = now

                    escalate = (not retryable) or self.policy.requires_manual_intervention(record.retry_count)
                    newly_flagged = escalate and not record.requires_manual_intervention
                    if escalate:
                        record.requires_manual_intervention = True
                    session.flush()
            except (StaleDataError, IntegrityError) as e:
                logger.debug(
                    f"Concurrent update on failure record for {document_type} {document_id} "
                    f"(attempt {attempt}): {e.__class__.__name__}"
                )
                continue

            if newly_flagged:
                logger.warning(
                    f"{document_type} {document_id} requires manual intervention after "
                    f"{record.retry_count} failure(s): {error_message}"
                )
            else:
                logger.info(
                    f"Recorded failure #{record.retry_count} for {document_type} {document_id}; "
                    f"next attempt at {record.next_attempt.isoformat()}"
                )
            return record

        raise RuntimeError(
            f"Could not record failure for {document_type} {document_id} "
            f"after {_MAX_WRITE_ATTEMPTS} attempts"
        )

    def record_success(self, document_type, document_id):
        """Resolve the active record for a document, if there is one."""
        document_type = normalize_document_type(document_type).value
        document_id = str(document_id)

        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            try:
                with session_scope() as session:
                    record = self._active(session, document_type, document_id)
                    if record is None:
                        return None
                    now = self._now()
                    record.resolved = True
                    record.last_attempt = now
                    record.updated_at = now
                    session.flush()
            except StaleDataError:
                continue
            logger.info(f"Resolved failure record {record.id} for {document_type} {document_id}")
            return record

        raise RuntimeError(
            f"Could not resolve failure for {document_type} {document_id} "
            f"after {_MAX_WRITE_ATTEMPTS} attempts"
        )

    def flag_missing(self, document_type, document_id, error_message):
        """
        Hand an existing failure record to an operator once its document is gone.

        Documents that never failed get no record. Returns the flagged record
        or ``None``.
        """
        document_type = normalize_document_type(document_type).value
        document_id = str(document_id)

        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            try:
                with session_scope() as session:
                    record = self._active(session, document_type, document_id)
                    if record is None:
                        return None
                    now = self._now()
                    record.error_type = "not_found"
                    record.error_message = error_message
                    record.requires_manual_intervention = True
                    record.last_attempt = now
                    record.updated_at = now
                    session.flush()
            except StaleDataError:
                continue
            logger.warning(
                f"{document_type} {document_id} no longer exists; failure record {record.id} "
                f"requires manual intervention"
            )
            return record

        raise RuntimeError(
            f"Could not flag failure for {document_type} {document_id} "
            f"after {_MAX_WRITE_ATTEMPTS} attempts"
        )

    def _update(self, failure_id, mutate):
        for attempt in range(1, _MAX_WRITE_ATTEMPTS + 1):
            try:
                with session_scope() as session:
                    record = session.get(FailureRecord, failure_id)
                    if record is None:
                        raise FailureNotFoundError(failure_id)
                    mutate(record, self._now())
                    session.flush()
                return record
            except StaleDataError:
                logger.debug(f"Concurrent update on failure record {failure_id} (attempt {attempt})")
                continue
        raise RuntimeError(f"Could not update failure record {failure_id} after {_MAX_WRITE_ATTEMPTS} attempts")

    def get(self, failure_id) -> FailureRecord:
        with session_scope() as session:
            record = session.get(FailureRecord, failure_id)
            if record is None:
                raise FailureNotFoundError(failure_id)
            return record

    def list_failures(self, resolved=None, requires_manual_intervention=None,
                      document_type=None, limit=None):
        """Failure records matching the filters, soonest ``next_attempt`` first."""
        with session_scope() as session:
            query = session.query(FailureRecord)
            if resolved is not None:
                query = query.filter(FailureRecord.resolved.is_(bool(resolved)))
            if requires_manual_intervention is not None:
                query = query.filter(
                    FailureRecord.requires_manual_intervention.is_(bool(requires_manual_intervention))
                )
            if document_type is not None:
                query = query.filter(
                    FailureRecord.document_type == normalize_document_type(document_type).value
                )
            query = query.order_by(FailureRecord.next_attempt.asc(), FailureRecord.id.asc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def due_for_retry(self, limit=20, now=None):
        """Unresolved, automatically retryable records whose next attempt has come."""
        now = now or self._now()
        with session_scope() as session:
            return (
                session.query(FailureRecord)
                .filter(
                    FailureRecord.resolved.is_(False),
                    FailureRecord.requires_manual_intervention.is_(False),
                    FailureRecord.next_attempt <= now,
                )
                .order_by(FailureRecord.next_attempt.asc(), FailureRecord.id.asc())
                .limit(limit)
                .all()
            )

    def reset(self, failure_id) -> FailureRecord:
        """Clear the retry count and manual flag, and schedule an immediate attempt."""
        def mutate(record, now):
            if record.resolved:
                raise ValidationError(f"Failure record {failure_id} is already resolved")
            record.retry_count = 0
            record.requires_manual_intervention = False
            record.next_attempt = now
            record.updated_at = now

        record = self._update(failure_id, mutate)
        logger.info(f"Reset failure record {failure_id} ({record.document_type} {record.document_id})")
        return record

    def resolve(self, failure_id) -> FailureRecord:
        def mutate(record, now):
            record.resolved = True
            record.updated_at = now

        record = self._update(failure_id, mutate)
        logger.info(f"Marked failure record {failure_id} resolved")
        return record

    def purge_resolved(self, older_than) -> int:
        """Delete resolved records whose last attempt precedes ``older_than``."""
        with session_scope() as session:
            deleted = (
                session.query(FailureRecord)
                .filter(
                    FailureRecord.resolved.is_(True),
                    FailureRecord.last_attempt < older_than,
                )
                .delete(synchronize_session=False)
            )
        logger.info(f"Purged {deleted} resolved failure record(s) older than {older_than.isoformat()}")
        return deleted

    def summary(self, now=None):
        now = now or self._now()
        with session_scope() as session:
            unresolved = session.query(FailureRecord).filter(FailureRecord.resolved.is_(False))
            total = unresolved.count()
            manual = unresolved.filter(FailureRecord.requires_manual_intervention.is_(True)).count()
            due = unresolved.filter(
                FailureRecord.requires_manual_intervention.is_(False),
                FailureRecord.next_attempt <= now,
            ).count()
            by_type = dict(
                session.query(FailureRecord.document_type, func.count(FailureRecord.id))
                .filter(FailureRecord.resolved.is_(False))
                .group_by(FailureRecord.document_type)
                .all()
            )
            by_severity = {"none": 0, "low": 0, "medium": 0, "high": 0, "manual": 0}
            for record in unresolved.all():
                by_severity[record.severity] += 1

        return {
            "unresolved": total,
            "manualIntervention": manual,
            "pendingRetry": total - manual,
            "dueNow": due,
            "byType": by_type,
            "bySeverity": by_severity,
        }

"""
SQLAlchemy models for PDF generation failures and the generation audit trail.
"""

from sqlalchemy import Column, String, Integer, Text, Boolean, Index, text
from sqlalchemy.sql import func

from .db import Base, UTCDateTime, get_session

# UI severity buckets (retry_count < 3 low, < 7 medium, else high)
SEVERITY_LOW_BELOW = 3
SEVERITY_MEDIUM_BELOW = 7


class FailureRecord(Base):
    """
    One tracked failure per (document_type, document_id).

    ``version`` is the optimistic-lock column: every update is issued as
    ``UPDATE ... WHERE id = ? AND version = ?`` so concurrent writers cannot
    silently overwrite each other.
    """
    __tablename__ = "pdf_generation_failures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_type = Column(String(32), nullable=False, index=True)
    document_id = Column(String(128), nullable=False)

    retry_count = Column(Integer, nullable=False, default=0)
    first_attempt = Column(UTCDateTime, nullable=False)
    last_attempt = Column(UTCDateTime, nullable=False)
    next_attempt = Column(UTCDateTime, nullable=False, index=True)

    error_type = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    requires_manual_intervention = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    updated_at = Column(UTCDateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        # At most one unresolved record per document
        Index(
            "uq_pdf_failures_active_document",
            "document_type",
            "document_id",
            unique=True,
            sqlite_where=text("resolved = 0"),
            postgresql_where=text("NOT resolved"),
        ),
    )

    @property
    def state(self) -> str:
        if self.resolved:
            return "resolved"
        if self.requires_manual_intervention:
            return "manual_intervention"
        return "pending_retry"

    @property
    def severity(self) -> str:
        if self.requires_manual_intervention:
            return "manual"
        if not self.retry_count:
            return "none"
        if self.retry_count < SEVERITY_LOW_BELOW:
            return "low"
        if self.retry_count < SEVERITY_MEDIUM_BELOW:
            return "medium"
        return "high"

    def __repr__(self):
        return (
            f"<FailureRecord(id={self.id}, document='{self.document_type}/{self.document_id}', "
            f"retry_count={self.retry_count}, state='{self.state}')>"
        )

    def to_dict(self):
        """Convert model instance to dictionary (camelCase, as served by the API)."""
        return {
            "id": self.id,
            "documentType": self.document_type,
            "documentId": self.document_id,
            "retryCount": self.retry_count,
            "firstAttempt": self.first_attempt.isoformat() if self.first_attempt else None,
            "lastAttempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "nextAttempt": self.next_attempt.isoformat() if self.next_attempt else None,
            "errorType": self.error_type,
            "errorMessage": self.error_message,
            "resolved": self.resolved,
            "requiresManualIntervention": self.requires_manual_intervention,
            "state": self.state,
            "severity": self.severity,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class GenerationRun(Base):
    """A batch, scan or retry sweep."""
    __tablename__ = "pdf_generation_runs"

    run_id = Column(String(36), primary_key=True)
    trigger = Column(String(16), nullable=False, index=True)
    item_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=True)
    failed_count = Column(Integer, nullable=True)
    started_at = Column(UTCDateTime, nullable=False, server_default=func.now())
    finished_at = Column(UTCDateTime, nullable=True)

    def to_dict(self):
        return {
            "runId": self.run_id,
            "trigger": self.trigger,
            "itemCount": self.item_count,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


class GenerationLog(Base):
    """One generation attempt."""
    __tablename__ = "pdf_generation_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), nullable=True, index=True)
    document_type = Column(String(32), nullable=False)
    document_id = Column(String(128), nullable=False)
    trigger = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)  # "generated", "existing" or "failed"
    error_type = Column(String(32), nullable=True)
    error_message = Column(Text, nullable=True)
    url = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, server_default=func.now(), index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "runId": self.run_id,
            "documentType": self.document_type,
            "documentId": self.document_id,
            "trigger": self.trigger,
            "status": self.status,
            "errorType": self.error_type,
            "errorMessage": self.error_message,
            "url": self.url,
            "durationMs": self.duration_ms,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


def start_run(run_id: str, trigger: str, item_count: int) -> GenerationRun:
    """Insert a new run row."""
    session = get_session()
    try:
        run = GenerationRun(run_id=run_id, trigger=trigger, item_count=item_count)
        session.add(run)
        session.commit()
        session.refresh(run)
        return run
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def finish_run(run_id: str, success_count: int, failed_count: int, finished_at) -> None:
    session = get_session()
    try:
        run = session.get(GenerationRun, run_id)
        if run is None:
            return
        run.success_count = success_count
        run.failed_count = failed_count
        run.finished_at = finished_at
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def record_attempt(
    document_type: str,
    document_id: str,
    trigger: str,
    status: str,
    error_type: str | None = None,
    error_message: str | None = None,
    url: str | None = None,
    duration_ms: int | None = None,
    run_id: str | None = None,
) -> GenerationLog:
    """
    Insert one attempt row into the audit log.

    Raises:
        Exception: Database errors (connection, constraint violations, etc.).
    """
    session = get_session()
    try:
        entry = GenerationLog(
            run_id=run_id,
            document_type=document_type,
            document_id=document_id,
            trigger=trigger,
            status=status,
            error_type=error_type,
            error_message=error_message,
            url=url,
            duration_ms=duration_ms,
        )
        session.add(entry)
        session.commit()
        session.refresh(entry)
        return entry
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_run_metadata(run_id: str):
    session = get_session()
    try:
        run = session.get(GenerationRun, run_id)
        return run.to_dict() if run else None
    finally:
        session.close()


def get_run_logs(run_id: str):
    session = get_session()
    try:
        rows = (
            session.query(GenerationLog)
            .filter_by(run_id=run_id)
            .order_by(GenerationLog.id)
            .all()
        )
        return [row.to_dict() for row in rows]
    finally:
        session.close()


def get_generation_counts(since, document_type: str | None = None):
    """
    Attempt counts per document type since ``since``.

    Returns ``{document_type: {"generated": n, "existing": n, "failed": n}}``.
    """
    session = get_session()
    try:
        query = (
            session.query(GenerationLog.document_type, GenerationLog.status, func.count(GenerationLog.id))
            .filter(GenerationLog.created_at >= since)
        )
        if document_type is not None:
            query = query.filter(GenerationLog.document_type == document_type)
        counts = {}
        for row_type, status, count in query.group_by(GenerationLog.document_type, GenerationLog.status):
            counts.setdefault(row_type, {})[status] = count
        return counts
    finally:
        session.close()

"""
Database package for PDF generation state.

Provides SQLAlchemy models and session management for failure records, the
generation audit trail and the Glide-synced source tables.
"""

from .db import get_session, session_scope, init_db, reset_db, dispose_engine, Base
from .models import (
    FailureRecord,
    GenerationRun,
    GenerationLog,
    start_run,
    finish_run,
    record_attempt,
    get_run_metadata,
    get_run_logs,
    get_generation_counts,
)

__all__ = [
    "get_session", "session_scope", "init_db", "reset_db", "dispose_engine", "Base",
    "FailureRecord", "GenerationRun", "GenerationLog",
    "start_run", "finish_run", "record_attempt",
    "get_run_metadata", "get_run_logs", "get_generation_counts",
]

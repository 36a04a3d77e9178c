"""
Scheduled maintenance sweeps: scan for missing PDFs, process due retries,
purge old resolved failures.

Jobs run one at a time on the scheduler thread; they may overlap with
on-demand API calls, which the per-document locks make safe.

Under a WSGI server run the sweeps as their own process:

    python backend/pdf_service/jobs.py
"""

import logging
import os
import sys
import threading
import time

import schedule

# Make the pdf_console package importable when run as a script
BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from pdf_console.db import init_db
from pdf_console.shared.config import Config
from pdf_console.shared.service import build_pipeline

logger = logging.getLogger(__name__)


def safe_run(job):
    def wrapper(*args, **kwargs):
        try:
            job(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error running job `{job.__name__}`: {e}")

    wrapper.__name__ = job.__name__
    return wrapper


def scan_missing_pdfs(pipeline):
    summary = pipeline.scan_for_missing()
    logger.info(
        f"Scheduled scan {summary.run_id}: {summary.success_count} generated, {summary.failed_count} failed"
    )


def retry_due_failures(pipeline):
    summary = pipeline.process_due_retries()
    logger.info(
        f"Scheduled retry sweep {summary.run_id}: {summary.success_count} recovered, "
        f"{summary.failed_count} still failing"
    )


def purge_resolved_failures(pipeline):
    deleted = pipeline.purge_resolved()
    logger.info(f"Scheduled purge removed {deleted} resolved failure record(s)")


def init(pipeline, config):
    logger.info("Scheduled PDF sweeps initialized ...")

    schedule.every(config.SCAN_INTERVAL_MINUTES).minutes.do(
        safe_run(scan_missing_pdfs), pipeline=pipeline
    )
    schedule.every(config.RETRY_INTERVAL_MINUTES).minutes.do(
        safe_run(retry_due_failures), pipeline=pipeline
    )
    schedule.every().day.at(config.PURGE_AT).do(
        safe_run(purge_resolved_failures), pipeline=pipeline
    )


def run_continuously(interval=1):
    """Run pending jobs every ``interval`` seconds on a daemon thread.

    Returns a threading.Event; set it to stop the loop. Missed runs are not
    replayed: a job due several times while the loop was busy runs once.
    """
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        def run(self):
            while not cease_continuous_run.is_set():
                schedule.run_pending()
                time.sleep(interval)

    continuous_thread = ScheduleThread(daemon=True)
    continuous_thread.start()
    return cease_continuous_run


def run_forever(pipeline, config, interval=1, stop_event=None):
    """Register the sweeps and run them on the calling thread until ``stop_event`` is set."""
    init(pipeline, config)
    stop_event = stop_event or threading.Event()
    while not stop_event.is_set():
        schedule.run_pending()
        stop_event.wait(interval)


def main():
    config = Config()
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    init_db()
    pipeline = build_pipeline(config)
    logger.info("Starting PDF sweep worker")
    try:
        run_forever(pipeline, config)
    except KeyboardInterrupt:
        logger.info("PDF sweep worker stopped")
    finally:
        pipeline.shutdown()


if __name__ == "__main__":
    main()

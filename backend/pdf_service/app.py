import io
import logging
import os
import posixpath
import sys

from flask import Flask, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

# Make the pdf_console package importable when run from repo root
APP_DIR = os.path.dirname(os.path.abspath(__file__))
BACKEND_DIR = os.path.dirname(APP_DIR)
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from pdf_console.db import init_db
from pdf_console.shared.batch_runner import parse_batch_items
from pdf_console.shared.config import Config
from pdf_console.shared.errors import (
    BatchProcessingError,
    FailureNotFoundError,
    StorageError,
    ValidationError,
)
from pdf_console.shared.service import build_pipeline

config = Config()

# Configure logging
log_level = getattr(logging, config.LOG_LEVEL, logging.INFO)
logging.basicConfig(
    level=log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
# Failure/audit/source tables must exist before the first request
init_db()

MAX_BATCH_ITEMS = 500

_pipeline = None


def get_pipeline():
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(config)
    return _pipeline


def set_pipeline(pipeline):
    """Swap the pipeline (tests, embedding)."""
    global _pipeline
    _pipeline = pipeline


def _parse_bool(value, name, default=None):
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in ("true", "1", "yes"):
        return True
    if s in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false")


def _parse_int(value, name, default=None, minimum=None):
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{name} must be at least {minimum}")
    return number


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def _result_response(result):
    """Single-document result -> (body, status)."""
    if result.success:
        return jsonify(result.to_dict()), 200
    if result.error_type == "validation_error":
        status = 400
    elif result.error_type == "not_found":
        status = 404
    else:
        status = 500
    return jsonify(result.to_dict()), status


# CORS configuration - allow origins from ALLOWED_ORIGINS, or use sensible defaults for dev
@app.after_request
def after_request(response):
    origin = request.headers.get('Origin', '')
    default_origins = ['http://localhost:5173']
    allowed_origins = config.ALLOWED_ORIGINS if config.ALLOWED_ORIGINS else default_origins

    if origin and origin in allowed_origins:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Authorization'
        response.headers['Access-Control-Allow-Credentials'] = 'true'
    return response


@app.route("/api/pdf/<path:_any>", methods=["OPTIONS"])
def handle_options(_any):
    """Handle CORS preflight requests (headers added by after_request)."""
    return jsonify({}), 200


@app.route("/health", methods=["GET"])
def health():
    return jsonify({
        "status": "ok",
        "storageBackend": config.STORAGE_BACKEND,
        "schedulerEnabled": config.ENABLE_SCHEDULER,
    }), 200


@app.route("/api/pdf/generate", methods=["POST"])
def generate_document():
    """Generate (or return the existing) PDF for one document."""
    data = _json_body()
    document_type = data.get("documentType", data.get("type"))
    document_id = data.get("documentId", data.get("id"))
    if not document_type or document_id is None or str(document_id).strip() == "":
        raise ValidationError("documentType and documentId are required")

    result = get_pipeline().generate_document(
        document_type,
        document_id,
        force_regenerate=_parse_bool(data.get("forceRegenerate"), "forceRegenerate", False),
        overwrite_existing=_parse_bool(data.get("overwriteExisting"), "overwriteExisting", False),
    )
    return _result_response(result)


@app.route("/api/pdf/batch", methods=["POST"])
def batch_generate():
    data = _json_body()
    items = parse_batch_items(data)
    if not items:
        raise ValidationError("Batch contains no items")
    if len(items) > MAX_BATCH_ITEMS:
        raise ValidationError(f"Batch contains {len(items)} items. Maximum {MAX_BATCH_ITEMS} allowed")

    summary = get_pipeline().batch_generate(
        items,
        force_regenerate=_parse_bool(data.get("forceRegenerate"), "forceRegenerate", False),
        overwrite_existing=_parse_bool(data.get("overwriteExisting"), "overwriteExisting", False),
    )
    return jsonify(summary.to_dict()), 200


@app.route("/api/pdf/scan", methods=["POST"])
def scan_for_missing():
    """Maintenance sweep: generate PDFs for documents that lack one."""
    data = _json_body()
    document_types = data.get("documentTypes")
    if document_types is not None and not isinstance(document_types, list):
        raise ValidationError("documentTypes must be a list")

    summary = get_pipeline().scan_for_missing(
        force_regenerate=_parse_bool(data.get("forceRegenerate"), "forceRegenerate", False),
        batch_size=_parse_int(data.get("batchSize"), "batchSize", minimum=1),
        document_types=document_types,
    )
    body = summary.to_dict()
    body["successful"] = summary.success_count
    body["failed"] = summary.failed_count
    return jsonify(body), 200


@app.route("/api/pdf/retry-due", methods=["POST"])
def process_due_retries():
    data = _json_body()
    summary = get_pipeline().process_due_retries(
        limit=_parse_int(data.get("limit"), "limit", minimum=1),
    )
    return jsonify(summary.to_dict()), 200


@app.route("/api/pdf/trigger", methods=["POST"])
def database_trigger():
    """
    Webhook for database triggers on the document tables.

    Body: {"type": "INSERT" | "UPDATE", "table": "gl_invoices", "record": {"id": ...}}.
    Generation outcomes always come back as 200 so the caller does not redeliver.
    """
    outcome = get_pipeline().handle_trigger(_json_body())
    if isinstance(outcome, dict):
        return jsonify(outcome), 200
    return jsonify(outcome.to_dict()), 200


@app.route("/api/pdf/stats", methods=["GET"])
def generation_stats():
    """PDF coverage and recent generation outcomes; timeRange is 24h, 7d or 30d."""
    return jsonify(get_pipeline().stats(request.args.get("timeRange", "24h"))), 200


@app.route("/api/pdf/failures", methods=["GET"])
def list_failures():
    """
    List failure records, soonest next attempt first.

    Query params: resolved, requiresManualIntervention, documentType, limit, and
    the shorthand filter=all|unresolved|manual.
    """
    resolved = _parse_bool(request.args.get("resolved"), "resolved")
    manual = _parse_bool(request.args.get("requiresManualIntervention"), "requiresManualIntervention")

    shorthand = request.args.get("filter", "").strip().lower()
    if shorthand == "unresolved":
        resolved = False
    elif shorthand == "manual":
        resolved = False
        manual = True
    elif shorthand not in ("", "all"):
        raise ValidationError("filter must be one of all, unresolved, manual")

    records = get_pipeline().list_failures(
        resolved=resolved,
        requires_manual_intervention=manual,
        document_type=request.args.get("documentType") or None,
        limit=_parse_int(request.args.get("limit"), "limit", minimum=1),
    )
    return jsonify({
        "count": len(records),
        "failures": [record.to_dict() for record in records],
    }), 200


@app.route("/api/pdf/failures/summary", methods=["GET"])
def failure_summary():
    return jsonify(get_pipeline().failure_summary()), 200


@app.route("/api/pdf/failures/<int:failure_id>", methods=["GET"])
def get_failure(failure_id):
    return jsonify(get_pipeline().get_failure(failure_id).to_dict()), 200


@app.route("/api/pdf/failures/<int:failure_id>/retry", methods=["POST"])
def retry_failure(failure_id):
    result = get_pipeline().retry_failure(failure_id)
    return _result_response(result)


@app.route("/api/pdf/failures/<int:failure_id>/reset", methods=["POST"])
def reset_failure(failure_id):
    return jsonify(get_pipeline().reset_failure(failure_id).to_dict()), 200


@app.route("/api/pdf/failures/<int:failure_id>/resolve", methods=["POST"])
def resolve_failure(failure_id):
    return jsonify(get_pipeline().resolve_failure(failure_id).to_dict()), 200


@app.route("/api/pdf/failures/purge", methods=["POST"])
def purge_resolved():
    data = _json_body()
    deleted = get_pipeline().purge_resolved(
        older_than_days=_parse_int(data.get("olderThanDays"), "olderThanDays", minimum=0),
    )
    return jsonify({"deleted": deleted}), 200


@app.route("/api/pdf/runs/<run_id>", methods=["GET"])
def get_run(run_id):
    run = get_pipeline().get_run(run_id)
    if run is None:
        return jsonify({"error": "run_not_found"}), 404
    return jsonify(run), 200


@app.route("/api/pdf/files/<path:key>", methods=["GET"])
def download_file(key):
    """Serve a stored PDF by storage key."""
    storage = get_pipeline().storage
    try:
        if not storage.exists(key):
            return jsonify({"error": "file_not_found"}), 404
        data = storage.get(key)
    except StorageError as e:
        if not e.transient:
            return jsonify({"error": "file_not_found"}), 404
        raise
    return send_file(
        io.BytesIO(data),
        mimetype="application/pdf",
        as_attachment=False,
        download_name=posixpath.basename(key),
    )


@app.errorhandler(ValidationError)
def handle_validation_error(e):
    return jsonify({"error": str(e), "errorType": e.error_type}), 400


@app.errorhandler(BatchProcessingError)
def handle_batch_error(e):
    return jsonify({"error": str(e), "errorType": "validation_error"}), 400


@app.errorhandler(FailureNotFoundError)
def handle_failure_not_found(e):
    return jsonify({"error": str(e), "errorType": "not_found"}), 404


@app.errorhandler(HTTPException)
def handle_http_exception(e):
    return jsonify({"error": e.name}), e.code


# Unified error handler
@app.errorhandler(Exception)
def handle_exception(e):
    """Catch all unhandled exceptions."""
    logger.exception("Unhandled exception")
    return jsonify({"error": "internal_server_error"}), 500


def start_scheduler():
    """
    Run the sweeps on a background thread of this process.

    Only for the development server. Under a WSGI server run ``jobs.py`` as
    its own process so the sweeps run once, not once per worker.
    """
    from jobs import init as init_jobs, run_continuously

    init_jobs(get_pipeline(), config)
    return run_continuously()


def _is_reloader_parent():
    # With the debug reloader the app runs in a child process flagged by WERKZEUG_RUN_MAIN
    return config.DEBUG and os.environ.get("WERKZEUG_RUN_MAIN") != "true"


if __name__ == "__main__":
    if config.ENABLE_SCHEDULER and not _is_reloader_parent():
        start_scheduler()
    app.run(host=config.HOST, port=config.PORT, debug=config.DEBUG)

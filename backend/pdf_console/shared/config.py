"""
Runtime configuration read from environment variables.
"""

import os


def _env_bool(environ, key, default="false"):
    return environ.get(key, default).lower() in ("true", "1", "yes")


def _env_int(environ, key, default):
    raw = environ.get(key, "")
    if raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


class Config:
    """Pipeline and service configuration.

    Values are read once when the object is built; pass ``environ`` to build a
    configuration from a plain dict (tests, scripts).
    """

    def __init__(self, environ=None):
        env = os.environ if environ is None else environ

        # Service
        self.HOST = env.get("HOST", "0.0.0.0")
        self.PORT = _env_int(env, "PORT", 5000)
        self.DEBUG = _env_bool(env, "DEBUG")
        self.LOG_LEVEL = env.get("LOG_LEVEL", "INFO").upper()
        self.ALLOWED_ORIGINS = [
            origin.strip()
            for origin in env.get("ALLOWED_ORIGINS", "").split(",")
            if origin.strip()
        ]
        self.ENABLE_SCHEDULER = _env_bool(env, "ENABLE_SCHEDULER")

        # Storage
        self.STORAGE_BACKEND = env.get("PDF_STORAGE_BACKEND", "local").lower()
        self.STORAGE_DIR = env.get("PDF_STORAGE_DIR", os.path.join(".", "output", "pdfs"))
        self.PUBLIC_BASE_URL = env.get("PDF_PUBLIC_BASE_URL", "/api/pdf/files")
        self.SUPABASE_URL = env.get("SUPABASE_URL", "")
        self.SUPABASE_SERVICE_ROLE_KEY = env.get("SUPABASE_SERVICE_ROLE_KEY", "")
        self.STORAGE_BUCKET = env.get("PDF_STORAGE_BUCKET", "pdfs")
        self.STORAGE_TIMEOUT_SECONDS = _env_int(env, "PDF_STORAGE_TIMEOUT_SECONDS", 30)

        # Retry policy
        self.MAX_RETRIES = _env_int(env, "PDF_MAX_RETRIES", 10)
        self.RETRY_BASE_SECONDS = _env_int(env, "PDF_RETRY_BASE_SECONDS", 300)
        self.RETRY_MAX_SECONDS = _env_int(env, "PDF_RETRY_MAX_SECONDS", 86400)

        # Generation / batches
        self.GENERATION_TIMEOUT_SECONDS = _env_int(env, "PDF_GENERATION_TIMEOUT_SECONDS", 60)
        self.BATCH_WORKERS = _env_int(env, "PDF_BATCH_WORKERS", 4)
        self.SCAN_BATCH_SIZE = _env_int(env, "PDF_SCAN_BATCH_SIZE", 50)
        self.RETRY_BATCH_SIZE = _env_int(env, "PDF_RETRY_BATCH_SIZE", 20)
        self.PURGE_AFTER_DAYS = _env_int(env, "PDF_PURGE_AFTER_DAYS", 30)

        # Scheduled sweeps
        self.SCAN_INTERVAL_MINUTES = _env_int(env, "PDF_SCAN_INTERVAL_MINUTES", 30)
        self.RETRY_INTERVAL_MINUTES = _env_int(env, "PDF_RETRY_INTERVAL_MINUTES", 10)
        self.PURGE_AT = env.get("PDF_PURGE_AT", "03:00")

        # Letterhead
        self.COMPANY_NAME = env.get("COMPANY_NAME", "Your Company")
        self.COMPANY_INFO = env.get(
            "COMPANY_INFO",
            "123 Company St, City, State 12345\nPhone: (123) 456-7890\nEmail: info@yourcompany.com",
        )

        if self.BATCH_WORKERS < 1:
            raise ValueError("PDF_BATCH_WORKERS must be at least 1")
        if self.MAX_RETRIES < 1:
            raise ValueError("PDF_MAX_RETRIES must be at least 1")

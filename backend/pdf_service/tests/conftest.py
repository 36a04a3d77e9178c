import os
import sys
import tempfile
from pathlib import Path


TESTS_DIR = Path(__file__).resolve().parent
PDF_SERVICE_DIR = TESTS_DIR.parent
BACKEND_DIR = PDF_SERVICE_DIR.parent

for path in (TESTS_DIR, PDF_SERVICE_DIR, BACKEND_DIR):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

# Importing the Flask app creates tables; keep that out of the working tree
_SESSION_DIR = tempfile.mkdtemp(prefix="pdf-service-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_SESSION_DIR, 'session.db')}")
os.environ.setdefault("PDF_STORAGE_DIR", os.path.join(_SESSION_DIR, "pdfs"))

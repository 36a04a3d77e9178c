"""
Object storage for rendered PDFs.

Two backends share one contract (``store``, ``exists``, ``get``): a local
directory served by the Flask app, and a Supabase Storage bucket reached over
its REST API. Both overwrite in place when a key is stored twice.
"""

import hashlib
import logging
import os
import re
import tempfile

import httpx

from .document_types import get_type_config
from .errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_TRANSIENT_STATUS = {408, 425, 429}


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _safe_name(document_id) -> str:
    """
    Key-safe form of a document id.

    Ids that had to be rewritten get a short hash of the raw id appended, so
    ``"a/b"`` and ``"a_b"`` never share a key.
    """
    raw = str(document_id).strip()
    name = _UNSAFE_KEY_CHARS.sub("_", raw) or "_"
    if name != raw:
        name = f"{name}-{sha256_bytes(raw.encode('utf-8'))[:8]}"
    return name


def base_key(document_type, document_id) -> str:
    """Stable key for a document: ``{StorageFolder}/{id}.pdf``."""
    folder = get_type_config(document_type).storage_folder
    return f"{folder}/{_safe_name(document_id)}.pdf"


def content_key(document_type, document_id, data: bytes) -> str:
    """Key minted when an existing object must not be overwritten."""
    folder = get_type_config(document_type).storage_folder
    return f"{folder}/{_safe_name(document_id)}-{sha256_bytes(data)[:12]}.pdf"


def validate_key(key) -> str:
    if not key or not isinstance(key, str):
        raise StorageError("Storage key cannot be empty", transient=False)
    if key.startswith("/") or "\\" in key or any(part in ("", ".", "..") for part in key.split("/")):
        raise StorageError(f"Invalid storage key: {key}", transient=False)
    return key


class StorageAdapter:
    """Interface shared by the storage backends."""

    def store(self, key: str, data: bytes) -> str:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def get(self, key: str) -> bytes:
        raise NotImplementedError

    def url_for(self, key: str) -> str:
        raise NotImplementedError


class LocalStorage(StorageAdapter):
    """Filesystem backend. Writes go to a temp file that is then renamed into place."""

    def __init__(self, root_dir, public_base_url="/api/pdf/files"):
        self.root_dir = os.path.abspath(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key):
        validate_key(key)
        path = os.path.abspath(os.path.join(self.root_dir, *key.split("/")))
        if not path.startswith(self.root_dir + os.sep):
            raise StorageError(f"Storage key escapes storage root: {key}", transient=False)
        return path

    def url_for(self, key):
        return f"{self.public_base_url}/{key}"

    def store(self, key, data):
        path = self._path(key)
        directory = os.path.dirname(path)
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=directory, suffix=".tmp", delete=False) as tmp:
                tmp_path = tmp.name
                tmp.write(data)
            os.replace(tmp_path, path)
            tmp_path = None
        except PermissionError as e:
            raise StorageError(f"Permission denied writing {key}: {e}", transient=False)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}", transient=True)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

        logger.debug(f"Stored {len(data)} bytes at {path}")
        return self.url_for(key)

    def exists(self, key):
        return os.path.isfile(self._path(key))

    def get(self, key):
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise StorageError(f"No object stored at {key}", transient=False)
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}", transient=True)


class SupabaseStorage(StorageAdapter):
    """Supabase Storage bucket via its REST API."""

    def __init__(self, base_url, service_key, bucket="pdfs", timeout=30.0, transport=None):
        if not base_url or not service_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for supabase storage")
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _object_url(self, key):
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{key}"

    def url_for(self, key):
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{key}"

    def _client(self):
        return httpx.Client(timeout=self.timeout, headers=self.headers, transport=self.transport)

    def _raise_for_status(self, resp, key):
        if resp.is_success:
            return
        transient = resp.status_code >= 500 or resp.status_code in _TRANSIENT_STATUS
        raise StorageError(
            f"Storage returned HTTP {resp.status_code} for {key}",
            transient=transient,
            details={"status_code": resp.status_code, "body": resp.text[:500]},
        )

    def _request(self, method, key, **kwargs):
        try:
            with self._client() as client:
                return client.request(method, self._object_url(key), **kwargs)
        except httpx.TimeoutException as e:
            raise StorageError(f"Storage request timed out for {key}: {e}", transient=True)
        except httpx.TransportError as e:
            raise StorageError(f"Storage unreachable for {key}: {e}", transient=True)

    def store(self, key, data):
        validate_key(key)
        resp = self._request(
            "POST",
            key,
            content=data,
            headers={"Content-Type": "application/pdf", "x-upsert": "true"},
        )
        self._raise_for_status(resp, key)
        logger.debug(f"Uploaded {len(data)} bytes to {self.bucket}/{key}")
        return self.url_for(key)

    def exists(self, key):
        validate_key(key)
        resp = self._request("HEAD", key)
        # Supabase answers 400 for missing objects on some deployments
        if resp.status_code in (400, 404):
            return False
        self._raise_for_status(resp, key)
        return True

    def get(self, key):
        validate_key(key)
        resp = self._request("GET", key)
        if resp.status_code in (400, 404):
            raise StorageError(f"No object stored at {key}", transient=False)
        self._raise_for_status(resp, key)
        return resp.content


def build_storage(config) -> StorageAdapter:
    if config.STORAGE_BACKEND == "local":
        return LocalStorage(config.STORAGE_DIR, config.PUBLIC_BASE_URL)
    if config.STORAGE_BACKEND == "supabase":
        return SupabaseStorage(
            config.SUPABASE_URL,
            config.SUPABASE_SERVICE_ROLE_KEY,
            bucket=config.STORAGE_BUCKET,
            timeout=float(config.STORAGE_TIMEOUT_SECONDS),
        )
    raise ValueError(f"Unknown PDF_STORAGE_BACKEND: {config.STORAGE_BACKEND}")

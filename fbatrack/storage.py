"""Receipt blob storage.

Receipts live in a Supabase Storage bucket under ``{user_id}/{file name}``.
File names start with the id of the record they belong to
(``{record_id}-{timestamp}.{ext}``), which is how backups reconcile them.
"""
import logging
import mimetypes

import requests
from flask import current_app

from .errors import StorageError

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 1000


def guess_content_type(filename: str) -> str:
    return mimetypes.guess_type(filename)[0] or "application/octet-stream"


class SupabaseReceiptStore:
    """Thin client over the Supabase Storage REST API."""

    def __init__(self, url: str, service_key: str, bucket: str = "receipts", timeout: int = 30):
        if not url or not service_key:
            raise StorageError("SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not configured")
        self.base_url = url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> "SupabaseReceiptStore":
        return cls(
            cfg.get("SUPABASE_URL", ""),
            cfg.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            cfg.get("RECEIPTS_BUCKET", "receipts"),
            cfg.get("STORAGE_TIMEOUT_S", 30),
        )

    def _headers(self, **extra) -> dict:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        headers.update(extra)
        return headers

    def _check(self, r: requests.Response, what: str):
        if r.status_code >= 400:
            raise StorageError(f"supabase error ({what}): {r.text}", status_code=r.status_code)

    def list_receipts(self, user_id) -> list[str]:
        """Names (without the user prefix) of every receipt stored for the user."""
        url = f"{self.base_url}/storage/v1/object/list/{self.bucket}"
        names: list[str] = []
        offset = 0
        while True:
            try:
                r = requests.post(
                    url,
                    headers=self._headers(),
                    json={
                        "prefix": str(user_id),
                        "limit": LIST_PAGE_SIZE,
                        "offset": offset,
                        "sortBy": {"column": "name", "order": "asc"},
                    },
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise StorageError(f"receipt listing failed: {e}") from e
            self._check(r, "list")
            page = r.json() or []
            # folders come back without an id
            names.extend(f["name"] for f in page if f.get("id") is not None)
            if len(page) < LIST_PAGE_SIZE:
                return names
            offset += LIST_PAGE_SIZE

    def download(self, user_id, name: str) -> bytes:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{user_id}/{name}"
        try:
            r = requests.get(url, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageError(f"receipt download failed for {name}: {e}") from e
        self._check(r, f"download {name}")
        return r.content

    def upload(self, user_id, name: str, content: bytes, content_type: str | None = None) -> str:
        path = f"{user_id}/{name}"
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        mimetype = content_type or guess_content_type(name)
        files = {"file": (name, content, mimetype)}
        try:
            r = requests.post(url, headers=self._headers(**{"x-upsert": "false"}), files=files, timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageError(f"receipt upload failed for {name}: {e}") from e
        self._check(r, f"upload {name}")
        logger.debug("Uploaded receipt %s (%d bytes)", path, len(content))
        return path


def get_receipt_store():
    """Store registered on the app (tests swap in an in-memory one), else Supabase from config."""
    store = current_app.extensions.get("receipt_store")
    if store is None:
        store = SupabaseReceiptStore.from_config(current_app.config)
        current_app.extensions["receipt_store"] = store
    return store

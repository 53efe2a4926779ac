from __future__ import annotations

import threading
from typing import Protocol

import requests

from .exceptions import PersistenceError, UploadError
from .logger import setup_logger
from .types import AttendanceRecord


class ObjectStore(Protocol):
    def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> str: ...

    def remove(self, name: str) -> None: ...


class RecordStore(Protocol):
    def insert(self, record: AttendanceRecord) -> None: ...


class _SupabaseClient:
    def __init__(self, base_url: str, service_key: str, timeout_seconds: float = 15.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self._session_lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    def _headers(self, content_type: str = "application/json") -> dict[str, str]:
        return {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": content_type,
        }

    def close(self) -> None:
        self.session.close()


class SupabaseObjectStore(_SupabaseClient):
    """Best-effort still image uploads to a public Supabase Storage bucket."""

    def __init__(self, base_url: str, service_key: str, bucket: str, **kwargs):
        super().__init__(base_url, service_key, **kwargs)
        self.bucket = bucket

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{name}"

    def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> str:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{name}"
        headers = self._headers(content_type)
        headers["x-upsert"] = "false"
        try:
            with self._session_lock:
                resp = self.session.post(url, data=data, headers=headers, timeout=self.timeout_seconds)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise UploadError(f"Upload of {name} failed: {exc}") from exc
        return self.public_url(name)

    def remove(self, name: str) -> None:
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{name}"
        try:
            with self._session_lock:
                resp = self.session.delete(url, headers=self._headers(), timeout=self.timeout_seconds)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise UploadError(f"Removal of {name} failed: {exc}") from exc


class SupabaseRecordStore(_SupabaseClient):
    def __init__(self, base_url: str, service_key: str, table: str, schema: str = "public", **kwargs):
        super().__init__(base_url, service_key, **kwargs)
        self.table = table
        self.schema = schema

    def insert(self, record: AttendanceRecord) -> None:
        url = f"{self.base_url}/rest/v1/{self.table}"
        headers = self._headers()
        headers["Content-Profile"] = self.schema
        headers["Prefer"] = "return=minimal"
        try:
            with self._session_lock:
                resp = self.session.post(url, json=record.to_row(), headers=headers, timeout=self.timeout_seconds)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise PersistenceError(f"Failed to insert attendance for {record.identity.roll}: {exc}") from exc
        self.logger.info("Attendance row stored for %s (%s)", record.identity.roll, record.status)

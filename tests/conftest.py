from __future__ import annotations

import asyncio
import os
import tempfile
import threading
import time
from typing import Callable, Iterable

import numpy as np
import pytest

# Keep log files out of the working tree; must be set before settings are cached.
os.environ.setdefault("PRESENCE_LOG_DIR", tempfile.mkdtemp(prefix="presence-logs-"))

from face_presence.config import get_settings  # noqa: E402
from face_presence.exceptions import DeviceUnavailable, NetworkError, PersistenceError, UploadError  # noqa: E402
from face_presence.types import (  # noqa: E402
    AttendanceRecord,
    FaceDescriptor,
    Identity,
    SubmissionOutcome,
    SubmissionRequest,
)


def make_descriptor(seed: int = 0, length: int = 128) -> FaceDescriptor:
    rng = np.random.default_rng(seed)
    return FaceDescriptor.from_array(rng.standard_normal(length))


class FakeFrameSource:
    def __init__(self, acquire_error: Exception | None = None, read_errors: Iterable[Exception] = ()):
        self.acquire_error = acquire_error
        self.read_errors = list(read_errors)
        self.reads = 0
        self.acquired = False
        self.acquire_calls = 0
        self.release_calls = 0
        self.frame = np.zeros((72, 128, 3), dtype=np.uint8)

    def acquire(self):
        self.acquire_calls += 1
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired = True
        return self

    def current_frame(self):
        if not self.acquired:
            raise DeviceUnavailable("not acquired")
        self.reads += 1
        if self.read_errors:
            raise self.read_errors.pop(0)
        return self.frame

    def release(self) -> None:
        self.release_calls += 1
        self.acquired = False


class FakeExtractor:
    """Scripted extractor; once the script runs out it repeats ``default``."""

    def __init__(
        self,
        script: Iterable[FaceDescriptor | Exception | None] = (),
        default: FaceDescriptor | None = None,
        load_error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.script = list(script)
        self.default = default
        self.load_error = load_error
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.entered = threading.Event()
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def load(self) -> None:
        if self.load_error is not None:
            raise self.load_error

    def detect(self, frame):
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            item = self.script.pop(0) if self.script else self.default
        self.entered.set()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.delay:
                time.sleep(self.delay)
            if isinstance(item, Exception):
                raise item
            return item
        finally:
            with self._lock:
                self.active -= 1


class FakeVerifier:
    def __init__(
        self,
        outcomes: Iterable[SubmissionOutcome | Exception] = (),
        default: SubmissionOutcome | Exception | None = None,
    ):
        self.outcomes = list(outcomes)
        self.default = default or SubmissionOutcome(recognized=True, confidence=0.92)
        self.requests: list[SubmissionRequest] = []
        self.active = 0
        self.max_active = 0
        self.gate: asyncio.Event | None = None
        self.closed = 0

    def close(self) -> None:
        self.closed += 1

    async def verify(self, request: SubmissionRequest) -> SubmissionOutcome:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            item = self.outcomes.pop(0) if self.outcomes else self.default
            if isinstance(item, Exception):
                raise item
            return item
        finally:
            self.active -= 1


class FakeRecordStore:
    def __init__(self, fail: bool = False, error: Exception | None = None):
        self.fail = fail
        self.error = error
        self.records: list[AttendanceRecord] = []
        self.attempts = 0
        self.closed = 0

    def insert(self, record: AttendanceRecord) -> None:
        self.attempts += 1
        if self.error is not None:
            raise self.error
        if self.fail:
            raise PersistenceError("database is locked")
        self.records.append(record)

    def close(self) -> None:
        self.closed += 1


class FakeObjectStore:
    def __init__(self, fail: bool = False, remove_fail: bool = False):
        self.fail = fail
        self.remove_fail = remove_fail
        self.uploads: dict[str, bytes] = {}
        self.removed: list[str] = []

    def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> str:
        if self.fail:
            raise UploadError("bucket not found")
        self.uploads[name] = data
        return f"https://storage.test/public/{name}"

    def remove(self, name: str) -> None:
        if self.remove_fail:
            raise UploadError("object locked")
        self.removed.append(name)
        self.uploads.pop(name, None)


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def identity() -> Identity:
    return Identity(roll="21CS042", name="Asha Raman", email="asha@example.edu")


@pytest.fixture
def descriptor() -> FaceDescriptor:
    return make_descriptor()


@pytest.fixture
def network_error() -> NetworkError:
    return NetworkError("connection refused")


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0, step: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)

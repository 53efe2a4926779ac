from __future__ import annotations

import asyncio
import re
from typing import Protocol

from .camera import encode_jpeg
from .exceptions import PersistenceError, UploadError
from .logger import setup_logger
from .storage import ObjectStore, RecordStore
from .types import (
    AttendanceRecord,
    DetectionSample,
    FaceDescriptor,
    Identity,
    SubmissionOutcome,
    SubmissionRequest,
)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


class Verifier(Protocol):
    async def verify(self, request: SubmissionRequest) -> SubmissionOutcome: ...


def image_object_name(request: SubmissionRequest) -> str:
    roll = _UNSAFE_KEY_CHARS.sub("_", request.identity.roll.strip()) or "unknown"
    epoch_ms = int(request.captured_at.timestamp() * 1000)
    return f"{roll}_{epoch_ms}.jpg"


class AttendanceSubmitter:
    """Runs one capture through verification and hands the result to storage.

    The image upload and the verification call run concurrently. A record is
    written only once the service has answered, whatever the answer was.
    Upload and storage failures are logged and never change the outcome.
    A still uploaded for a capture whose verification fails is removed again.
    """

    def __init__(
        self,
        verifier: Verifier,
        records: RecordStore,
        objects: ObjectStore | None = None,
        upload_images: bool = True,
        jpeg_quality: int = 85,
    ):
        self.verifier = verifier
        self.records = records
        self.objects = objects
        self.upload_images = upload_images
        self.jpeg_quality = jpeg_quality
        self.logger = setup_logger(self.__class__.__name__)

    def build_request(self, identity: Identity, sample: DetectionSample) -> SubmissionRequest:
        if not sample.present or sample.descriptor is None:
            raise ValueError("Only a sample with a detected face can be submitted.")

        descriptor = FaceDescriptor.from_array(sample.descriptor.values)
        image = None
        if self.upload_images and self.objects is not None and sample.frame is not None:
            try:
                image = encode_jpeg(sample.frame, self.jpeg_quality)
            except UploadError as exc:
                self.logger.warning("Still image skipped: %s", exc)
        return SubmissionRequest(identity=identity, descriptor=descriptor, image=image)

    async def submit(self, request: SubmissionRequest) -> SubmissionOutcome:
        name = image_object_name(request)
        upload = asyncio.ensure_future(self._upload(request, name))
        try:
            outcome = await self.verifier.verify(request)
        except Exception:
            await self._discard_upload(upload, name)
            raise
        image_url = await upload

        record = AttendanceRecord.from_outcome(request, outcome, image_url)
        await self._persist(record)
        return outcome

    def close(self) -> None:
        for client in (self.verifier, self.records, self.objects):
            close = getattr(client, "close", None)
            if callable(close):
                close()

    async def _upload(self, request: SubmissionRequest, name: str) -> str | None:
        if request.image is None or self.objects is None:
            return None
        try:
            url = await asyncio.to_thread(self.objects.upload, name, request.image)
        except Exception as exc:
            self.logger.warning("Image upload failed for %s: %s", name, exc)
            return None
        self.logger.info("Image uploaded: %s", name)
        return url

    async def _discard_upload(self, upload: "asyncio.Future[str | None]", name: str) -> None:
        # No record will reference the still, so it must not stay in the bucket.
        if await upload is None:
            return
        try:
            await asyncio.to_thread(self.objects.remove, name)
        except Exception as exc:
            self.logger.warning("Orphaned image %s not removed: %s", name, exc)
            return
        self.logger.info("Image removed after failed verification: %s", name)

    async def _persist(self, record: AttendanceRecord) -> None:
        try:
            await asyncio.to_thread(self.records.insert, record)
        except PersistenceError as exc:
            self.logger.error("Attendance record not stored: %s", exc)
        except Exception:
            self.logger.exception("Attendance record not stored for %s", record.identity.roll)

from __future__ import annotations

import asyncio
import dataclasses
from typing import Callable, Literal

from .camera import FrameSource
from .config import Settings
from .database import LocalRecordStore
from .detection import DetectionLoop
from .exceptions import (
    CameraError,
    ConfigurationError,
    IdentityMissing,
    ModelLoadError,
    NetworkError,
    PermissionDenied,
    PresenceError,
    TriggerPolicyError,
    VerificationRejected,
)
from .extractor import ArcFaceExtractor, DescriptorExtractor
from .guard import CaptureGuard
from .identity import IdentityStore
from .logger import setup_logger
from .status import (
    MSG_CAMERA_DENIED,
    MSG_CAMERA_UNAVAILABLE,
    MSG_CONNECTION_ERROR,
    MSG_FACE_READY,
    MSG_LOADING_MODELS,
    MSG_MODEL_ERROR,
    MSG_MODELS_LOADED,
    MSG_POSITION_FACE,
    StatusStateMachine,
)
from .storage import SupabaseObjectStore, SupabaseRecordStore
from .submitter import AttendanceSubmitter
from .types import DetectionSample, Identity, Status, StatusSnapshot, SubmissionRequest
from .verification import VerificationClient

TriggerPolicy = Literal["auto", "manual"]


class CameraSession:
    """One camera-view interaction, from acquisition to release.

    Owns its frame source, detection loop, capture guard and status. Work that
    outlives ``close`` (a verification call already on the wire) runs to the
    end, but its result is only applied while the session is alive and still
    holds the guard token it started with.
    """

    def __init__(
        self,
        identity_provider: Callable[[], Identity],
        source: FrameSource,
        extractor: DescriptorExtractor,
        submitter: AttendanceSubmitter,
        policy: TriggerPolicy = "auto",
        poll_interval: float = 1.0,
        dwell_seconds: float = 3.0,
    ):
        if policy not in ("auto", "manual"):
            raise ValueError(f"Unknown trigger policy: {policy}")
        self.identity_provider = identity_provider
        self.source = source
        self.extractor = extractor
        self.submitter = submitter
        self.policy = policy
        self.identity: Identity | None = None

        self.guard = CaptureGuard()
        self.state = StatusStateMachine(
            dwell_seconds=dwell_seconds,
            on_completed=self._on_completed,
            on_recovered=self._on_recovered,
        )
        self.loop = DetectionLoop(
            source=source,
            extractor=extractor,
            on_sample=self._on_sample,
            interval=poll_interval,
            should_poll=self._should_poll,
        )
        self.submissions_started = 0
        self._alive = False
        self._closed = False
        self._active_token: int | None = None
        self._pending: set[asyncio.Task] = set()
        self._done = asyncio.Event()
        self.logger = setup_logger(self.__class__.__name__)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CameraSession":
        if not settings.verify_url.strip():
            raise ConfigurationError("No verification endpoint configured. Set PRESENCE_VERIFY_URL.")
        verifier = VerificationClient(
            url=settings.verify_url,
            timeout_seconds=settings.request_timeout_seconds,
            api_key=settings.verify_api_key,
            default_confidence=settings.default_confidence,
        )
        objects = None
        if settings.supabase_enabled:
            records = SupabaseRecordStore(
                settings.supabase_url,
                settings.supabase_service_key,
                table=settings.attendance_table,
                schema=settings.supabase_schema,
            )
            objects = SupabaseObjectStore(
                settings.supabase_url,
                settings.supabase_service_key,
                bucket=settings.storage_bucket,
            )
        else:
            records = LocalRecordStore(settings.local_db_path)

        return cls(
            identity_provider=IdentityStore(settings.identity_path).load,
            source=FrameSource(settings.camera_index, settings.frame_width, settings.frame_height),
            extractor=ArcFaceExtractor(),
            submitter=AttendanceSubmitter(
                verifier=verifier,
                records=records,
                objects=objects,
                upload_images=settings.upload_images,
                jpeg_quality=settings.jpeg_quality,
            ),
            policy=settings.trigger_policy,
            poll_interval=settings.poll_interval_seconds,
            dwell_seconds=settings.dwell_seconds,
        )

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def latest_sample(self) -> DetectionSample | None:
        return self.loop.latest

    async def start(self) -> None:
        if self._closed:
            raise PresenceError("Session already closed.")
        try:
            self.identity = self.identity_provider()
        except IdentityMissing:
            self.logger.warning("Session start aborted: no stored identity")
            raise
        self._alive = True
        self.logger.info("Session started for %s (policy=%s)", self.identity.roll, self.policy)

        self.state.set_message(MSG_LOADING_MODELS)
        try:
            await asyncio.to_thread(self.extractor.load)
        except ModelLoadError as exc:
            self._halt(exc, MSG_MODEL_ERROR)
            return
        if not self._alive:
            return

        self.state.set_message(MSG_MODELS_LOADED)
        try:
            await asyncio.to_thread(self.source.acquire)
        except PermissionDenied as exc:
            self._halt(exc, MSG_CAMERA_DENIED)
            return
        except CameraError as exc:
            self._halt(exc, MSG_CAMERA_UNAVAILABLE)
            return
        if not self._alive:
            self.source.release()
            return

        self.state.set_message(MSG_POSITION_FACE)
        self.loop.start()

    def trigger_capture(self) -> bool:
        """Submit the latest detected face. Returns False when capture is not available."""
        if self.policy != "manual":
            raise TriggerPolicyError("Captures are triggered automatically under the auto policy.")
        sample = self.loop.latest
        if sample is None or not sample.present:
            return False
        return self._begin_submission(sample)

    def snapshot(self) -> StatusSnapshot:
        snap = self.state.snapshot()
        sample = self.loop.latest
        face_present = self._alive and sample is not None and sample.present
        capture_available = (
            face_present
            and not self.guard.held
            and snap.status is Status.SCANNING
            and not snap.fatal
        )
        return dataclasses.replace(snap, face_present=face_present, capture_available=capture_available)

    def subscribe(self, listener: Callable[[StatusSnapshot], None]) -> Callable[[], None]:
        return self.state.subscribe(lambda _snap: listener(self.snapshot()))

    async def run_until_complete(self) -> StatusSnapshot:
        await self._done.wait()
        return self.snapshot()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._alive = False
        self.loop.stop()
        self.state.close()
        self.source.release()
        self._done.set()
        if self._pending:
            # Clients are closed by the last in-flight submission.
            self.logger.info("Session closed with %d submission(s) still in flight", len(self._pending))
        else:
            self.submitter.close()
            self.logger.info("Session closed")

    async def __aenter__(self) -> "CameraSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _should_poll(self) -> bool:
        if not self._alive or self.state.fatal or self.state.status is Status.COMPLETED:
            return False
        if self.policy == "auto":
            return not self.guard.held
        return True

    def _on_sample(self, sample: DetectionSample) -> None:
        if not self._alive:
            return
        if self.policy == "auto" and sample.present:
            self._begin_submission(sample)
            return
        if self.guard.held or self.state.status is not Status.SCANNING:
            return
        if sample.present:
            self.state.set_message(MSG_FACE_READY)
        else:
            self.state.set_message(MSG_POSITION_FACE)

    def _begin_submission(self, sample: DetectionSample) -> bool:
        if not self._alive or not sample.present:
            return False
        if self.state.fatal or self.state.status is not Status.SCANNING:
            return False
        token = self.guard.try_acquire()
        if token is None:
            return False

        request = self.submitter.build_request(self.identity, sample)
        self._active_token = token
        self.submissions_started += 1
        self.state.begin_processing()

        task = asyncio.get_running_loop().create_task(
            self._run_submission(request, token), name=f"submission-{token}"
        )
        self._pending.add(task)
        task.add_done_callback(self._on_submission_done)
        return True

    def _on_submission_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._closed and not self._pending:
            self.submitter.close()

    def _owns(self, token: int) -> bool:
        return self._alive and self.guard.owns(token) and not self.state.closed

    async def _run_submission(self, request: SubmissionRequest, token: int) -> None:
        try:
            outcome = await self.submitter.submit(request)
        except Exception as exc:
            if isinstance(exc, NetworkError):
                self.logger.warning("Submission failed: %s", exc)
                error: PresenceError = exc
            else:
                self.logger.exception("Submission failed unexpectedly")
                error = exc if isinstance(exc, PresenceError) else NetworkError(str(exc))
            if self._owns(token):
                self.state.fail(error, MSG_CONNECTION_ERROR)
            return

        if not self._owns(token):
            self.logger.info("Discarding verification result for a closed session")
            return
        if outcome.recognized:
            self.state.succeed()
        else:
            self.state.fail(VerificationRejected(outcome))

    def _on_recovered(self) -> None:
        if self._active_token is not None:
            self.guard.release(self._active_token)
            self._active_token = None

    def _on_completed(self) -> None:
        self.logger.info("Attendance completed; releasing camera")
        self.loop.stop()
        self.source.release()
        self._done.set()

    def _halt(self, error: PresenceError, message: str) -> None:
        self.logger.error("Session halted: %s", error)
        self.state.halt(error, message)
        self.loop.stop()
        self.source.release()
        self._done.set()

from __future__ import annotations

import asyncio
from typing import Callable

from .exceptions import InvalidTransition, NetworkError, PresenceError
from .logger import setup_logger
from .types import Status, StatusSnapshot

MSG_INITIALIZING = "Initializing face detection..."
MSG_LOADING_MODELS = "Loading AI models..."
MSG_MODELS_LOADED = "AI models loaded. Starting camera..."
MSG_POSITION_FACE = "Position your face in the frame"
MSG_FACE_READY = "Face detected. Ready to capture"
MSG_VERIFYING = "Face detected! Verifying..."
MSG_PRESENT = "Present Marked"
MSG_NOT_MATCHED = "Face Not Matched (Absent)"
MSG_CONNECTION_ERROR = "Connection error. Please try again."
MSG_RETRY = "Please try again"
MSG_COMPLETED = "Attendance Recorded. Check your Email."
MSG_CAMERA_DENIED = "Camera access denied. Please allow camera permission."
MSG_CAMERA_UNAVAILABLE = "Camera unavailable. Check the device and retry."
MSG_MODEL_ERROR = "Error loading AI models. Please refresh."

Listener = Callable[[StatusSnapshot], None]


class StatusStateMachine:
    """UI-facing status with timed recovery out of Success and Failure.

    Success moves to Completed and Failure back to Scanning once the dwell
    delay has elapsed. Each dwell timer fires at most once per entry and is
    cancelled by ``close`` or ``halt``.
    """

    def __init__(
        self,
        dwell_seconds: float = 3.0,
        on_completed: Callable[[], None] | None = None,
        on_recovered: Callable[[], None] | None = None,
    ):
        self.dwell_seconds = dwell_seconds
        self.on_completed = on_completed
        self.on_recovered = on_recovered

        self._status = Status.SCANNING
        self._message = MSG_INITIALIZING
        self._processing = False
        self._fatal = False
        self._error: PresenceError | None = None
        self._closed = False
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[Listener] = []
        self._snapshot = self._build_snapshot()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def status(self) -> Status:
        return self._status

    @property
    def message(self) -> str:
        return self._message

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def fatal(self) -> bool:
        return self._fatal

    @property
    def error(self) -> PresenceError | None:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dwell_pending(self) -> bool:
        return self._timer is not None

    def snapshot(self) -> StatusSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_message(self, message: str) -> None:
        """Update the hint text without changing state; ignored once halted or closed."""
        if self._closed or self._fatal or message == self._message:
            return
        self._message = message
        self._publish()

    def begin_processing(self, message: str = MSG_VERIFYING) -> None:
        self._require(self._status is Status.SCANNING and not self._processing, "begin_processing")
        self._processing = True
        self._message = message
        self._publish()

    def succeed(self, message: str = MSG_PRESENT) -> None:
        self._require(self._status is Status.SCANNING and self._processing, "succeed")
        self._status = Status.SUCCESS
        self._message = message
        self._error = None
        self._publish()
        self._schedule(self._finish_success)

    def fail(self, error: PresenceError, message: str | None = None) -> None:
        self._require(self._status is Status.SCANNING and self._processing, "fail")
        if message is None:
            message = MSG_CONNECTION_ERROR if isinstance(error, NetworkError) else MSG_NOT_MATCHED
        self._status = Status.FAILURE
        self._message = message
        self._error = error
        self._publish()
        self._schedule(self._finish_failure)

    def halt(self, error: PresenceError, message: str) -> None:
        """Surface an error the session cannot recover from on its own."""
        if self._closed:
            return
        self._cancel_timer()
        self._fatal = True
        self._processing = False
        self._error = error
        self._message = message
        self._publish()

    def close(self) -> None:
        self._cancel_timer()
        self._closed = True
        self._listeners.clear()

    def _require(self, allowed: bool, action: str) -> None:
        if self._closed:
            raise InvalidTransition(f"Cannot {action}: state machine is closed.")
        if self._fatal:
            raise InvalidTransition(f"Cannot {action}: session halted.")
        if not allowed:
            raise InvalidTransition(
                f"Cannot {action} from {self._status.value} (processing={self._processing})."
            )

    def _schedule(self, callback: Callable[[], None]) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.dwell_seconds, callback)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _finish_success(self) -> None:
        self._timer = None
        if self._closed or self._status is not Status.SUCCESS:
            return
        self._status = Status.COMPLETED
        self._processing = False
        self._message = MSG_COMPLETED
        if self.on_completed is not None:
            self.on_completed()
        self._publish()

    def _finish_failure(self) -> None:
        self._timer = None
        if self._closed or self._status is not Status.FAILURE:
            return
        self._status = Status.SCANNING
        self._processing = False
        self._message = MSG_RETRY
        if self.on_recovered is not None:
            self.on_recovered()
        self._publish()

    def _build_snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            status=self._status,
            message=self._message,
            processing=self._processing,
            fatal=self._fatal,
            error=type(self._error).__name__ if self._error is not None else None,
        )

    def _publish(self) -> None:
        self._snapshot = self._build_snapshot()
        self.logger.info("Status %s: %s", self._snapshot.display_state, self._message)
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:
                self.logger.exception("Status listener failed")

from __future__ import annotations

import threading

import cv2
import numpy as np

from .camera_capture import open_camera_capture
from .exceptions import DeviceUnavailable, UploadError
from .logger import setup_logger


class FrameSource:
    """Owns the live camera stream for one session.

    Reads happen on worker threads while ``release`` is called from the event
    loop, so both go through the same lock.
    """

    def __init__(self, camera_index: int = 0, frame_width: int = 1280, frame_height: int = 720):
        self.camera_index = camera_index
        self.frame_width = frame_width
        self.frame_height = frame_height
        self.cap = None
        self.backend_name: str | None = None
        self._lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def acquired(self) -> bool:
        return self.cap is not None

    def acquire(self) -> "FrameSource":
        with self._lock:
            if self.cap is not None:
                return self
            cap, backend_name = open_camera_capture(self.camera_index)

            # Ideal resolution only; the driver may pick the nearest mode.
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.frame_width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.frame_height)
            cv2.setUseOptimized(True)

            self.cap, self.backend_name = cap, backend_name
        self.logger.info("Camera %s opened via %s", self.camera_index, backend_name)
        return self

    def current_frame(self) -> np.ndarray:
        with self._lock:
            if self.cap is None:
                raise DeviceUnavailable("Webcam stream is not initialized.")
            success, frame = self.cap.read()
        if not success or frame is None:
            raise DeviceUnavailable("Failed to read frame from webcam.")
        return frame

    def release(self) -> None:
        with self._lock:
            if self.cap is None:
                return
            self.cap.release()
            self.cap = None
        self.logger.info("Camera %s released", self.camera_index)

    def __enter__(self) -> "FrameSource":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def encode_jpeg(frame: np.ndarray, quality: int = 85) -> bytes:
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise UploadError("Failed to encode still image as JPEG.")
    return buffer.tobytes()

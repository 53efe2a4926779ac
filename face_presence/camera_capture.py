from __future__ import annotations

import os
import sys
import time
from pathlib import Path
from typing import List, Tuple

import cv2

from .exceptions import DeviceUnavailable, PermissionDenied


def _preferred_backend_order() -> list[str]:
    raw = os.getenv("PRESENCE_CAMERA_BACKEND_ORDER", "").strip()
    if not raw:
        # Windows laptop webcams are generally more stable on DirectShow.
        if os.name == "nt":
            return ["DirectShow", "Media Foundation", "Auto"]
        return ["Auto", "V4L2", "AVFoundation"]
    ordered = [item.strip().lower() for item in raw.split(",") if item.strip()]
    mapping = {
        "auto": "Auto",
        "any": "Auto",
        "dshow": "DirectShow",
        "directshow": "DirectShow",
        "msmf": "Media Foundation",
        "mediafoundation": "Media Foundation",
        "media foundation": "Media Foundation",
        "v4l2": "V4L2",
        "avfoundation": "AVFoundation",
    }
    result: list[str] = []
    for item in ordered:
        name = mapping.get(item)
        if name and name not in result:
            result.append(name)
    return result or ["Auto"]


def capture_backends() -> List[Tuple[str, int | None]]:
    backend_map: dict[str, int | None] = {
        "Auto": getattr(cv2, "CAP_ANY", None),
        "DirectShow": getattr(cv2, "CAP_DSHOW", None),
        "Media Foundation": getattr(cv2, "CAP_MSMF", None),
        "V4L2": getattr(cv2, "CAP_V4L2", None),
        "AVFoundation": getattr(cv2, "CAP_AVFOUNDATION", None),
    }
    candidates: List[Tuple[str, int | None]] = []
    seen: set[int | None] = set()
    for name in _preferred_backend_order():
        backend = backend_map.get(name)
        if backend in seen:
            continue
        seen.add(backend)
        candidates.append((name, backend))
    return candidates


def check_device_permission(camera_index: int) -> None:
    """Fail fast when a Linux video node exists but is not readable by this process."""
    if not sys.platform.startswith("linux"):
        return
    node = Path(f"/dev/video{camera_index}")
    if node.exists() and not os.access(node, os.R_OK | os.W_OK):
        raise PermissionDenied(f"Access to {node} was denied. Grant camera permission and retry.")


def open_camera_capture(camera_index: int) -> tuple[cv2.VideoCapture, str]:
    check_device_permission(camera_index)
    attempted: List[str] = []

    for backend_name, backend in capture_backends():
        attempted.append(backend_name)
        if backend is None:
            cap = cv2.VideoCapture(camera_index)
        else:
            cap = cv2.VideoCapture(camera_index, backend)

        if cap.isOpened():
            # Some backends can report opened=True but fail to deliver frames.
            # Probe a few reads to ensure the stream is actually usable.
            frame_ok = False
            for _ in range(6):
                ok, frame = cap.read()
                if ok and frame is not None:
                    frame_ok = True
                    break
                time.sleep(0.03)

            if frame_ok:
                return cap, backend_name
        cap.release()

    tried = ", ".join(attempted) if attempted else "default backend"
    raise DeviceUnavailable(
        f"Unable to open webcam index {camera_index}. Tried backends: {tried}."
    )

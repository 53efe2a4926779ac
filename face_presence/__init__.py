from .session import CameraSession
from .types import (
    AttendanceRecord,
    DetectionSample,
    FaceDescriptor,
    Identity,
    Status,
    StatusSnapshot,
    SubmissionOutcome,
    SubmissionRequest,
)

__all__ = [
    "AttendanceRecord",
    "CameraSession",
    "DetectionSample",
    "FaceDescriptor",
    "Identity",
    "Status",
    "StatusSnapshot",
    "SubmissionOutcome",
    "SubmissionRequest",
]

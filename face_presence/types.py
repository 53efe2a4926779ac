from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

import numpy as np


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FaceDescriptor:
    """Fixed-length face embedding. Similarity is the verification service's concern."""

    values: tuple[float, ...]

    def __post_init__(self) -> None:
        if not self.values:
            raise ValueError("Face descriptor must not be empty.")
        if not all(math.isfinite(v) for v in self.values):
            raise ValueError("Face descriptor contains non-finite values.")

    @classmethod
    def from_array(cls, values: Sequence[float] | np.ndarray) -> "FaceDescriptor":
        vector = np.asarray(values, dtype=np.float64).ravel()
        return cls(values=tuple(float(v) for v in vector))

    def __len__(self) -> int:
        return len(self.values)

    def as_list(self) -> list[float]:
        return list(self.values)


@dataclass(frozen=True)
class DetectionSample:
    present: bool
    descriptor: FaceDescriptor | None = None
    timestamp: datetime = field(default_factory=utc_now)
    # Source frame for the still image; never persisted.
    frame: Any = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.present and self.descriptor is None:
            raise ValueError("A present sample requires a descriptor.")
        if not self.present and self.descriptor is not None:
            raise ValueError("An absent sample must not carry a descriptor.")

    @classmethod
    def absent(cls) -> "DetectionSample":
        return cls(present=False)

    @classmethod
    def detected(cls, descriptor: FaceDescriptor, frame: Any = None) -> "DetectionSample":
        return cls(present=True, descriptor=descriptor, frame=frame)


@dataclass(frozen=True)
class Identity:
    roll: str
    name: str
    email: str

    def __post_init__(self) -> None:
        for key in ("roll", "name", "email"):
            if not str(getattr(self, key)).strip():
                raise ValueError(f"Identity field '{key}' must not be blank.")

    def as_dict(self) -> dict[str, str]:
        return {"roll": self.roll, "name": self.name, "email": self.email}


@dataclass(frozen=True)
class SubmissionRequest:
    identity: Identity
    descriptor: FaceDescriptor
    image: bytes | None = field(default=None, repr=False)
    captured_at: datetime = field(default_factory=utc_now)

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = dict(self.identity.as_dict())
        body["vector"] = self.descriptor.as_list()
        return body


@dataclass(frozen=True)
class SubmissionOutcome:
    recognized: bool
    confidence: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}.")

    @property
    def status(self) -> str:
        return "present" if self.recognized else "absent"


@dataclass(frozen=True)
class AttendanceRecord:
    identity: Identity
    confidence_score: float
    status: str
    face_vector: FaceDescriptor
    image_url: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_outcome(
        cls,
        request: SubmissionRequest,
        outcome: SubmissionOutcome,
        image_url: str | None,
    ) -> "AttendanceRecord":
        return cls(
            identity=request.identity,
            confidence_score=outcome.confidence,
            status=outcome.status,
            face_vector=request.descriptor,
            image_url=image_url,
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = dict(self.identity.as_dict())
        row.update(
            {
                "confidence_score": self.confidence_score,
                "status": self.status,
                "face_vector": self.face_vector.as_list(),
                "image_url": self.image_url,
                "created_at": self.created_at.isoformat(),
            }
        )
        return row


class Status(str, Enum):
    SCANNING = "scanning"
    SUCCESS = "success"
    FAILURE = "failure"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StatusSnapshot:
    status: Status
    message: str
    processing: bool = False
    face_present: bool = False
    capture_available: bool = False
    fatal: bool = False
    error: str | None = None
    changed_at: datetime = field(default_factory=utc_now)

    @property
    def display_state(self) -> str:
        if self.status is Status.SCANNING:
            return "processing" if self.processing else "searching"
        return self.status.value

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import SubmissionOutcome


class PresenceError(Exception):
    """Base exception for the presence capture client."""


class CameraError(PresenceError):
    """Raised when webcam access fails."""


class PermissionDenied(CameraError):
    """Raised when the operating system refuses access to the camera."""


class DeviceUnavailable(CameraError):
    """Raised when no camera backend delivers frames."""


class ModelLoadError(PresenceError):
    """Raised when the descriptor extractor cannot be initialized."""


class DetectionError(PresenceError):
    """Raised when a single detection tick fails."""


class NetworkError(PresenceError):
    """Raised when the verification call does not complete."""


class VerificationRejected(PresenceError):
    """The service answered but did not recognize the face."""

    def __init__(self, outcome: "SubmissionOutcome"):
        super().__init__(f"Face not recognized (confidence={outcome.confidence:.2f})")
        self.outcome = outcome


class ConfigurationError(PresenceError):
    """Raised when required settings are missing."""


class PersistenceError(PresenceError):
    """Raised when an attendance record cannot be written."""


class UploadError(PresenceError):
    """Raised when a still image cannot be stored."""


class IdentityMissing(PresenceError):
    """Raised when no stored identity is available for the session."""


class InvalidTransition(PresenceError):
    """Raised on a status change the state machine does not allow."""


class TriggerPolicyError(PresenceError):
    """Raised when a manual capture is requested under the auto policy."""

from __future__ import annotations

import asyncio
import math
import threading
from typing import Any

import requests

from .exceptions import NetworkError
from .logger import setup_logger
from .types import SubmissionOutcome, SubmissionRequest

DEFAULT_CONFIDENCE = 0.85


def interpret_response(body: Any, default_confidence: float = DEFAULT_CONFIDENCE) -> SubmissionOutcome:
    """Map a verification response onto a recognized/confidence pair.

    Either ``recognized`` or ``success`` being truthy counts as recognized.
    A missing or unusable ``confidence`` falls back to ``default_confidence``.
    """
    if isinstance(body, list) and body and isinstance(body[0], dict):
        # Webhook runners often wrap a single item in a list.
        body = body[0]
    if not isinstance(body, dict):
        raise NetworkError(f"Unexpected verification response: {type(body).__name__}")

    recognized = bool(body.get("recognized") or body.get("success"))

    confidence = default_confidence
    raw = body.get("confidence")
    if raw is not None and not isinstance(raw, bool):
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = math.nan
        if math.isfinite(value):
            confidence = min(1.0, max(0.0, value))

    return SubmissionOutcome(recognized=recognized, confidence=confidence)


class VerificationClient:
    def __init__(
        self,
        url: str,
        timeout_seconds: float = 8.0,
        api_key: str = "",
        default_confidence: float = DEFAULT_CONFIDENCE,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.api_key = api_key
        self.default_confidence = default_confidence
        self.session = session or requests.Session()
        self._session_lock = threading.Lock()
        self.logger = setup_logger(self.__class__.__name__)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def verify_sync(self, request: SubmissionRequest) -> SubmissionOutcome:
        try:
            with self._session_lock:
                resp = self.session.post(
                    self.url,
                    json=request.payload(),
                    headers=self._headers(),
                    timeout=self.timeout_seconds,
                )
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            raise NetworkError(f"Verification request failed: {exc}") from exc
        except ValueError as exc:
            raise NetworkError(f"Verification response is not JSON: {exc}") from exc

        outcome = interpret_response(body, self.default_confidence)
        self.logger.info(
            "Verification for %s: recognized=%s confidence=%.3f",
            request.identity.roll,
            outcome.recognized,
            outcome.confidence,
        )
        return outcome

    async def verify(self, request: SubmissionRequest) -> SubmissionOutcome:
        return await asyncio.to_thread(self.verify_sync, request)

    def close(self) -> None:
        self.session.close()

from __future__ import annotations

from typing import Protocol

import numpy as np

from .exceptions import DetectionError, ModelLoadError
from .types import FaceDescriptor

try:
    from insightface.app import FaceAnalysis
except Exception:  # pragma: no cover - runtime dependency guard
    FaceAnalysis = None


class DescriptorExtractor(Protocol):
    def load(self) -> None: ...

    def detect(self, frame: np.ndarray) -> FaceDescriptor | None: ...


class ArcFaceExtractor:
    """Single-face ArcFace descriptors from insightface's ``buffalo_l`` pack."""

    def __init__(self, model_name: str = "buffalo_l", det_size: tuple[int, int] = (640, 640), ctx_id: int = 0):
        self.model_name = model_name
        self.det_size = det_size
        self.ctx_id = ctx_id
        self.app = None

    @property
    def loaded(self) -> bool:
        return self.app is not None

    def load(self) -> None:
        if self.app is not None:
            return
        if FaceAnalysis is None:
            raise ModelLoadError("insightface is required for ArcFace descriptors.")
        try:
            app = FaceAnalysis(name=self.model_name)
            # CUDAExecutionProvider will be used if onnxruntime-gpu is installed and GPU is available.
            app.prepare(ctx_id=self.ctx_id, det_size=self.det_size)
        except Exception as exc:
            raise ModelLoadError(f"Failed to initialize face models: {exc}") from exc
        self.app = app

    def detect(self, frame: np.ndarray) -> FaceDescriptor | None:
        if self.app is None:
            raise DetectionError("Extractor used before load().")
        try:
            faces = self.app.get(frame)
        except Exception as exc:
            raise DetectionError(f"Face extraction failed: {exc}") from exc
        if not faces:
            return None

        # Highest detection score face first.
        face = max(faces, key=lambda item: float(item.det_score))
        emb = np.asarray(face.embedding, dtype=np.float32)
        norm = float(np.linalg.norm(emb))
        if norm <= 1e-9:
            return None
        return FaceDescriptor.from_array(emb / norm)

from __future__ import annotations

import json
from pathlib import Path

from .exceptions import IdentityMissing
from .types import Identity


class IdentityStore:
    """Stored credentials for the person at the camera, kept as a small JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, identity: Identity) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(identity.as_dict(), indent=2), encoding="utf-8")

    def load(self) -> Identity:
        if not self.path.exists():
            raise IdentityMissing("No stored identity. Log in before starting the camera.")
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return Identity(roll=raw["roll"], name=raw["name"], email=raw["email"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise IdentityMissing(f"Stored identity is incomplete: {exc}") from exc

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

from __future__ import annotations

import itertools


class CaptureGuard:
    """Single-writer slot allowing one submission per session at a time.

    ``try_acquire`` never suspends, so on a single event loop the check and the
    claim cannot interleave with another coroutine. The returned token must be
    handed back to ``release``; a token from an older claim is ignored.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._token: int | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def owns(self, token: int) -> bool:
        return self._token is not None and self._token == token

    def try_acquire(self) -> int | None:
        if self._token is not None:
            return None
        self._token = next(self._counter)
        return self._token

    def release(self, token: int) -> bool:
        if not self.owns(token):
            return False
        self._token = None
        return True

# samvaad: Advisory per-path lock for callers that need to serialize access to the same file across concurrent tool invocations. Single holder per path; release is owner-checked.

import asyncio
from typing import Dict, Optional

from .errors import UnauthorizedLockReleaseError
from .fs import normalize_path, now_ts

POLL_INTERVAL_SEC = 0.1
DEFAULT_TIMEOUT_SEC = 5.0


class ResourceLock:
    def __init__(self) -> None:
        self._holders: Dict[str, str] = {}

    async def acquire(self, path: str, owner: str, timeout: float = DEFAULT_TIMEOUT_SEC) -> bool:
        """
        Wait until path is free (or already held by owner) and take it.

        Returns:
            True when acquired, False when timeout elapsed first.
        """
        key = normalize_path(path)
        deadline = now_ts() + timeout
        while True:
            holder = self._holders.get(key)
            if holder is None or holder == owner:
                self._holders[key] = owner
                return True
            if now_ts() >= deadline:
                return False
            await asyncio.sleep(POLL_INTERVAL_SEC)

    def release(self, path: str, owner: str) -> None:
        """
        Raises:
            UnauthorizedLockReleaseError: path is held by a different owner.
        """
        key = normalize_path(path)
        holder = self._holders.get(key)
        if holder is None:
            return
        if holder != owner:
            raise UnauthorizedLockReleaseError(f"Lock on {key} is held by {holder}, not {owner}")
        del self._holders[key]

    def is_locked(self, path: str) -> bool:
        return normalize_path(path) in self._holders

    def holder(self, path: str) -> Optional[str]:
        return self._holders.get(normalize_path(path))

    def clear(self) -> None:
        self._holders.clear()

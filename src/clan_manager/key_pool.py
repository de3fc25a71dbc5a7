"""
Active API key pool for one run.

Keys that the stats API rejects (403) or throttles (429) are banned for the
rest of the run. Bans go through an ``asyncio.Lock`` so concurrent requests
of a batch never race on the pool; key selection reads the current
immutable snapshot without locking.
"""

import asyncio
import random
from typing import Iterable, Optional

from .config import ApiKey
from .exceptions import KeyPoolExhaustedError


class KeyPool:
    """Shrinking pool of usable API keys."""

    def __init__(
        self,
        keys: Iterable[ApiKey],
        rng: Optional[random.Random] = None,
    ) -> None:
        self._active: tuple[ApiKey, ...] = tuple(keys)
        self._banned: dict[str, str] = {}
        self._lock = asyncio.Lock()
        self._rng = rng or random.Random()

    @property
    def active(self) -> tuple[ApiKey, ...]:
        """Current snapshot of usable keys."""
        return self._active

    @property
    def banned(self) -> dict[str, str]:
        """Banned key names mapped to the reason they were removed."""
        return dict(self._banned)

    def is_empty(self) -> bool:
        return not self._active

    def __len__(self) -> int:
        return len(self._active)

    def ensure_available(self) -> None:
        """
        Raises:
            KeyPoolExhaustedError: If no key is left
        """
        if not self._active:
            raise KeyPoolExhaustedError(
                code="key_pool_exhausted",
                message="All API keys have been banned for this run",
                details={"banned": sorted(self._banned)},
            )

    def choose(self) -> ApiKey:
        """Pick a random active key, raising KeyPoolExhaustedError if none is left."""
        snapshot = self._active
        if not snapshot:
            self.ensure_available()
        return self._rng.choice(snapshot)

    async def ban(self, key: ApiKey, reason: str) -> bool:
        """
        Remove ``key`` from the pool.

        Returns:
            True if the key was active, False if it had already been banned
        """
        async with self._lock:
            if key not in self._active:
                return False
            self._active = tuple(k for k in self._active if k != key)
            self._banned[key.name] = reason
            return True

"""Per-user duplicate submission detection over a sliding window."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

import orjson

from concord.moderation.text import content_fingerprint
from concord.providers.base import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_STORE_KEY = "content_filter_duplicate_cache"


@dataclass(frozen=True, slots=True)
class FingerprintEntry:
    user_id: str
    content_hash: str
    timestamp: float  # epoch seconds


class DuplicateTracker:
    """Remembers content fingerprints per user in the key-value store.

    Every submission is recorded, duplicate or not, so the window is
    measured from the most recent identical submission. Entries older than
    ``window`` are pruned on write and the history is capped at
    ``history_limit`` newest entries.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        window: float = 1800.0,
        history_limit: int = 500,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.window = window
        self.history_limit = history_limit
        self._clock = clock

    async def check_and_record(self, user_id: str, text: str) -> bool:
        """Return True if ``user_id`` submitted the same text within the window."""
        now = self._clock()
        fingerprint = content_fingerprint(text)
        history = await self._load()

        duplicate = any(
            entry.user_id == user_id
            and entry.content_hash == fingerprint
            and now - entry.timestamp < self.window
            for entry in history
        )

        history.append(FingerprintEntry(user_id=user_id, content_hash=fingerprint, timestamp=now))
        await self._save(history, now)
        return duplicate

    async def clear(self) -> None:
        try:
            await self.store.remove(HISTORY_STORE_KEY)
        except Exception as e:
            logger.warning("Failed to clear duplicate history: %s", e)

    async def _load(self) -> list[FingerprintEntry]:
        try:
            raw = await self.store.get(HISTORY_STORE_KEY)
        except Exception as e:
            logger.warning("Failed to read duplicate history, treating as empty: %s", e)
            return []
        if not raw:
            return []
        try:
            return [FingerprintEntry(**item) for item in orjson.loads(raw)]
        except (orjson.JSONDecodeError, TypeError) as e:
            logger.warning("Discarding unreadable duplicate history: %s", e)
            return []

    async def _save(self, history: list[FingerprintEntry], now: float) -> None:
        recent = [entry for entry in history if now - entry.timestamp < self.window]
        recent = recent[-self.history_limit :]
        try:
            await self.store.set(
                HISTORY_STORE_KEY, orjson.dumps([asdict(entry) for entry in recent]).decode()
            )
        except Exception as e:
            logger.warning("Failed to persist duplicate history: %s", e)

"""Sensitive term list: fetching, caching and matching.

The list is held in three tiers:
- in memory, trusted for ``cache_ttl`` seconds
- a persisted snapshot in the key-value store, reused while its version
  matches the remote version marker and it is younger than ``cache_ttl``
- the remote provider

When the remote fetch fails, a persisted snapshot of any age is used as
fallback. With nothing to fall back on, TermListUnavailableError is raised.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from functools import lru_cache

from pydantic import ValidationError

from concord.errors import TermListUnavailableError
from concord.moderation.models import MatchMethod, SensitiveTerm, TermListSnapshot, TermMatch
from concord.moderation.text import normalize_content
from concord.providers.base import KeyValueStore, RemoteDataProvider

logger = logging.getLogger(__name__)

TERM_LIST_RPC = "get_active_sensitive_words"
VERSION_TABLE = "app_settings"
VERSION_SETTING_KEY = "sensitive_words_cache_version"
SNAPSHOT_STORE_KEY = "sensitive_words_cache"
DEFAULT_VERSION = "0"


class TermListRepository:
    """Loads the active sensitive term list for one language."""

    def __init__(
        self,
        provider: RemoteDataProvider,
        store: KeyValueStore,
        *,
        cache_ttl: float = 300.0,
        language: str = "ja",
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.store = store
        self.cache_ttl = cache_ttl
        self.language = language
        self._clock = clock
        self._memory: TermListSnapshot | None = None

    async def get_terms(self) -> list[SensitiveTerm]:
        now = self._clock()
        if self._memory is not None and now - self._memory.fetched_at < self.cache_ttl:
            return self._memory.terms

        try:
            version = await self._fetch_version()
            persisted = await self._load_snapshot()
            if (
                persisted is not None
                and persisted.version == version
                and now - persisted.fetched_at < self.cache_ttl
            ):
                self._memory = persisted
                return persisted.terms

            terms = await self._fetch_terms()
        except Exception as e:
            logger.warning("Failed to refresh sensitive term list: %s", e)
            fallback = await self._load_snapshot()
            if fallback is not None:
                logger.info("Using persisted term list version %s as fallback", fallback.version)
                return fallback.terms
            raise TermListUnavailableError("sensitive term list is unavailable") from e

        snapshot = TermListSnapshot(terms=terms, version=version, fetched_at=now)
        self._memory = snapshot
        await self._save_snapshot(snapshot)
        logger.debug("Loaded %d sensitive terms (version %s)", len(terms), version)
        return terms

    def invalidate(self) -> None:
        """Forget the in-memory copy; the persisted snapshot is kept."""
        self._memory = None

    async def clear_cache(self) -> None:
        """Drop both the in-memory copy and the persisted snapshot."""
        self._memory = None
        try:
            await self.store.remove(SNAPSHOT_STORE_KEY)
        except Exception as e:
            logger.warning("Failed to remove term list snapshot: %s", e)

    async def _fetch_version(self) -> str:
        row = await self.provider.select_one(VERSION_TABLE, {"key": VERSION_SETTING_KEY})
        if not row or row.get("value") is None:
            return DEFAULT_VERSION
        return str(row["value"])

    async def _fetch_terms(self) -> list[SensitiveTerm]:
        rows = await self.provider.rpc(
            TERM_LIST_RPC, {"language_param": self.language, "include_variations": True}
        )
        return [SensitiveTerm.model_validate(row) for row in rows or []]

    async def _load_snapshot(self) -> TermListSnapshot | None:
        try:
            raw = await self.store.get(SNAPSHOT_STORE_KEY)
            if raw is None:
                return None
            return TermListSnapshot.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable term list snapshot: %s", e)
        except Exception as e:
            logger.warning("Failed to read term list snapshot: %s", e)
        return None

    async def _save_snapshot(self, snapshot: TermListSnapshot) -> None:
        try:
            await self.store.set(SNAPSHOT_STORE_KEY, snapshot.model_dump_json())
        except Exception as e:
            logger.warning("Failed to persist term list snapshot: %s", e)


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("Ignoring invalid term pattern %r: %s", pattern, e)
        return None


def match_terms(text: str, terms: Sequence[SensitiveTerm]) -> list[TermMatch]:
    """Return one match per term found in ``text``.

    Terms and variations are compared against the normalized text; the
    optional regex pattern runs against the raw text.
    """
    normalized = normalize_content(text)
    matches: list[TermMatch] = []

    for term in terms:
        method = _match_method(text, normalized, term)
        if method is not None:
            matches.append(
                TermMatch(
                    term_id=term.id,
                    word=term.word,
                    severity=term.severity,
                    category=term.category,
                    auto_action=term.auto_action,
                    method=method,
                )
            )
    return matches


def _match_method(text: str, normalized: str, term: SensitiveTerm) -> MatchMethod | None:
    word = normalize_content(term.word)
    if word and word in normalized:
        return MatchMethod.EXACT

    for variation in term.variations:
        folded = normalize_content(variation)
        if folded and folded in normalized:
            return MatchMethod.VARIATION

    if term.regex_pattern:
        pattern = _compile(term.regex_pattern)
        if pattern is not None and pattern.search(text):
            return MatchMethod.PATTERN
    return None

"""Tests for the sensitive term repository and matcher."""

import pytest
from fakes import make_provider

from concord.errors import ProviderError, TermListUnavailableError
from concord.moderation import (
    MatchMethod,
    ModerationStatus,
    SensitiveTerm,
    TermListRepository,
    TermListSnapshot,
    match_terms,
)
from concord.moderation.terms import SNAPSHOT_STORE_KEY

TERMS = [
    {"id": 1, "word": "spam", "severity": 1, "auto_action": "pending", "variations": ["sp4m"]},
    {"id": 2, "word": "scam", "severity": 3, "auto_action": "rejected"},
    {
        "id": 3,
        "word": "casino",
        "severity": 2,
        "auto_action": "pending",
        "regex_pattern": r"c[a@]s[i1]n[o0]",
    },
]


def rpc_calls(provider, name: str) -> int:
    return sum(1 for call in provider.rpc.call_args_list if call.args[0] == name)


class TestSensitiveTerm:
    """Test term parsing."""

    def test_coerces_id_and_variations(self) -> None:
        term = SensitiveTerm.model_validate({"id": 7, "word": "x", "variations": None})

        assert term.id == "7"
        assert term.variations == []
        assert term.auto_action is ModerationStatus.PENDING

    def test_ignores_unknown_fields(self) -> None:
        term = SensitiveTerm.model_validate({"id": "1", "word": "x", "is_active": True})
        assert term.word == "x"


class TestMatchTerms:
    """Test the three match strategies."""

    @pytest.fixture
    def terms(self) -> list[SensitiveTerm]:
        return [SensitiveTerm.model_validate(row) for row in TERMS]

    def test_exact_match(self, terms: list[SensitiveTerm]) -> None:
        matches = match_terms("This is SPAM", terms)

        assert [(m.word, m.method) for m in matches] == [("spam", MatchMethod.EXACT)]

    def test_exact_match_ignores_whitespace_and_width(self, terms: list[SensitiveTerm]) -> None:
        assert match_terms("s p a m", terms)[0].word == "spam"
        assert match_terms("ｓｃａｍ alert", terms)[0].word == "scam"

    def test_variation_match(self, terms: list[SensitiveTerm]) -> None:
        matches = match_terms("buy SP4M now", terms)
        assert matches[0].method is MatchMethod.VARIATION

    def test_pattern_match(self, terms: list[SensitiveTerm]) -> None:
        matches = match_terms("Visit our C@S1N0", terms)

        assert [(m.word, m.method) for m in matches] == [("casino", MatchMethod.PATTERN)]

    def test_matches_keep_term_order(self, terms: list[SensitiveTerm]) -> None:
        matches = match_terms("casino scam spam", terms)
        assert [m.word for m in matches] == ["spam", "scam", "casino"]

    def test_invalid_pattern_is_skipped(self) -> None:
        term = SensitiveTerm(id="9", word="zzz", regex_pattern="([unclosed")
        assert match_terms("([unclosed", [term]) == []

    def test_clean_text(self, terms: list[SensitiveTerm]) -> None:
        assert match_terms("A lovely day in the park", terms) == []


class TestTermListRepository:
    """Test caching tiers and fallback."""

    async def test_memory_cache_avoids_refetch(self, store, clock) -> None:
        provider = make_provider(TERMS)
        repository = TermListRepository(provider, store, cache_ttl=300, clock=clock)

        first = await repository.get_terms()
        second = await repository.get_terms()

        assert [t.word for t in first] == ["spam", "scam", "casino"]
        assert second == first
        assert rpc_calls(provider, "get_active_sensitive_words") == 1
        provider.rpc.assert_any_call(
            "get_active_sensitive_words", {"language_param": "ja", "include_variations": True}
        )

    async def test_persisted_snapshot_reused_when_version_matches(self, store, clock) -> None:
        provider = make_provider(TERMS, version="5")
        await TermListRepository(provider, store, clock=clock).get_terms()

        restarted = TermListRepository(provider, store, clock=clock)
        terms = await restarted.get_terms()

        assert len(terms) == 3
        assert rpc_calls(provider, "get_active_sensitive_words") == 1

    async def test_version_change_forces_refetch(self, store, clock) -> None:
        provider = make_provider(TERMS, version="5")
        await TermListRepository(provider, store, clock=clock).get_terms()

        provider.select_one.return_value = {"value": "6"}
        await TermListRepository(provider, store, clock=clock).get_terms()

        assert rpc_calls(provider, "get_active_sensitive_words") == 2
        snapshot = TermListSnapshot.model_validate_json(await store.get(SNAPSHOT_STORE_KEY))
        assert snapshot.version == "6"

    async def test_expired_memory_refetches(self, store, clock) -> None:
        provider = make_provider(TERMS)
        repository = TermListRepository(provider, store, cache_ttl=300, clock=clock)
        await repository.get_terms()

        clock.advance(301)
        await repository.get_terms()

        assert rpc_calls(provider, "get_active_sensitive_words") == 2

    async def test_missing_version_marker_defaults(self, store, clock) -> None:
        provider = make_provider(TERMS)
        provider.select_one.return_value = None
        await TermListRepository(provider, store, clock=clock).get_terms()

        snapshot = TermListSnapshot.model_validate_json(await store.get(SNAPSHOT_STORE_KEY))
        assert snapshot.version == "0"

    async def test_fetch_failure_falls_back_to_any_snapshot(self, store, clock) -> None:
        """A stale snapshot of another version is better than nothing."""
        provider = make_provider(TERMS, version="1")
        await TermListRepository(provider, store, clock=clock).get_terms()

        clock.advance(10_000)
        provider.select_one.side_effect = ProviderError("down", transient=True)
        terms = await TermListRepository(provider, store, clock=clock).get_terms()

        assert [t.word for t in terms] == ["spam", "scam", "casino"]

    @pytest.mark.parametrize(
        "error",
        [ConnectionError("refused"), ValueError("bad json"), KeyError("value")],
        ids=["connection", "decode", "malformed-row"],
    )
    async def test_any_refresh_failure_falls_back(self, store, clock, error: Exception) -> None:
        provider = make_provider(TERMS, version="1")
        await TermListRepository(provider, store, clock=clock).get_terms()

        clock.advance(10_000)
        provider.select_one.side_effect = error
        terms = await TermListRepository(provider, store, clock=clock).get_terms()

        assert [t.word for t in terms] == ["spam", "scam", "casino"]

    async def test_malformed_term_rows_fall_back(self, store, clock) -> None:
        provider = make_provider(TERMS, version="1")
        await TermListRepository(provider, store, clock=clock).get_terms()

        clock.advance(10_000)
        provider.select_one.return_value = {"value": "2"}
        provider.rpc.side_effect = None
        provider.rpc.return_value = [["not", "a", "mapping"]]
        terms = await TermListRepository(provider, store, clock=clock).get_terms()

        assert len(terms) == 3

    async def test_failure_without_snapshot_raises(self, store, clock) -> None:
        provider = make_provider(TERMS)
        provider.rpc.side_effect = ProviderError("denied", status_code=401)

        with pytest.raises(TermListUnavailableError) as exc_info:
            await TermListRepository(provider, store, clock=clock).get_terms()

        assert isinstance(exc_info.value.__cause__, ProviderError)

    async def test_unreadable_snapshot_is_ignored(self, store, clock) -> None:
        await store.set(SNAPSHOT_STORE_KEY, "{not json")
        provider = make_provider(TERMS)

        terms = await TermListRepository(provider, store, clock=clock).get_terms()

        assert len(terms) == 3

    async def test_clear_cache_drops_both_tiers(self, store, clock) -> None:
        provider = make_provider(TERMS)
        repository = TermListRepository(provider, store, clock=clock)
        await repository.get_terms()

        await repository.clear_cache()
        assert SNAPSHOT_STORE_KEY not in store

        await repository.get_terms()
        assert rpc_calls(provider, "get_active_sensitive_words") == 2

    async def test_invalidate_keeps_persisted_snapshot(self, store, clock) -> None:
        provider = make_provider(TERMS)
        repository = TermListRepository(provider, store, clock=clock)
        await repository.get_terms()

        repository.invalidate()
        await repository.get_terms()

        assert SNAPSHOT_STORE_KEY in store
        assert rpc_calls(provider, "get_active_sensitive_words") == 1

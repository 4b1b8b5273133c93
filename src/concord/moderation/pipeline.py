"""Content moderation pipeline.

Stages run in order and stop at the first verdict:

1. empty content               -> rejected / manual_review
2. sensitive terms             -> rejected (severity >= reject_severity)
                                  or the term's auto_action / sensitive_words
3. more than max_urls links    -> pending / excessive_urls
4. same text by same user      -> pending / duplicate_content
   within the duplicate window
5. otherwise                   -> approved / none

An evaluation that cannot complete is retried on transient failures and
otherwise ends as rejected / manual_review.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from concord.errors import TermListUnavailableError
from concord.moderation.duplicates import DuplicateTracker
from concord.moderation.models import (
    ContentType,
    ModerationReason,
    ModerationStatus,
    ModerationVerdict,
    TermMatch,
)
from concord.moderation.terms import TermListRepository, match_terms
from concord.moderation.text import count_urls
from concord.observability.logging import LogContext
from concord.observability.metrics import MetricsRegistry, disabled_metrics
from concord.retry import RetryPolicy, is_transient_error, with_retry

if TYPE_CHECKING:
    from concord.config import Settings
    from concord.providers.base import KeyValueStore, RemoteDataProvider

logger = logging.getLogger(__name__)

MATCH_LOG_RPC = "log_sensitive_word_match"
CONTEXT_TEXT_LIMIT = 200


def _should_retry(error: BaseException) -> bool:
    if isinstance(error, TermListUnavailableError):
        cause = error.__cause__
        return cause is None or is_transient_error(cause)
    return is_transient_error(error)


class ContentFilterPipeline:
    """Evaluates user submissions and produces a ModerationVerdict."""

    def __init__(
        self,
        terms: TermListRepository,
        duplicates: DuplicateTracker,
        provider: RemoteDataProvider | None = None,
        *,
        reject_severity: int = 3,
        max_urls: int = 2,
        retry_attempts: int = 2,
        retry_base_delay: float = 1.0,
        metrics: MetricsRegistry | None = None,
    ):
        self.terms = terms
        self.duplicates = duplicates
        self.provider = provider
        self.reject_severity = reject_severity
        self.max_urls = max_urls
        self.retry_policy = RetryPolicy(
            max_retries=retry_attempts,
            initial_delay=retry_base_delay,
            max_delay=retry_base_delay * max(retry_attempts, 1),
            linear=True,
        )
        self._metrics = metrics or disabled_metrics()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: RemoteDataProvider,
        store: KeyValueStore,
        metrics: MetricsRegistry | None = None,
    ) -> ContentFilterPipeline:
        terms = TermListRepository(
            provider,
            store,
            cache_ttl=settings.moderation_term_cache_ttl,
            language=settings.moderation_language,
        )
        duplicates = DuplicateTracker(
            store,
            window=settings.moderation_duplicate_window,
            history_limit=settings.moderation_history_limit,
        )
        return cls(
            terms,
            duplicates,
            provider,
            reject_severity=settings.moderation_reject_severity,
            max_urls=settings.moderation_max_urls,
            retry_attempts=settings.moderation_retry_attempts,
            retry_base_delay=settings.moderation_retry_base_delay,
            metrics=metrics,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def evaluate(
        self, content: str, user_id: str, title: str | None = None
    ) -> ModerationVerdict:
        verdict, _ = await self._evaluate(content, user_id, title)
        return verdict

    async def evaluate_and_log(
        self,
        content: str,
        user_id: str,
        content_type: ContentType,
        content_id: str | None,
        title: str | None = None,
    ) -> ModerationVerdict:
        """Evaluate, then record sensitive-term matches remotely.

        Recording happens after the verdict is final and never changes it.
        """
        verdict, matches = await self._evaluate(content, user_id, title)
        if matches and content_id and verdict.reason is ModerationReason.SENSITIVE_WORDS:
            text = _combined_text(content, title)
            await self._log_matches(matches, verdict, text, user_id, content_type, content_id)
        return verdict

    async def clear_duplicate_history(self) -> None:
        await self.duplicates.clear()

    async def clear_term_cache(self) -> None:
        await self.terms.clear_cache()

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def _evaluate(
        self, content: str, user_id: str, title: str | None
    ) -> tuple[ModerationVerdict, list[TermMatch]]:
        with LogContext(user_id=user_id):
            try:
                verdict, matches = await with_retry(
                    lambda: self._run_stages(content, user_id, title),
                    self.retry_policy,
                    _should_retry,
                )
            except Exception:
                logger.exception("Content evaluation failed, sending to manual review")
                verdict = ModerationVerdict.build(
                    ModerationStatus.REJECTED, ModerationReason.MANUAL_REVIEW
                )
                matches = []

            self._metrics.record_verdict(verdict.status.value, verdict.reason.value)
            logger.debug("Verdict %s/%s", verdict.status.value, verdict.reason.value)
            return verdict, matches

    async def _run_stages(
        self, content: str, user_id: str, title: str | None
    ) -> tuple[ModerationVerdict, list[TermMatch]]:
        if not content.strip():
            verdict = ModerationVerdict.build(
                ModerationStatus.REJECTED, ModerationReason.MANUAL_REVIEW, details="Content is empty"
            )
            return verdict, []

        text = _combined_text(content, title)

        terms = await self.terms.get_terms()
        matches = match_terms(text, terms)
        if matches:
            return self._term_verdict(matches), matches

        if count_urls(text) > self.max_urls:
            verdict = ModerationVerdict.build(
                ModerationStatus.PENDING, ModerationReason.EXCESSIVE_URLS
            )
            return verdict, []

        if await self.duplicates.check_and_record(user_id, text):
            verdict = ModerationVerdict.build(
                ModerationStatus.PENDING, ModerationReason.DUPLICATE_CONTENT
            )
            return verdict, []

        return ModerationVerdict.build(ModerationStatus.APPROVED, ModerationReason.NONE), []

    def _term_verdict(self, matches: list[TermMatch]) -> ModerationVerdict:
        words = tuple(match.word for match in matches)
        critical = max(matches, key=lambda match: match.severity)
        if critical.severity >= self.reject_severity:
            status = ModerationStatus.REJECTED
        else:
            status = critical.auto_action
        return ModerationVerdict.build(status, ModerationReason.SENSITIVE_WORDS, words)

    async def _log_matches(
        self,
        matches: list[TermMatch],
        verdict: ModerationVerdict,
        text: str,
        user_id: str,
        content_type: ContentType,
        content_id: str,
    ) -> None:
        if self.provider is None:
            return
        context = text[:CONTEXT_TEXT_LIMIT]
        for match in matches:
            try:
                await self.provider.rpc(
                    MATCH_LOG_RPC,
                    {
                        "word_id_param": match.term_id,
                        "content_type_param": content_type.value,
                        "content_id_param": content_id,
                        "user_id_param": user_id,
                        "matched_text_param": match.word,
                        "matched_word_param": match.word,
                        "context_text_param": context,
                        "action_taken_param": verdict.status.value,
                        "match_method_param": match.method.value,
                    },
                )
            except Exception as e:
                # the verdict is already final
                logger.warning("Failed to record term match %s: %s", match.term_id, e)


def _combined_text(content: str, title: str | None) -> str:
    return f"{title} {content}" if title else content

"""Content moderation: term matching, link and duplicate checks."""

from concord.moderation.duplicates import DuplicateTracker, FingerprintEntry
from concord.moderation.models import (
    ContentType,
    MatchMethod,
    ModerationReason,
    ModerationStatus,
    ModerationVerdict,
    SensitiveTerm,
    TermListSnapshot,
    TermMatch,
    moderation_message,
)
from concord.moderation.pipeline import ContentFilterPipeline
from concord.moderation.terms import TermListRepository, match_terms
from concord.moderation.text import content_fingerprint, count_urls, normalize_content

__all__ = [
    "ContentFilterPipeline",
    "ContentType",
    "DuplicateTracker",
    "FingerprintEntry",
    "MatchMethod",
    "ModerationReason",
    "ModerationStatus",
    "ModerationVerdict",
    "SensitiveTerm",
    "TermListRepository",
    "TermListSnapshot",
    "TermMatch",
    "content_fingerprint",
    "count_urls",
    "match_terms",
    "moderation_message",
    "normalize_content",
]

"""Moderation data model: statuses, reasons, term list and verdicts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ModerationStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"


class ModerationReason(str, Enum):
    SENSITIVE_WORDS = "sensitive_words"
    EXCESSIVE_URLS = "excessive_urls"
    DUPLICATE_CONTENT = "duplicate_content"
    MANUAL_REVIEW = "manual_review"
    NONE = "none"


class ContentType(str, Enum):
    """Kinds of user-generated content that pass through the filter."""

    TOPIC = "topic"
    COMMENT = "comment"
    CHAT_MESSAGE = "chat_message"
    MESSAGE = "message"
    USER_PROFILE = "user_profile"


class MatchMethod(str, Enum):
    EXACT = "exact"
    VARIATION = "variation"
    PATTERN = "pattern"


class SensitiveTerm(BaseModel):
    """One entry of the remote sensitive term list."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    word: str
    category: str = "general"
    severity: int = 1
    variations: list[str] = Field(default_factory=list)
    regex_pattern: str | None = None
    auto_action: ModerationStatus = ModerationStatus.PENDING

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)

    @field_validator("variations", mode="before")
    @classmethod
    def _variations_list(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item]


class TermListSnapshot(BaseModel):
    """Term list as persisted in the key-value store."""

    terms: list[SensitiveTerm]
    version: str
    fetched_at: float  # epoch seconds


@dataclass(frozen=True, slots=True)
class TermMatch:
    term_id: str
    word: str
    severity: int
    category: str
    auto_action: ModerationStatus
    method: MatchMethod


_MESSAGES: dict[tuple[ModerationStatus, ModerationReason], tuple[str, str]] = {
    (ModerationStatus.REJECTED, ModerationReason.MANUAL_REVIEW): (
        "Content was not approved",
        "Content could not be verified; please review and try again",
    ),
    (ModerationStatus.REJECTED, ModerationReason.SENSITIVE_WORDS): (
        "Content was not approved",
        "Content contains inappropriate expressions",
    ),
    (ModerationStatus.PENDING, ModerationReason.SENSITIVE_WORDS): (
        "Content is awaiting review",
        "Content may contain inappropriate expressions",
    ),
    (ModerationStatus.PENDING, ModerationReason.EXCESSIVE_URLS): (
        "Content is awaiting review",
        "Content may contain too many links",
    ),
    (ModerationStatus.PENDING, ModerationReason.DUPLICATE_CONTENT): (
        "Content is awaiting review",
        "The same content was posted recently",
    ),
    (ModerationStatus.APPROVED, ModerationReason.NONE): ("Content was approved", ""),
}


@dataclass(frozen=True, slots=True)
class ModerationVerdict:
    """Outcome of one evaluation. Never mutated, only superseded."""

    status: ModerationStatus
    reason: ModerationReason
    matched_terms: tuple[str, ...] = ()
    message: str = ""
    details: str = ""

    @classmethod
    def build(
        cls,
        status: ModerationStatus,
        reason: ModerationReason,
        matched_terms: tuple[str, ...] = (),
        details: str | None = None,
    ) -> ModerationVerdict:
        message, default_details = _MESSAGES.get((status, reason), (status.value, ""))
        return cls(
            status=status,
            reason=reason,
            matched_terms=matched_terms,
            message=message,
            details=default_details if details is None else details,
        )

    @property
    def approved(self) -> bool:
        return self.status is ModerationStatus.APPROVED


def moderation_message(status: ModerationStatus, reason: ModerationReason) -> str:
    """User-facing text for a verdict."""
    if status is ModerationStatus.PENDING:
        if reason is ModerationReason.SENSITIVE_WORDS:
            return "Under review because it may contain inappropriate expressions."
        if reason is ModerationReason.EXCESSIVE_URLS:
            return "Under review because it contains too many links."
        if reason is ModerationReason.DUPLICATE_CONTENT:
            return "Under review because it may duplicate a recent post."
        return "Your content is being reviewed. Please wait a moment."
    if status is ModerationStatus.REJECTED:
        return "Your content was not approved. Please revise it."
    return "Your content was approved."

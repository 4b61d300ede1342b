"""Data models for the memory system."""

from dataclasses import dataclass
from enum import Enum


class FactCategory(str, Enum):
    """Categories a fact about the user can belong to."""

    PERSONAL = "personal"
    TECHNICAL = "technical"
    PREFERENCES = "preferences"
    PROJECT = "project"
    DECISIONS = "decisions"
    SUMMARY = "summary"


class ContextLevel(str, Enum):
    """Breadth of the context block assembled for a prompt."""

    MINIMAL = "minimal"
    STANDARD = "standard"
    FULL = "full"


@dataclass(frozen=True)
class Fact:
    """A fact stored in memory about a user.

    Attributes:
        id: Database ID (uuid hex).
        user_id: Owner of the fact, as given by the identity provider.
        key: Stable identifier for the fact's subject, unique per user.
        value: The fact content.
        category: One of the FactCategory values.
        confidence: Producer-assigned estimate of correctness, 0-100.
        source_conversation_id: Conversation the fact was derived from.
        last_mentioned: ISO timestamp of the last time the fact was relevant.
        created_at: ISO timestamp when created.
        updated_at: ISO timestamp when last updated.
    """

    id: str
    user_id: str
    key: str
    value: str
    category: str
    confidence: int = 100
    source_conversation_id: str | None = None
    last_mentioned: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class ExtractedFact:
    """A fact as proposed by the LLM, before validation and persistence."""

    key: str
    value: str
    category: str
    confidence: int

"""Memory module: per-user facts shared across conversations."""

from .cache import ContextCache
from .extractor import (
    FactExtractor,
    generate_key,
    has_important_information,
    is_valid_fact,
    should_extract_facts,
    validate_facts,
)
from .manager import (
    ConversationNotFoundError,
    ExtractionError,
    ExtractionResult,
    MemoryManager,
    PlanFeatureUnavailableError,
)
from .models import ContextLevel, ExtractedFact, Fact, FactCategory
from .plans import PLAN_LIMITS, Plan, PlanLimits, limits_for
from .store import UserContextStore

__all__ = [
    "ContextCache",
    "ContextLevel",
    "ConversationNotFoundError",
    "ExtractedFact",
    "ExtractionError",
    "ExtractionResult",
    "Fact",
    "FactCategory",
    "FactExtractor",
    "MemoryManager",
    "PLAN_LIMITS",
    "Plan",
    "PlanFeatureUnavailableError",
    "PlanLimits",
    "UserContextStore",
    "generate_key",
    "has_important_information",
    "is_valid_fact",
    "limits_for",
    "should_extract_facts",
    "validate_facts",
]

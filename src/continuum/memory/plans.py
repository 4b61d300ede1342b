"""Memory limits per subscription plan.

Plans are ordered Free < Basic < Professional < Enterprise and every
numeric ceiling is non-decreasing along that order. Unknown or missing
plans fall back to Free, the most restrictive tier.
"""

import math
from dataclasses import dataclass
from enum import Enum

from .models import ContextLevel

TRUNCATION_MARKER = "\n\n[Contexto truncado por límites del plan]"

# Rough estimate used for token budgets: 4 characters per token.
CHARS_PER_TOKEN = 4


class Plan(str, Enum):
    """Subscription tiers."""

    FREE = "Free"
    BASIC = "Basic"
    PROFESSIONAL = "Professional"
    ENTERPRISE = "Enterprise"


@dataclass(frozen=True)
class PlanLimits:
    """Memory ceilings and feature flags for a plan.

    Attributes:
        max_context_items: Maximum facts stored per user.
        max_context_tokens: Token budget of the context injected per request.
        extraction_interval: Extract facts every N messages.
        auto_extraction: Whether automatic extraction is available.
        smart_retrieval: Declared for premium tiers, no differentiated
            retrieval is implemented for it.
        default_context_level: Level used when there is no message to size.
        context_retention_days: Days a fact may go unmentioned before it
            is considered stale.
        auto_compression: Declared for premium tiers.
    """

    max_context_items: int
    max_context_tokens: int
    extraction_interval: int
    auto_extraction: bool
    smart_retrieval: bool
    default_context_level: ContextLevel
    context_retention_days: int
    auto_compression: bool


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(
        max_context_items=10,
        max_context_tokens=150,
        extraction_interval=10,
        auto_extraction=False,
        smart_retrieval=False,
        default_context_level=ContextLevel.MINIMAL,
        context_retention_days=30,
        auto_compression=False,
    ),
    Plan.BASIC: PlanLimits(
        max_context_items=30,
        max_context_tokens=300,
        extraction_interval=7,
        auto_extraction=True,
        smart_retrieval=False,
        default_context_level=ContextLevel.STANDARD,
        context_retention_days=60,
        auto_compression=False,
    ),
    Plan.PROFESSIONAL: PlanLimits(
        max_context_items=100,
        max_context_tokens=500,
        extraction_interval=5,
        auto_extraction=True,
        smart_retrieval=True,
        default_context_level=ContextLevel.STANDARD,
        context_retention_days=90,
        auto_compression=True,
    ),
    Plan.ENTERPRISE: PlanLimits(
        max_context_items=500,
        max_context_tokens=1000,
        extraction_interval=3,
        auto_extraction=True,
        smart_retrieval=True,
        default_context_level=ContextLevel.FULL,
        context_retention_days=365,
        auto_compression=True,
    ),
}


def resolve_plan(plan: str | None) -> Plan:
    """Normalize a plan name, falling back to Free."""
    if not plan:
        return Plan.FREE
    try:
        return Plan(plan)
    except ValueError:
        return Plan.FREE


def limits_for(plan: str | None) -> PlanLimits:
    """Get the memory limits for a plan.

    Args:
        plan: Plan name (e.g. 'Basic'). None or unknown names map to Free.

    Returns:
        The PlanLimits for the plan.
    """
    return PLAN_LIMITS[resolve_plan(plan)]


def can_add_more_context(current_count: int, plan: str | None) -> bool:
    """Check whether the user may store another fact."""
    return current_count < limits_for(plan).max_context_items


def items_to_remove(current_count: int, plan: str | None) -> int:
    """Number of facts to delete to get back under the plan ceiling."""
    return max(0, current_count - limits_for(plan).max_context_items)


def should_extract_now(message_count: int, plan: str | None) -> bool:
    """Check whether automatic extraction is due after message_count messages."""
    limits = limits_for(plan)
    if not limits.auto_extraction:
        return False
    return message_count > 0 and message_count % limits.extraction_interval == 0


def estimate_tokens(text: str) -> int:
    """Estimate the token count of text."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_limit(text: str, plan: str | None) -> str:
    """Truncate a context block to the plan's token budget.

    Args:
        text: The rendered context block.
        plan: Plan name used to look up the budget.

    Returns:
        The text unchanged if it fits, otherwise its first
        max_context_tokens * 4 characters followed by a truncation marker.
    """
    limits = limits_for(plan)
    if estimate_tokens(text) <= limits.max_context_tokens:
        return text

    max_chars = limits.max_context_tokens * CHARS_PER_TOKEN
    return text[:max_chars] + TRUNCATION_MARKER

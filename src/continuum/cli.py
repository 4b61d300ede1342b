"""CLI commands for memory administration.

Provides subcommands for inspecting, searching, pruning and extracting
user facts.
"""

import argparse
import asyncio
import os
import sys

from .config import MemoryConfig, config_from_env, load_config
from .conversations import ConversationStore, StaticPlanResolver
from .logging import configure_logger
from .memory import (
    PLAN_LIMITS,
    ContextCache,
    ContextLevel,
    ExtractionError,
    FactCategory,
    FactExtractor,
    MemoryManager,
    UserContextStore,
)


def _load() -> MemoryConfig:
    """Load config from disk and environment."""
    return config_from_env(load_config())


def _build_manager(config: MemoryConfig, with_extractor: bool = False) -> MemoryManager:
    """Wire a MemoryManager from config."""
    assert config.db_path is not None
    store = UserContextStore(config.db_path)
    store.init_db()
    conversations = ConversationStore(config.db_path)
    conversations.init_db()

    extractor = None
    if with_extractor:
        from groq import AsyncGroq

        from .llm_client import GroqLLMClient

        groq_client = AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        extractor = FactExtractor(GroqLLMClient(groq_client, model=config.model))

    return MemoryManager(
        store,
        ContextCache(config.cache_max_size, config.cache_ttl_seconds),
        extractor=extractor,
        conversations=conversations,
        event_log=configure_logger(config.log_dir),
    )


def _resolve_plan(config: MemoryConfig, args: argparse.Namespace) -> str:
    if getattr(args, "plan", None):
        return args.plan
    return StaticPlanResolver(config.user_plans).get_plan_name(args.user)


def cmd_list(args: argparse.Namespace) -> int:
    """List a user's facts."""
    manager = _build_manager(_load())
    if args.category:
        facts = manager.store.list_by_category(args.user, args.category)
    else:
        facts = manager.store.list_by_user(args.user)

    if not facts:
        print(f"No facts stored for user '{args.user}'.")
        return 0

    print(f"\n{'ID':<34} {'Category':<12} {'Conf':>4}  Value")
    print("-" * 80)

    for fact in facts:
        value = fact.value
        if len(value) > 40:
            value = value[:37] + "..."
        print(f"{fact.id:<34} {fact.category:<12} {fact.confidence:>4}  {value}")

    print(f"\nTotal: {len(facts)} fact(s)")
    return 0


def cmd_search(args: argparse.Namespace) -> int:
    """Search a user's facts by keywords."""
    manager = _build_manager(_load())
    facts = manager.store.search_by_keywords(args.user, args.keywords, args.limit)

    if not facts:
        print("No matching facts.")
        return 0

    for fact in facts:
        print(f"[{fact.category}] {fact.value}")
    return 0


def cmd_context(args: argparse.Namespace) -> int:
    """Print the context block a prompt would receive."""
    config = _load()
    manager = _build_manager(config)
    level = ContextLevel(args.level) if args.level else None

    context = manager.get_context_for_prompt(
        args.user,
        _resolve_plan(config, args),
        current_message=args.message,
        force_level=level,
    )

    if not context:
        print(f"No context available for user '{args.user}'.")
        return 0

    print(context)
    return 0


def cmd_forget(args: argparse.Namespace) -> int:
    """Delete one fact."""
    manager = _build_manager(_load())

    if not manager.delete_fact(args.user, args.fact_id):
        print(f"Error: Fact '{args.fact_id}' not found for user '{args.user}'.")
        return 1

    print(f"Deleted fact: {args.fact_id}")
    return 0


def cmd_prune(args: argparse.Namespace) -> int:
    """Prune a user's facts down to their plan ceiling."""
    config = _load()
    manager = _build_manager(config)
    plan = _resolve_plan(config, args)

    deleted = manager.enforce_context_limits(args.user, plan)
    if deleted == 0:
        print(f"User '{args.user}' is within the {plan} limit.")
    else:
        print(f"Pruned {deleted} fact(s) for user '{args.user}'.")
    return 0


def cmd_plans(args: argparse.Namespace) -> int:
    """Show the limits of every plan."""
    print(f"\n{'Plan':<14} {'Facts':>6} {'Tokens':>7} {'Every':>6} {'Auto':>5}  Level")
    print("-" * 56)

    for plan, limits in PLAN_LIMITS.items():
        auto = "yes" if limits.auto_extraction else "no"
        print(
            f"{plan.value:<14} {limits.max_context_items:>6} "
            f"{limits.max_context_tokens:>7} {limits.extraction_interval:>6} "
            f"{auto:>5}  {limits.default_context_level.value}"
        )
    return 0


def cmd_extract(args: argparse.Namespace) -> int:
    """Extract facts from a stored conversation."""
    config = _load()
    manager = _build_manager(config, with_extractor=True)

    try:
        result = asyncio.run(
            manager.extract_and_save(
                args.user,
                args.conversation_id,
                _resolve_plan(config, args),
                force=args.force,
            )
        )
    except ExtractionError as e:
        print(f"Error: {e}")
        return 1

    print(result.message)
    for fact in result.facts:
        print(f"  [{fact.category}] {fact.value}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the memory CLI."""
    parser = argparse.ArgumentParser(
        prog="continuum memory",
        description="Manage shared user memory",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    # list command
    list_parser = subparsers.add_parser("list", help="List a user's facts")
    list_parser.add_argument("user", help="User id")
    list_parser.add_argument(
        "-c", "--category",
        choices=[c.value for c in FactCategory],
        help="Only show facts in this category",
    )

    # search command
    search_parser = subparsers.add_parser("search", help="Search facts by keyword")
    search_parser.add_argument("user", help="User id")
    search_parser.add_argument("keywords", nargs="+", help="Keywords to look for")
    search_parser.add_argument("-n", "--limit", type=int, default=10, help="Maximum results")

    # context command
    context_parser = subparsers.add_parser("context", help="Show the prompt context block")
    context_parser.add_argument("user", help="User id")
    context_parser.add_argument("-p", "--plan", help="Plan to apply (default: configured)")
    context_parser.add_argument("-m", "--message", help="Message being answered")
    context_parser.add_argument(
        "-l", "--level",
        choices=[level.value for level in ContextLevel],
        help="Force a context level",
    )

    # forget command
    forget_parser = subparsers.add_parser("forget", help="Delete a fact")
    forget_parser.add_argument("user", help="User id")
    forget_parser.add_argument("fact_id", help="Id of the fact to delete")

    # prune command
    prune_parser = subparsers.add_parser("prune", help="Enforce the plan's fact limit")
    prune_parser.add_argument("user", help="User id")
    prune_parser.add_argument("-p", "--plan", help="Plan to apply (default: configured)")

    # plans command
    subparsers.add_parser("plans", help="Show memory limits per plan")

    # extract command
    extract_parser = subparsers.add_parser("extract", help="Extract facts from a conversation")
    extract_parser.add_argument("user", help="User id")
    extract_parser.add_argument("conversation_id", help="Conversation to analyze")
    extract_parser.add_argument("-p", "--plan", help="Plan to apply (default: configured)")
    extract_parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Extract even if no important information is detected",
    )

    return parser


def run_memory_cli(argv: list[str] | None = None) -> int:
    """Run the memory CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "list": cmd_list,
        "search": cmd_search,
        "context": cmd_context,
        "forget": cmd_forget,
        "prune": cmd_prune,
        "plans": cmd_plans,
        "extract": cmd_extract,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_memory_cli())

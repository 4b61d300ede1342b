"""Memory system configuration.

Loads settings from ~/.continuum/config.json, then applies overrides from
environment variables (a .env file is loaded by the entry point).
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .llm_client import DEFAULT_MODEL
from .memory.cache import DEFAULT_MAX_SIZE, DEFAULT_TTL_SECONDS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".continuum" / "config.json"


@dataclass
class MemoryConfig:
    """Configuration for the memory system.

    Attributes:
        db_path: SQLite database holding facts and conversations.
        model: Groq model used for fact extraction.
        cache_max_size: Maximum users kept in the context cache.
        cache_ttl_seconds: Lifetime of a cached context block.
        log_dir: Directory for the JSONL event log (default if None).
        user_plans: Plan per user id, users not listed are on Free.
    """

    db_path: Path | None = None
    model: str = DEFAULT_MODEL
    cache_max_size: int = DEFAULT_MAX_SIZE
    cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    log_dir: Path | None = None
    user_plans: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        if self.db_path is None:
            self.db_path = Path.home() / ".continuum" / "memory.db"

        if self.cache_max_size < 1:
            raise ValueError("cache_max_size must be at least 1")

        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be positive")


def load_config(config_path: Path | None = None) -> MemoryConfig:
    """Load MemoryConfig from a JSON file.

    The config file should have this structure:
    ```json
    {
      "memory": {
        "db_path": "~/.continuum/memory.db",
        "model": "llama-3.1-70b-versatile",
        "cache": {"max_size": 1000, "ttl_seconds": 900},
        "plans": {"user-123": "Professional"}
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        MemoryConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return MemoryConfig()

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return MemoryConfig()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return MemoryConfig()

    return _parse_config(data)


def _parse_config(data: dict[str, Any]) -> MemoryConfig:
    """Parse config dictionary into MemoryConfig.

    Invalid values are ignored in favor of the defaults.
    """
    memory_data = data.get("memory", {})
    if not isinstance(memory_data, dict):
        memory_data = {}

    db_path: Path | None = None
    if isinstance(memory_data.get("db_path"), str):
        db_path = Path(memory_data["db_path"]).expanduser()

    log_dir: Path | None = None
    if isinstance(memory_data.get("log_dir"), str):
        log_dir = Path(memory_data["log_dir"]).expanduser()

    model = memory_data.get("model", DEFAULT_MODEL)
    if not isinstance(model, str) or not model:
        model = DEFAULT_MODEL

    cache_data = memory_data.get("cache", {})
    if not isinstance(cache_data, dict):
        cache_data = {}

    max_size = cache_data.get("max_size", DEFAULT_MAX_SIZE)
    if not isinstance(max_size, int) or max_size < 1:
        max_size = DEFAULT_MAX_SIZE

    ttl = cache_data.get("ttl_seconds", DEFAULT_TTL_SECONDS)
    if not isinstance(ttl, (int, float)) or ttl <= 0:
        ttl = DEFAULT_TTL_SECONDS

    plans = memory_data.get("plans", {})
    if not isinstance(plans, dict):
        plans = {}

    return MemoryConfig(
        db_path=db_path,
        model=model,
        cache_max_size=max_size,
        cache_ttl_seconds=ttl,
        log_dir=log_dir,
        user_plans={str(k): str(v) for k, v in plans.items()},
    )


def config_from_env(config: MemoryConfig | None = None) -> MemoryConfig:
    """Apply environment variable overrides to a config.

    Recognized variables: CONTINUUM_DB_PATH, GROQ_MODEL,
    CONTINUUM_CACHE_SIZE, CONTINUUM_CACHE_TTL.

    Raises:
        ValueError: If a numeric variable is not a number.
    """
    config = config or MemoryConfig()

    if os.getenv("CONTINUUM_DB_PATH"):
        config.db_path = Path(os.environ["CONTINUUM_DB_PATH"]).expanduser()

    config.model = os.getenv("GROQ_MODEL", config.model)

    if os.getenv("CONTINUUM_CACHE_SIZE"):
        config.cache_max_size = int(os.environ["CONTINUUM_CACHE_SIZE"])

    if os.getenv("CONTINUUM_CACHE_TTL"):
        config.cache_ttl_seconds = float(os.environ["CONTINUUM_CACHE_TTL"])

    # Re-run validation on the overridden values
    config.__post_init__()
    return config

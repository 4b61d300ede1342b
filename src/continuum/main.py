"""Continuum entry point."""

import sys

from dotenv import find_dotenv, load_dotenv

USAGE = "usage: continuum memory <command> [options]"


def main() -> None:
    """Main entry point."""
    load_dotenv(find_dotenv(usecwd=True))

    if len(sys.argv) > 1 and sys.argv[1] == "memory":
        from .cli import run_memory_cli

        # Pass remaining args (after 'memory') to the memory CLI
        sys.exit(run_memory_cli(sys.argv[2:]))

    print(USAGE)
    sys.exit(1)


if __name__ == "__main__":
    main()

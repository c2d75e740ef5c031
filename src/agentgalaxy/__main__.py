"""CLI entry point for agentgalaxy."""

import sys


def main() -> int:
    """Main entry point for the agentgalaxy CLI."""
    from agentgalaxy.cli import run_cli

    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())

"""Command-line interface for agentgalaxy."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from agentgalaxy import __version__
from agentgalaxy.config import Config, load_config
from agentgalaxy.errors import StartupError
from agentgalaxy.logging import get_logger, setup_logging

log = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agentgalaxy",
        description="Live file-system galaxy with agent activity",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (can be repeated, up to 4)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    relay_parser = subparsers.add_parser(
        "relay",
        help="Run the event relay server",
    )
    relay_parser.add_argument("--host", help="Listen address (default from config)")
    relay_parser.add_argument("--port", type=int, help="Listen port (default from config)")

    observe_parser = subparsers.add_parser(
        "observe",
        help="Model a directory, follow the relay and log scene summaries",
    )
    observe_parser.add_argument("root", type=Path, help="Directory tree to model")
    observe_parser.add_argument("--url", help="Relay WebSocket URL (default from config)")
    observe_parser.add_argument(
        "--interval",
        type=float,
        default=1.0,
        help="Seconds between logged scene summaries",
    )
    observe_parser.add_argument(
        "--ticks",
        type=int,
        default=0,
        help="Stop after this many summaries (0 = run until interrupted)",
    )

    hook_parser = subparsers.add_parser(
        "hook",
        help="Forward one agent hook document from stdin to the relay",
    )
    hook_parser.add_argument("--url", help="Relay base URL (default from config)")

    return parser


async def run_relay(config: Config) -> int:
    from agentgalaxy.relay.server import RelayServer

    server = RelayServer(config.relay)
    await server.serve_forever()
    return 0


async def run_observe(
    config: Config,
    root: Path,
    url: str | None,
    interval: float,
    ticks: int,
) -> int:
    from agentgalaxy.agents import SessionRegistry
    from agentgalaxy.bridge import RelayClient, SyncBridge
    from agentgalaxy.model import FileSystemModel, LayoutEngine
    from agentgalaxy.watching import TreeWatcher

    model = FileSystemModel(
        root,
        LayoutEngine(config.layout),
        extra_ignore=config.watch.ignore_patterns,
    )
    bridge = SyncBridge(
        model,
        SessionRegistry(config.agents),
        watcher=TreeWatcher(model.root, config.watch),
        client=RelayClient(url or config.bridge.url, config=config.bridge),
        config=config.bridge,
    )
    await bridge.start()
    try:
        count = 0
        while ticks <= 0 or count < ticks:
            await asyncio.sleep(interval)
            count += 1
            log.info("scene %s", json.dumps(bridge.compose().summary()))
    finally:
        await bridge.stop()
    return 0


async def run_hook(config: Config, url: str | None) -> int:
    from agentgalaxy.hook import forward

    try:
        document = json.load(sys.stdin)
    except ValueError as e:
        log.warning("Hook input is not JSON: %s", e)
        return 0
    if not isinstance(document, dict):
        return 0
    base_url = url or f"http://{config.relay.host}:{config.relay.port}"
    await forward(document, base_url)
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command is None:
        parser.print_help()
        return 1

    root = getattr(parsed, "root", None)
    try:
        config = load_config(root=root)
        if parsed.verbose is not None:
            config.logging.verbose = min(parsed.verbose, 4)
        setup_logging(config.logging, force_stderr=parsed.command != "hook")

        if parsed.command == "relay":
            if parsed.host:
                config.relay.host = parsed.host
            if parsed.port is not None:
                config.relay.port = parsed.port
            return asyncio.run(run_relay(config))
        elif parsed.command == "observe":
            return asyncio.run(
                run_observe(config, parsed.root, parsed.url, parsed.interval, parsed.ticks)
            )
        elif parsed.command == "hook":
            return asyncio.run(run_hook(config, parsed.url))
        else:
            parser.print_help()
            return 1
    except StartupError as e:
        print(f"agentgalaxy: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130

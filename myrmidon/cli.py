"""
Myrmidon CLI entry point.

Usage:
    myrmidon run ajax --config config/swarm.yaml        # Run one rover's control loop
    myrmidon run ajax --duration 30                     # Stop after 30 s
    myrmidon run ajax --duration 30 --json              # Final snapshot as JSON
    myrmidon check-config --config config/swarm.yaml    # Validate and show config
    myrmidon decode "hector, 1.0, 2.0, 0.5"             # Check a pose broadcast
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import traceback

logger = logging.getLogger("Myrmidon")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose or os.getenv("LOG_LEVEL", "").upper() == "DEBUG" else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _run_agent(name: str, config, duration: float, as_json: bool = False) -> None:
    from myrmidon.agent import SwarmAgent
    from myrmidon.channels import get_bus
    from myrmidon.telemetry import render_snapshot

    bus = get_bus(config.channels)
    agent = SwarmAgent(name, config, bus)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass  # Windows

    await bus.start()
    await agent.start()
    print(f"\n  Welcome to the world of tomorrow {name}!  Mobility loop started.\n")
    try:
        if duration > 0:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
        else:
            await stop_event.wait()
    finally:
        await agent.stop()
        await bus.stop()
    snap = agent.snapshot()
    if as_json:
        print(json.dumps(snap.to_dict(), indent=2))
    else:
        render_snapshot(snap)


def cmd_run(args) -> None:
    """Run one rover's heading-consensus control loop."""
    from myrmidon.config import load_config

    config = load_config(args.config)
    asyncio.run(_run_agent(args.name, config, args.duration, args.json))


def cmd_check_config(args) -> None:
    """Validate the config and print the resolved values."""
    from rich.console import Console
    from rich.table import Table

    from myrmidon.config import ConfigError, find_config_path, load_config

    console = Console()
    path = find_config_path(args.config)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        console.print(f"\n  [red]Invalid config[/] ({path}):")
        for msg in exc.errors:
            console.print(f"    - {msg}")
        print()
        sys.exit(1)

    table = Table(title=f"Config: {path}", show_header=True)
    table.add_column("Section", style="bold")
    table.add_column("Key")
    table.add_column("Value")
    for section, values in config.to_dict().items():
        for key, value in values.items():
            if key == "password":
                value = "***"
            table.add_row(section, key, str(value))
    console.print(table)


def cmd_decode(args) -> None:
    """Decode a pose broadcast against the configured membership."""
    from myrmidon.config import load_config
    from myrmidon.swarm import ParseError, SwarmMembership, decode

    config = load_config(args.config)
    try:
        agent_id, pose = decode(args.text, SwarmMembership(config.members))
    except ParseError as exc:
        print(f"\n  Rejected: {exc}\n")
        sys.exit(1)
    print(f"\n  {agent_id}: x={pose.x} y={pose.y} theta={pose.theta}\n")


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="myrmidon",
        description="Myrmidon - decentralized heading consensus for a rover swarm",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # myrmidon run
    p_run = sub.add_parser(
        "run",
        help="Run one rover's control loop",
        epilog="Example: myrmidon run ajax --config config/swarm.yaml",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_run.add_argument("name", help="This rover's name (must be in swarm.members)")
    p_run.add_argument("--config", default=None, help="Swarm config file")
    p_run.add_argument(
        "--duration", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl+C)"
    )
    p_run.add_argument(
        "--json", action="store_true", help="Print the final status snapshot as JSON"
    )

    # myrmidon check-config
    p_check = sub.add_parser("check-config", help="Validate and display the swarm config")
    p_check.add_argument("--config", default=None, help="Swarm config file")

    # myrmidon decode
    p_decode = sub.add_parser(
        "decode",
        help="Decode a pose broadcast",
        epilog='Example: myrmidon decode "hector, 1.0, 2.0, 0.5"',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_decode.add_argument("text", help="Pose broadcast text")
    p_decode.add_argument("--config", default=None, help="Swarm config file")

    args = parser.parse_args()
    _setup_logging(args.verbose)

    commands = {
        "run": cmd_run,
        "check-config": cmd_check_config,
        "decode": cmd_decode,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return

    from myrmidon.config import ConfigError

    try:
        handler(args)
    except ConfigError as exc:
        print(f"\n  Config error: {exc}\n")
        sys.exit(1)
    except ConnectionError as exc:
        print(f"\n  Connection error: {exc}")
        print("  Hint: check channels.broker_host / broker_port.\n")
        sys.exit(1)
    except Exception as exc:
        print(f"\n  Unexpected error: {exc}\n")
        if os.getenv("LOG_LEVEL", "").upper() == "DEBUG":
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()

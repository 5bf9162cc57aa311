"""
Command line tool for inspecting and syncing a Trunk event log.

Commands:
- state: Derive state from the local cache (or an event file) and print it
- history: Print the soil log and watering streak
- status: Show cache bookkeeping (events, pending, cursor, version)
- sync: Run one sync cycle against the configured remote store

Usage:
    trunk-cli state --user user-1
    trunk-cli state --file events.json --tz UTC
    trunk-cli history --user user-1
    trunk-cli status --user user-1
    trunk-cli sync --user user-1

Invariants:
    - state output is canonical JSON (sorted keys) plus its fingerprint,
      so two devices can compare derived state byte for byte
    - A failed sync exits non-zero
    - Secrets are never printed

How to change safely:
    - Add new commands, don't change the output of existing ones
    - Keep stdout machine readable; diagnostics go to the log (stderr)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, replace
from datetime import tzinfo
from typing import Any, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import json_log_formatter

from ..cache import SqliteLocalCache
from ..config import DERIVATION_VERSION, TrunkConfig
from ..derive import derive, soil_log, watering_streak
from ..errors import TrunkError
from ..events import Event, parse_event
from ..remote import create_remote_store
from ..sync import SyncCoordinator

logger = logging.getLogger(__name__)


def setup_logging(config: TrunkConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Client configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class TrunkCLI:
    """CLI tool for a device's event log.

    Example:
        >>> cli = TrunkCLI(TrunkConfig.from_env())
        >>> print(cli.render_state(events))
        >>> code = await cli.sync("user-1")
    """

    def __init__(self, config: TrunkConfig, tz: Optional[tzinfo] = None) -> None:
        self.config = config
        self.tz = tz

    def load_file(self, path: str) -> List[Event]:
        """Read a JSON array of wire-form events.

        Raises:
            EventValidationError: If an entry is not a valid event
        """
        with open(path) as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{path}: expected a JSON array of events")
        return [parse_event(item) for item in data]

    async def load_cache(self, user_id: str) -> List[Event]:
        cache = SqliteLocalCache.for_user(self.config.cache, user_id)
        await cache.open()
        try:
            snapshot = await cache.load()
        finally:
            await cache.close()
        return snapshot.events

    def render_state(self, events: Sequence[Event]) -> str:
        """Derived state as canonical JSON with metadata."""
        state = derive(events, constants=self.config.constants, tz=self.tz)
        output = {
            "derivation_version": DERIVATION_VERSION,
            "fingerprint": state.fingerprint(),
            "skipped": state.skipped,
            "state": state.to_dict(),
        }
        return json.dumps(output, indent=2, sort_keys=True)

    def render_history(self, events: Sequence[Event]) -> str:
        entries = soil_log(events, constants=self.config.constants, tz=self.tz)
        streak = watering_streak(events, constants=self.config.constants, tz=self.tz)
        output = {
            "soil_log": [asdict(entry) for entry in entries],
            "watering_streak": asdict(streak),
        }
        return json.dumps(output, indent=2, sort_keys=True)

    async def status(self, user_id: str) -> Dict[str, Any]:
        cache = SqliteLocalCache.for_user(self.config.cache, user_id)
        await cache.open()
        try:
            snapshot = await cache.load()
        finally:
            await cache.close()
        return {
            "path": str(cache.path),
            "events": len(snapshot.events),
            "pending": len(snapshot.pending),
            "cursor": snapshot.cursor,
            "cache_version": snapshot.cache_version,
        }

    async def sync(self, user_id: str) -> Dict[str, Any]:
        """Run one sync cycle for ``user_id``.

        Raises:
            ValueError: If no remote store is configured
        """
        remote_config = self.config.remote
        if remote_config.user_id is None:
            remote_config = replace(remote_config, user_id=user_id)
        remote = create_remote_store(remote_config)
        cache = SqliteLocalCache.for_user(self.config.cache, user_id)
        coordinator = SyncCoordinator(
            cache,
            remote,
            user_id,
            config=self.config.sync,
            constants=self.config.constants,
            tz=self.tz,
        )
        try:
            await coordinator.open()
            result = await coordinator.sync()
        finally:
            await coordinator.close()
            await remote.close()

        status = coordinator.status
        return {
            "ok": result.ok,
            "pushed": result.pushed,
            "pulled": result.pulled,
            "full_resync": result.full_resync,
            "error": result.error,
            "error_code": result.error_code,
            "state": status.state.value,
            "pending": status.pending_count,
            "cursor": status.last_confirmed_at,
        }


def _parse_tz(name: Optional[str]) -> Optional[tzinfo]:
    if name is None:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as e:
        raise ValueError(f"Unknown time zone '{name}'") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trunk-cli", description="Trunk event log tool")
    parser.add_argument("--tz", help="IANA time zone for local-time rules (default: system)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("state", "Print derived state and its fingerprint"),
        ("history", "Print the soil log and watering streak"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        source = sub.add_mutually_exclusive_group(required=True)
        source.add_argument("--user", help="Read the local cache of this user")
        source.add_argument("--file", help="Read events from a JSON file")

    status_parser = subparsers.add_parser("status", help="Show local cache bookkeeping")
    status_parser.add_argument("--user", required=True, help="User id")

    sync_parser = subparsers.add_parser("sync", help="Run one sync cycle")
    sync_parser.add_argument("--user", required=True, help="User id")

    return parser


async def _run(cli: TrunkCLI, args: argparse.Namespace) -> int:
    if args.command in ("state", "history"):
        if args.file:
            events = cli.load_file(args.file)
        else:
            events = await cli.load_cache(args.user)
        render = cli.render_state if args.command == "state" else cli.render_history
        print(render(events))
        return 0

    if args.command == "status":
        print(json.dumps(await cli.status(args.user), indent=2, sort_keys=True))
        return 0

    if args.command == "sync":
        summary = await cli.sync(args.user)
        print(json.dumps(summary, indent=2, sort_keys=True))
        return 0 if summary["ok"] else 1

    raise ValueError(f"Unknown command '{args.command}'")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = TrunkConfig.from_env()
        setup_logging(config)
        cli = TrunkCLI(config, tz=_parse_tz(args.tz))
        return asyncio.run(_run(cli, args))
    except (TrunkError, ValueError, OSError) as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)})
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

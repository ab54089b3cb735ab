"""CLI entrypoint for the twin sync agent.

Architecture:
  1. Load .env, then SYNCBOT_* environment, then CLI flags (last wins)
  2. Start the SyncManager on its worker thread
  3. Print progress from its events until the run settles
  4. Optionally send one wake request if no twin answered
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path
from typing import Any

from src.common.console import C, banner, error, fail, info, ok, state_line, warn
from src.common.constants import PROJECT_ROOT
from src.common.logging import configure_structlog
from src.syncbot.config import ConfigError, Identity, build_config, config_from_env, load_dotenv
from src.syncbot.journal import EventJournal
from src.syncbot.manager import SyncManager
from src.syncbot.state import SyncState

# Final state -> process exit code
EXIT_CODES = {
    SyncState.DEPLOYING: 0,
    SyncState.LISTENING: 0,
    SyncState.IDLE: 0,
    SyncState.ERROR: 1,
}
EXIT_INTERRUPTED = 130

# CLI dest -> config field
_FLAG_FIELDS = {
    "max_retries": "max_retries",
    "retry_interval": "retry_interval",
    "connection_timeout": "connection_timeout",
    "internal_code": "internal_code",
    "ping_url": "ping_url",
    "artifacts": "artifact_urls",
    "exec_command": "exec_command",
    "deploy_path": "deploy_path",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Twin Sync Agent — find the paired bot, wait for the deploy signal, launch artifacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              python3 run_syncbot.py --bot-id Rob1 --base-url https://sync.example.com
              python3 run_syncbot.py --bot-id Rob1 --base-url URL --artifact URL/bot.js --wake
        """),
    )
    parser.add_argument("--bot-id", default=None, help="This agent's identifier (SYNCBOT_BOT_ID)")
    parser.add_argument("--base-url", default=None, help="Coordination service base URL (SYNCBOT_BASE_URL)")
    parser.add_argument("--max-retries", type=int, default=None, help="Probe attempts before listening. Default: 5")
    parser.add_argument("--retry-interval", type=float, default=None, help="Seconds between attempts/polls. Default: 7")
    parser.add_argument("--connection-timeout", type=float, default=None, help="Seconds per probe. Default: 8")
    parser.add_argument("--internal-code", type=int, default=None, help="Shared pairing code. Default: 720")
    parser.add_argument("--ping-url", default=None, help="Override <base>/sync/ping?botId=<id>")
    parser.add_argument(
        "--artifact", dest="artifacts", action="append", default=None, metavar="URL",
        help="Artifact URL to download on deploy (repeatable, in order)",
    )
    parser.add_argument("--exec", dest="exec_command", default=None, help='Launch command. Default: "node bot.js"')
    parser.add_argument("--deploy-path", default=None, help="Local deploy directory. Default: ./deployedBots")
    parser.add_argument("--journal", type=Path, default=None, metavar="FILE", help="Append every event as JSON lines")
    parser.add_argument(
        "--wake", action="store_true", default=False,
        help="Send one wake request to the twin if the run ends in listening mode",
    )
    parser.add_argument("--env-file", type=Path, default=PROJECT_ROOT / ".env", help="Path to a .env file")
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="Debug logging")
    return parser


def resolve_settings(args: argparse.Namespace, environ: dict[str, str] | None = None) -> tuple[Identity, dict[str, Any]]:
    """Combine environment values and CLI flags into an identity and overrides."""
    values = config_from_env(environ)
    if args.bot_id:
        values["bot_id"] = args.bot_id
    if args.base_url:
        values["base_url"] = args.base_url
    for dest, field_name in _FLAG_FIELDS.items():
        value = getattr(args, dest)
        if value is not None:
            values[field_name] = value

    bot_id = values.pop("bot_id", "")
    base_url = values.pop("base_url", "")
    if not bot_id or not base_url:
        raise ConfigError("--bot-id and --base-url (or SYNCBOT_BOT_ID / SYNCBOT_BASE_URL) are required")
    return Identity(bot_id, base_url), values


def attach_console(manager: SyncManager) -> None:
    """Print coloured progress lines for the main lifecycle events."""
    max_retries = manager.config.max_retries
    manager.on("state_change", lambda state: print(state_line(state.value)))
    manager.on("attempt", lambda n: info(f"Probing for twin (attempt {n}/{max_retries}) ..."))
    manager.on("gemelo_found", lambda peer_id: ok(f"Twin found: {peer_id}"))
    manager.on("listening", lambda: warn("No twin found — entering listening mode."))
    manager.on("waiting_deploy_signal", lambda: info("Waiting for deploy signal ..."))
    manager.on("deploy_signal_received", lambda: ok("Deploy signal received."))
    manager.on("deploy_signal_timeout", lambda: warn("Deploy signal never arrived."))
    manager.on("download_start", lambda url: info(f"Downloading {url}"))
    manager.on("download_complete", lambda name: ok(f"Wrote {name}"))
    manager.on("exec_start", lambda cmd: info(f"Launching: {C.BOLD}{cmd}{C.NC}"))
    manager.on("exec_error", lambda exc, stderr: error(f"{exc}\n{stderr}".rstrip()))
    manager.on("deploy_success", lambda: ok("Deploy finished."))
    manager.on("woke_gemelo", lambda: ok("Wake request sent to twin."))
    manager.on("error", lambda exc: error(f"{type(exc).__name__}: {exc}"))


def _wait(manager: SyncManager) -> int:
    try:
        while not manager.join(timeout=0.5):
            pass
    except KeyboardInterrupt:
        print()
        warn("Interrupted — stopping sync manager.")
        manager.stop()
        return EXIT_INTERRUPTED
    return EXIT_CODES.get(manager.state, 1)


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    configure_structlog(logging.DEBUG if args.verbose else logging.INFO)

    for name in load_dotenv(args.env_file):
        info(f"Loaded {name} from {args.env_file}")

    try:
        identity, overrides = resolve_settings(args)
        config = build_config(identity, overrides)
    except ConfigError as exc:
        fail(str(exc))

    banner(f"Twin Sync Agent — {identity.bot_id}")
    info(f"Coordination service: {identity.base_url}")
    info(f"Retries: {config.max_retries} x {config.retry_interval:g}s  (timeout {config.connection_timeout:g}s)")
    info(f"Artifacts: {len(config.artifact_urls)}  ->  {config.deploy_path}")
    print()

    manager = SyncManager(identity, config)
    attach_console(manager)
    if args.journal is not None:
        EventJournal(args.journal).attach(manager, bot_id=identity.bot_id)
        info(f"Journal: {args.journal}")

    manager.start()
    code = _wait(manager)

    if code != EXIT_INTERRUPTED and manager.state is SyncState.LISTENING and args.wake:
        manager.wake_up_gemelo()

    sys.exit(code)

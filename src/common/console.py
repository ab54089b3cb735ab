"""ANSI colour codes and console progress helpers for the CLI."""

from __future__ import annotations

import sys


class C:
    """ANSI colour codes (no-op if not a tty)."""

    _tty = sys.stdout.isatty()
    RED = "\033[0;31m" if _tty else ""
    GREEN = "\033[0;32m" if _tty else ""
    CYAN = "\033[0;36m" if _tty else ""
    YELLOW = "\033[1;33m" if _tty else ""
    MAGENTA = "\033[0;35m" if _tty else ""
    BOLD = "\033[1m" if _tty else ""
    NC = "\033[0m" if _tty else ""


# Colour per sync state value
STATE_COLOURS = {
    "idle": C.NC,
    "searching": C.CYAN,
    "connected": C.GREEN,
    "listening": C.YELLOW,
    "deploying": C.MAGENTA,
    "error": C.RED,
}


def info(msg: str) -> None:
    print(f"{C.CYAN}[INFO]{C.NC}  {msg}")


def ok(msg: str) -> None:
    print(f"{C.GREEN}[ OK ]{C.NC} {msg}")


def warn(msg: str) -> None:
    print(f"{C.YELLOW}[WARN]{C.NC} {msg}")


def error(msg: str) -> None:
    print(f"{C.RED}[FAIL]{C.NC} {msg}", file=sys.stderr)


def fail(msg: str) -> None:
    error(msg)
    sys.exit(1)


def state_line(state: str) -> str:
    """Format a state change as ``[SYNC] <state>`` in the state's colour."""
    colour = STATE_COLOURS.get(state, C.NC)
    return f"{C.BOLD}[SYNC]{C.NC}  {colour}{state}{C.NC}"


def banner(title: str, width: int = 62) -> None:
    print()
    print(f"{C.BOLD}{'=' * width}{C.NC}")
    print(f"{C.BOLD}  {title}{C.NC}")
    print(f"{C.BOLD}{'=' * width}{C.NC}")
    print()

"""Shared constants for the twin sync agent."""

from pathlib import Path

# Project root = syncbot/
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# HTTP
USER_AGENT = "SyncBot/1.0"

# Coordination service routes (relative to the base URL)
PING_PATH = "/sync/ping"
DEPLOY_SIGNAL_PATH = "/sync/deploySignal"
WAKE_PATH = "/sync/wake"

# ── Pairing defaults ─────────────────────────────────────────────────────────
DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_INTERVAL = 7.0        # seconds between probe attempts / signal polls
DEFAULT_CONNECTION_TIMEOUT = 8.0    # seconds per probe request
DEFAULT_INTERNAL_CODE = 720         # shared pairing code for twin bots

# Deploy signal budget is independent of max_retries (~3.5 min at 7s)
MAX_SIGNAL_POLLS = 30

# ── Deploy defaults ──────────────────────────────────────────────────────────
DEFAULT_EXEC_COMMAND = "node bot.js"
DEFAULT_DEPLOY_PATH = Path("./deployedBots")
DEFAULT_DOWNLOAD_TIMEOUT = 60.0

# Captured child output is cut to its tail before it is emitted
STDIO_TAIL_CHARS = 8000

# Environment variable prefix for configuration
ENV_PREFIX = "SYNCBOT_"

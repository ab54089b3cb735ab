#!/usr/bin/env python3
"""
Twin Sync Agent — pairing and deploy trigger
============================================
Thin entry-point. All logic lives in src.syncbot.cli.

Usage:
    python3 run_syncbot.py --bot-id Rob1 --base-url https://sync.example.com
    python3 run_syncbot.py --bot-id Rob1 --base-url URL --max-retries 3 --wake
    SYNCBOT_BOT_ID=Rob1 SYNCBOT_BASE_URL=URL python3 run_syncbot.py
"""

from src.syncbot.cli import main

if __name__ == "__main__":
    main()

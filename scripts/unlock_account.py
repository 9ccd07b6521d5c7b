#!/usr/bin/env python3
"""
Unlock Account Script

Clears lockout, failed attempt counter and progressive delay for an identity
directly in the shared counter store (REDIS_URL). Useful when the admin API
is disabled.

Usage:
    python scripts/unlock_account.py --identity alice@example.com

    # Only show the current throttle state
    python scripts/unlock_account.py --identity alice@example.com --show
"""

import os
import sys
import json
import asyncio
import argparse

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))


async def run(identity: str, show_only: bool) -> int:
    from config.loader import get_settings
    from login_guard.services.counter_store import StoreUnavailable, get_store
    from login_guard.services.login_attempt_gate import LoginAttemptGate

    settings = get_settings()
    if not settings.redis_url:
        print("[ERROR] REDIS_URL not configured; the in-memory store is private to each server process")
        return 1

    store = get_store()
    gate = LoginAttemptGate.from_settings(store, settings)
    try:
        stats = await gate.stats(identity)
        print(json.dumps(stats.model_dump(), indent=2))
        if not show_only:
            await gate.unlock(identity)
            print(f"[OK] Unlocked {stats.identity}")
    except StoreUnavailable as e:
        print(f"[ERROR] {e}")
        return 1
    finally:
        await store.close()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Unlock a throttled login identity")
    parser.add_argument("--identity", required=True, help="Username or email")
    parser.add_argument("--show", action="store_true", help="Print throttle state without unlocking")
    args = parser.parse_args()
    return asyncio.run(run(args.identity, args.show))


if __name__ == "__main__":
    sys.exit(main())

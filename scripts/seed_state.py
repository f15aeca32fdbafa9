#!/usr/bin/env python3
"""Fill a PromptDock state file with a demo session for screenshots and UI work."""

import argparse
import random
import sys
import time
from pathlib import Path
from typing import List, Tuple

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from constants import STATE_PATH  # noqa: E402
from state_schema import OUTCOMES  # noqa: E402
from state_service import StateService  # noqa: E402
from state_store import StateStore  # noqa: E402

AUTH_PROMPTS: List[Tuple[str, str]] = [
    ("claude", "Add refresh token rotation to the session middleware"),
    ("claude", "Why does the token expiry check pass for revoked tokens?"),
    ("codex-cli", "Write tests for the logout flow covering concurrent sessions"),
    ("cursor", "Refactor the auth service so the JWT signer is injectable"),
    ("claude", "Explain how the CSRF cookie interacts with the SPA login form"),
]

NOTES: List[str] = [
    "Revoked tokens live in redis with a 24h TTL.",
    "Signer refactor blocked on the config loader change.",
]


def seed_timeline(service: StateService, minutes_back: int) -> int:
    count = 0
    start = time.time() - minutes_back * 60
    for index, (_, text) in enumerate(AUTH_PROMPTS):
        created_at = start + index * (minutes_back * 60 / len(AUTH_PROMPTS))
        entry = service.append_timeline_entry(text, source="manual", created_at=created_at)
        if entry is None:
            continue
        outcome = random.choice(OUTCOMES)
        service.set_entry_outcome(entry.id, outcome)
        count += 1
    for note in NOTES:
        service.add_timeline_entry(note, entry_type="note")
        count += 1
    return count


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a demo PromptDock session.")
    parser.add_argument("--path", default=str(STATE_PATH), help="State file to write")
    parser.add_argument("--minutes", type=int, default=90, help="How far back the session starts")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing state file")
    args = parser.parse_args()

    store = StateStore(Path(args.path))
    if store.exists() and not args.force:
        print(f"{store.path} already exists. Pass --force to overwrite it.")
        sys.exit(1)
    if store.exists():
        store.path.unlink()

    service = StateService(store)
    service.update_state(
        {
            "sessionGoal": "Harden the auth flow",
            "goals": ["Token rotation", "Logout tests", "Signer refactor"],
            "prompts": [
                {"text": text, "tool": tool, "sessionLabel": "auth hardening"}
                for tool, text in AUTH_PROMPTS
            ],
        }
    )
    total = seed_timeline(service, args.minutes)
    print(f"Wrote {total} timeline entries to {store.path}.")


if __name__ == "__main__":
    main()

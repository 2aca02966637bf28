"""
Shared paths and helpers used by the daemon (manager.py), the status server and the CLI.
"""
from __future__ import annotations

import enum
from pathlib import Path

# Paths
HOME = Path.home()
APP_DIR = HOME / "autoreply"
STATE_DIR = APP_DIR / "state"
LOGS_DIR = APP_DIR / "logs"
INBOX_DIR = APP_DIR / "inbox"
OUTBOX_DIR = APP_DIR / "outbox"
REPLIED_FILE_NAME = "replied_numbers.json"

DEFAULT_GREETING = "Hello! 👋 Thanks for messaging us. We will get back to you shortly."

# Correspondent id suffixes
GROUP_SUFFIX = "@g.us"
BROADCAST_SUFFIX = "@broadcast"


class CorrespondentKind(str, enum.Enum):
    PRIVATE = "private"
    GROUP = "group"
    BROADCAST = "broadcast"


def classify_correspondent(chat_id: str) -> CorrespondentKind:
    """Classify a chat peer id by its suffix.

    Broadcast lists and the status sentinel end with "@broadcast"
    (e.g. "status@broadcast"), groups end with "@g.us", everything
    else (e.g. "2348012345678@c.us") is a private chat.
    """
    if chat_id.endswith(BROADCAST_SUFFIX):
        return CorrespondentKind.BROADCAST
    if chat_id.endswith(GROUP_SUFFIX):
        return CorrespondentKind.GROUP
    return CorrespondentKind.PRIVATE


def ensure_dirs(*dirs: Path) -> None:
    """Create runtime directories (state, logs, inbox/outbox) if missing."""
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)

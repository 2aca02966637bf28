"""
Shared fixtures for autoreply tests.

Tests drive the SessionController with a fake messaging client, so no real
transport is involved. The fake records every command it receives and can
be told to fail or stall.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Tuple

import pytest
import pytest_asyncio

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from autoreply import perf
from autoreply.config import ResponderSettings


class FakeMessagingClient:
    """Messaging client double that records calls instead of talking to a backend."""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []  # successful sends
        self.send_attempts: List[str] = []
        self.initialize_calls = 0
        self.destroy_calls = 0
        self.fail_sends = 0  # fail the next N sends; -1 fails every send
        self.fail_initialize = False  # fail every initialize
        self.fail_initialize_count = 0  # fail the next N initializes
        self.initialize_delay = 0.0
        self.destroy_delay = 0.0

    async def initialize_session(self) -> None:
        self.initialize_calls += 1
        if self.initialize_delay:
            await asyncio.sleep(self.initialize_delay)
        if self.fail_initialize_count:
            self.fail_initialize_count -= 1
            raise ConnectionError("Simulated initialize failure")
        if self.fail_initialize:
            raise ConnectionError("Simulated initialize failure")

    async def send_reply(self, sender_id: str, text: str) -> None:
        self.send_attempts.append(sender_id)
        if self.fail_sends:
            if self.fail_sends > 0:
                self.fail_sends -= 1
            raise ConnectionError("Simulated send failure")
        self.sent.append((sender_id, text))

    async def destroy_session(self) -> None:
        self.destroy_calls += 1
        if self.destroy_delay:
            await asyncio.sleep(self.destroy_delay)


async def drain_reconnects(controller) -> None:
    """Wait until no reconnect is pending (follows chained reschedules)."""
    while (task := controller.state.reconnect_task) is not None:
        await task


# ── Fixtures ────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def temp_perf_dir(tmp_path, monkeypatch):
    """Keep perf JSONL out of the real logs directory."""
    perf_dir = tmp_path / "perf"
    monkeypatch.setattr(perf, "PERF_DIR", perf_dir)
    return perf_dir


@pytest.fixture
def store_file(tmp_path):
    return tmp_path / "state" / "replied_numbers.json"


@pytest.fixture
def store(store_file):
    from autoreply.reply_store import ReplyStore
    return ReplyStore(store_file)


@pytest.fixture
def fake_client():
    return FakeMessagingClient()


@pytest.fixture
def settings(tmp_path):
    return ResponderSettings(
        greeting="Hello! Thanks for messaging.",
        reconnect_base_delay=0.0,
        max_reconnect_attempts=3,
        data_dir=tmp_path / "state",
        logs_dir=tmp_path / "logs",
        inbox_dir=tmp_path / "inbox",
        outbox_dir=tmp_path / "outbox",
        port=0,
        shutdown_timeout=1.0,
    )


@pytest_asyncio.fixture
async def controller(fake_client, store):
    """SessionController with a zero reconnect delay and three attempts."""
    from autoreply.session import SessionController
    ctl = SessionController(
        fake_client,
        store,
        greeting="Hello! Thanks for messaging.",
        reconnect_base_delay=0.0,
        max_reconnect_attempts=3,
    )
    yield ctl
    await ctl.stop()

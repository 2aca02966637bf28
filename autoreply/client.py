"""
Messaging client contract plus the bundled file-drop client.

The real transport (pairing, browser session, message delivery) lives in an
external client. This module only fixes the surface the controller talks to:
three commands, and lifecycle events pushed onto an asyncio.Queue.

FileDropClient stands in for a real transport on a dev box and in tests.
Drop event files into the inbox directory:

    {"type": "qr", "payload": "2@abc..."}
    {"type": "ready"}
    {"type": "message", "sender_id": "2348012345678@c.us", "body": "hi"}

Replies are written as JSON files into the outbox directory.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from autoreply import perf
from autoreply.events import LifecycleEvent, ReadyEvent, parse_event

log = logging.getLogger(__name__)

# The inbox is polled every 100ms by default; record one cycle in 100.
POLL_METRIC_SAMPLE_RATE = 100


class MessagingClient(Protocol):
    async def initialize_session(self) -> None: ...

    async def send_reply(self, sender_id: str, text: str) -> None: ...

    async def destroy_session(self) -> None: ...


class FileDropClient:
    """Reads lifecycle events from JSON files and writes replies to an outbox."""

    def __init__(
        self,
        events: "asyncio.Queue[Optional[LifecycleEvent]]",
        inbox_dir: Path,
        outbox_dir: Path,
        poll_interval: float = 0.1,
        emit_ready: bool = True,
    ):
        self.events = events
        self.inbox_dir = inbox_dir
        self.outbox_dir = outbox_dir
        self.poll_interval = poll_interval
        self.emit_ready = emit_ready
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def initialize_session(self) -> None:
        self.inbox_dir.mkdir(parents=True, exist_ok=True)
        self.outbox_dir.mkdir(parents=True, exist_ok=True)
        if not self.active:
            self._task = asyncio.create_task(self._poll_loop(), name="file-drop-inbox")
            log.info(f"FileDropClient watching {self.inbox_dir}")
        if self.emit_ready:
            await self.events.put(ReadyEvent())

    @perf.timed_fn("send_reply_ms", component="client")
    async def send_reply(self, sender_id: str, text: str) -> None:
        if not self.active:
            raise RuntimeError("session not initialized")
        out = {"to": sender_id, "text": text, "sent_at": datetime.now().isoformat()}
        path = self.outbox_dir / f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.json"
        path.write_text(json.dumps(out))

    async def destroy_session(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("FileDropClient session destroyed")

    async def _poll_loop(self) -> None:
        while True:
            start = time.perf_counter()
            try:
                await self.drain_inbox()
            except OSError as e:
                log.error(f"FileDropClient inbox error: {e}")
            perf.timing("inbox_poll_ms", (time.perf_counter() - start) * 1000,
                        sample_rate=POLL_METRIC_SAMPLE_RATE, component="client")
            await asyncio.sleep(self.poll_interval)

    async def drain_inbox(self) -> int:
        """Queue every event file currently in the inbox. Returns how many were queued."""
        queued = 0
        for file_path in sorted(self.inbox_dir.glob("*.json")):
            try:
                event = parse_event(json.loads(file_path.read_text()))
            except (OSError, ValueError, ValidationError) as e:
                log.error(f"Bad event file {file_path.name}: {e}")
                error_dir = self.inbox_dir / "errors"
                error_dir.mkdir(exist_ok=True)
                file_path.rename(error_dir / file_path.name)
                continue
            await self.events.put(event)
            file_path.unlink()
            queued += 1
            log.debug(f"Queued {event.type} event from {file_path.name}")
        return queued


def write_event_file(inbox_dir: Path, event: dict) -> Path:
    """Drop an event file into a file-drop inbox (used by the CLI)."""
    parse_event(event)
    inbox_dir.mkdir(parents=True, exist_ok=True)
    path = inbox_dir / f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.json"
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(event))
    tmp.rename(path)
    return path

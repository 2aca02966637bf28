#!/usr/bin/env python3
"""
autoreply daemon.

Wires the pieces together and keeps them running:
- ReplyStore loaded once from <data_dir>/<replied_file>
- messaging client publishing lifecycle events onto one asyncio.Queue
- SessionController consuming that queue, one event at a time
- status server (FastAPI on uvicorn) on the same event loop
- SIGTERM/SIGINT trigger a bounded shutdown: persist store, release the
  client session (with timeout), stop the server
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from autoreply import perf
from autoreply.client import FileDropClient, MessagingClient
from autoreply.common import ensure_dirs
from autoreply.config import ResponderSettings
from autoreply.reply_store import ReplyStore
from autoreply.server import create_app
from autoreply.session import SessionController

log = logging.getLogger(__name__)
lifecycle_log = logging.getLogger("lifecycle")


def setup_logging(logs_dir: Path) -> None:
    """Stdout for the main log, a separate file for session lifecycle records."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        handlers=[logging.StreamHandler()],
    )
    lifecycle_handler = logging.FileHandler(logs_dir / "session_lifecycle.log")
    lifecycle_handler.setFormatter(logging.Formatter('%(asctime)s | %(message)s'))
    lifecycle_log.addHandler(lifecycle_handler)
    lifecycle_log.setLevel(logging.INFO)


class StatusServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the Manager."""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


class Manager:
    def __init__(
        self,
        settings: ResponderSettings,
        client: Optional[MessagingClient] = None,
        serve_http: bool = True,
    ):
        self.settings = settings
        self.events: asyncio.Queue = asyncio.Queue()
        self.store = ReplyStore(settings.replied_path)
        self.client = client or FileDropClient(self.events, settings.inbox_dir, settings.outbox_dir)
        self.controller = SessionController(
            self.client,
            self.store,
            greeting=settings.greeting,
            reconnect_base_delay=settings.reconnect_base_delay,
            max_reconnect_attempts=settings.max_reconnect_attempts,
        )
        self.app = create_app(self.controller, settings)
        self.server: Optional[StatusServer] = None
        if serve_http:
            self.server = StatusServer(
                uvicorn.Config(self.app, host=settings.host, port=settings.port, log_level="warning")
            )
        self._shutdown_event = asyncio.Event()
        self._shutting_down = False
        self._tasks: list[asyncio.Task] = []
        self._previous_excepthook = sys.excepthook

    def persist_store(self, reason: str) -> bool:
        try:
            self.store.save()
        except OSError as e:
            log.error(f"Failed to persist reply store ({reason}): {e}")
            return False
        log.info(f"Reply store persisted ({reason}, {len(self.store)} ids)")
        return True

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        log.error(
            f"Unhandled error in event loop: {context.get('message')}",
            exc_info=context.get("exception"),
        )
        self.persist_store("loop exception")

    def _install_excepthook(self) -> None:
        previous = self._previous_excepthook = sys.excepthook

        def hook(exc_type, exc, tb):
            self.persist_store("uncaught exception")
            previous(exc_type, exc, tb)

        sys.excepthook = hook

    async def shutdown(self) -> None:
        """Graceful, bounded shutdown. Safe to call more than once."""
        if self._shutting_down:
            return
        self._shutting_down = True
        log.info("DAEMON | SHUTDOWN | START")
        lifecycle_log.info("DAEMON | SHUTDOWN | START")

        self.persist_store("shutdown")
        await self.controller.stop()
        try:
            await asyncio.wait_for(self.client.destroy_session(), timeout=self.settings.shutdown_timeout)
        except asyncio.TimeoutError:
            log.error(f"Session destroy timed out after {self.settings.shutdown_timeout:g}s")
        except Exception as e:
            log.error(f"Error destroying session: {e}")

        await self.events.put(None)
        if self.server is not None:
            self.server.should_exit = True
        self._shutdown_event.set()
        log.info("DAEMON | SHUTDOWN | COMPLETE")
        lifecycle_log.info("DAEMON | SHUTDOWN | COMPLETE")

    async def run(self) -> None:
        """Main async loop."""
        s = self.settings
        log.info("=" * 60)
        log.info("autoreply starting...")
        log.info(f"Reply store: {self.store.path} ({len(self.store)} ids)")
        log.info(f"Reconnect policy: base={s.reconnect_base_delay:g}s max_attempts={s.max_reconnect_attempts}")
        if self.server is not None:
            log.info(f"Status page: http://{s.host}:{s.port}/")
        log.info("=" * 60)
        lifecycle_log.info(f"DAEMON | START | replied={len(self.store)}")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(self.shutdown()))
        loop.set_exception_handler(self._loop_exception_handler)
        self._install_excepthook()

        self._tasks.append(asyncio.create_task(self.controller.run(self.events), name="event-consumer"))
        if self.server is not None:
            self._tasks.append(asyncio.create_task(self.server.serve(), name="status-server"))

        await self.controller.start()
        await self._shutdown_event.wait()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                log.error(f"Task {task.get_name()} ended with error: {result}")

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        loop.set_exception_handler(None)
        sys.excepthook = self._previous_excepthook


def main():
    # Validate config before anything else
    from autoreply import config
    config.load()
    settings = config.settings()

    ensure_dirs(settings.data_dir, settings.logs_dir, settings.inbox_dir, settings.outbox_dir)
    setup_logging(settings.logs_dir)
    perf.configure(settings.logs_dir)

    manager = Manager(settings)
    asyncio.run(manager.run())


if __name__ == "__main__":
    main()

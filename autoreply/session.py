"""
SessionController: reacts to messaging-client lifecycle events.

Owns the session status, the cached QR challenge and the reconnect policy,
and greets new private correspondents exactly once (per successful send).

Events are handled one at a time through handle_event(); run() drains an
asyncio.Queue into it. Reconnects are scheduled as asyncio tasks kept on
SessionState and re-check the status when they fire.

Status snapshots (get_status / get_qr_image) only read state and never wait
on in-flight sends or reconnects.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from qrcode.exceptions import DataOverflowError

from autoreply import perf
from autoreply.client import MessagingClient
from autoreply.common import DEFAULT_GREETING, CorrespondentKind, classify_correspondent
from autoreply.events import (
    AuthenticatedEvent,
    AuthFailureEvent,
    DisconnectedEvent,
    ErrorEvent,
    LifecycleEvent,
    LoadingScreenEvent,
    MessageEvent,
    QrEvent,
    ReadyEvent,
)
from autoreply.qr import qr_data_url
from autoreply.reply_store import ReplyStore

log = logging.getLogger(__name__)
lifecycle_log = logging.getLogger("lifecycle")


class SessionStatus(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_QR_SCAN = "awaiting_qr_scan"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"


@dataclass
class SessionState:
    status: SessionStatus = SessionStatus.UNINITIALIZED
    qr_payload: Optional[str] = None  # only while AWAITING_QR_SCAN
    reconnect_attempts: int = 0
    initializing: bool = False
    authenticated: bool = False
    gave_up: bool = False
    reconnect_task: Optional[asyncio.Task] = None
    last_reconnect_delay: Optional[float] = None
    last_disconnect_reason: Optional[str] = None
    last_error: Optional[str] = None
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def reconnect_pending(self) -> bool:
        return self.reconnect_task is not None and not self.reconnect_task.done()


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Linear backoff: attempt 1 waits base, attempt 2 waits 2*base, ..."""
    return base_delay * attempt


class SessionController:
    """Single owner of session state for one messaging client."""

    def __init__(
        self,
        client: MessagingClient,
        store: ReplyStore,
        *,
        greeting: str = DEFAULT_GREETING,
        reconnect_base_delay: float = 5.0,
        max_reconnect_attempts: int = 5,
    ):
        self.client = client
        self.store = store
        self.greeting = greeting
        self.reconnect_base_delay = reconnect_base_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.state = SessionState()
        self._lock = asyncio.Lock()
        self._stopped = False
        self._handlers: Dict[type, Callable[[Any], Awaitable[None]]] = {
            QrEvent: self._on_qr,
            ReadyEvent: self._on_ready,
            AuthenticatedEvent: self._on_authenticated,
            AuthFailureEvent: self._on_auth_failure,
            DisconnectedEvent: self._on_disconnected,
            LoadingScreenEvent: self._on_loading_screen,
            ErrorEvent: self._on_error,
            MessageEvent: self._on_message,
        }

    # ──────────────────────────────────────────────────────────────
    # Entry points
    # ──────────────────────────────────────────────────────────────

    async def start(self) -> bool:
        """Kick off the first session initialize."""
        lifecycle_log.info("SESSION | INIT | START")
        return await self._initialize("startup")

    async def stop(self) -> None:
        """Cancel any pending or in-flight reconnect. No reconnect is scheduled afterwards."""
        self._stopped = True
        task = self.state.reconnect_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.state.reconnect_task = None

    async def run(self, events: "asyncio.Queue[Optional[LifecycleEvent]]") -> None:
        """Consume events until a None sentinel is queued."""
        while True:
            event = await events.get()
            try:
                if event is None:
                    log.info("Event consumer stopping")
                    return
                await self.handle_event(event)
            finally:
                events.task_done()

    async def handle_event(self, event: LifecycleEvent) -> None:
        """Dispatch one event. Handler errors are logged and contained here."""
        handler = self._handlers.get(type(event))
        if handler is None:
            log.warning(f"No handler for event {type(event).__name__}, ignoring")
            return
        async with self._lock:
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.state.last_error = f"{event.type}: {e}"
                log.exception(f"Error handling {event.type} event: {e}")
                perf.error("event_handler_failed", component="controller", event=event.type)

    # ──────────────────────────────────────────────────────────────
    # Snapshots for the status server
    # ──────────────────────────────────────────────────────────────

    def get_status(self) -> Dict[str, Any]:
        st = self.state
        return {
            "status": st.status.value,
            "hasQR": st.qr_payload is not None,
            "repliedCount": len(self.store),
            "reconnectAttempts": st.reconnect_attempts,
            "gaveUp": st.gave_up,
            "authenticated": st.authenticated,
            "updatedAt": st.updated_at.isoformat(),
        }

    def get_qr_image(self) -> Optional[str]:
        payload = self.state.qr_payload
        if not payload:
            return None
        try:
            return qr_data_url(payload)
        except DataOverflowError:
            log.error(f"QR payload too large to render ({len(payload)} chars)")
            perf.error("qr_render_failed", component="controller")
            return None

    def reconnect_delay(self, attempt: int) -> float:
        return backoff_delay(self.reconnect_base_delay, attempt)

    # ──────────────────────────────────────────────────────────────
    # Lifecycle handlers
    # ──────────────────────────────────────────────────────────────

    def _set_status(self, status: SessionStatus) -> None:
        st = self.state
        if status is not SessionStatus.AWAITING_QR_SCAN:
            st.qr_payload = None
        if st.status is not status:
            lifecycle_log.info(f"STATUS | {st.status.value} -> {status.value}")
        st.status = status
        st.updated_at = datetime.now()

    async def _on_qr(self, event: QrEvent) -> None:
        st = self.state
        st.reconnect_attempts = 0
        st.gave_up = False
        self._set_status(SessionStatus.AWAITING_QR_SCAN)
        st.qr_payload = event.payload
        log.info("QR code received, scan it on the status page to log in")

    async def _on_ready(self, event: ReadyEvent) -> None:
        st = self.state
        st.reconnect_attempts = 0
        st.initializing = False
        st.gave_up = False
        self._set_status(SessionStatus.READY)
        log.info("Session is ready and connected")

    async def _on_authenticated(self, event: AuthenticatedEvent) -> None:
        self.state.authenticated = True
        log.info("Session authenticated")

    async def _on_auth_failure(self, event: AuthFailureEvent) -> None:
        st = self.state
        st.initializing = False
        st.authenticated = False
        st.last_error = f"auth_failure: {event.info}"
        self._set_status(SessionStatus.AUTH_FAILED)
        log.error(f"Authentication failed: {event.info}")

    async def _on_disconnected(self, event: DisconnectedEvent) -> None:
        st = self.state
        st.authenticated = False
        st.last_disconnect_reason = event.reason
        self._set_status(SessionStatus.DISCONNECTED)
        log.warning(f"Disconnected: {event.reason or 'unknown reason'}")
        self._schedule_reconnect(f"disconnected ({event.reason})")

    async def _on_loading_screen(self, event: LoadingScreenEvent) -> None:
        log.info(f"Loading {event.percent:g}% {event.message}".rstrip())

    async def _on_error(self, event: ErrorEvent) -> None:
        self.state.last_error = event.error
        log.error(f"Client error: {event.error}")

    async def _on_message(self, event: MessageEvent) -> None:
        sender = event.sender_id
        kind = classify_correspondent(sender)
        if kind is not CorrespondentKind.PRIVATE:
            log.debug(f"Message from {kind.value} {sender}, ignoring")
            return

        if self.store.has(sender):
            log.info(f"Message from already greeted {sender}, no auto-reply sent")
            return

        try:
            await self.client.send_reply(sender, self.greeting)
        except Exception as e:
            # Not marked: the next message from this sender retries.
            log.error(f"Failed to send auto-reply to {sender}: {e}")
            perf.incr("reply_failed", component="controller")
            return

        self.store.mark_replied(sender)
        log.info(f"Auto-reply sent to new private correspondent {sender}")
        perf.incr("replies_sent", component="controller")

    # ──────────────────────────────────────────────────────────────
    # Reconnect policy
    # ──────────────────────────────────────────────────────────────

    def _schedule_reconnect(self, why: str) -> None:
        st = self.state
        if self._stopped:
            lifecycle_log.info(f"RECONNECT | SKIPPED | controller stopped | {why}")
            return
        # The reconnect task itself reschedules when its initialize fails.
        if st.reconnect_pending and st.reconnect_task is not asyncio.current_task():
            lifecycle_log.info(f"RECONNECT | ALREADY_PENDING | {why}")
            return
        if st.initializing:
            lifecycle_log.info(f"RECONNECT | SKIPPED | initialize in flight | {why}")
            return
        if st.reconnect_attempts >= self.max_reconnect_attempts:
            st.gave_up = True
            st.updated_at = datetime.now()
            log.error(
                f"Giving up after {st.reconnect_attempts} reconnect attempts, "
                f"restart the responder to try again"
            )
            lifecycle_log.info(f"RECONNECT | GAVE_UP | attempts={st.reconnect_attempts}")
            perf.incr("reconnect_gave_up", component="controller")
            return

        st.reconnect_attempts += 1
        attempt = st.reconnect_attempts
        delay = self.reconnect_delay(attempt)
        st.last_reconnect_delay = delay
        st.reconnect_task = asyncio.create_task(
            self._reconnect_after(delay, attempt), name=f"reconnect-{attempt}"
        )
        log.info(f"Reinitializing session in {delay:g}s (attempt {attempt}/{self.max_reconnect_attempts})")
        lifecycle_log.info(f"RECONNECT | SCHEDULED | attempt={attempt} delay={delay:g}s | {why}")
        perf.incr("reconnect_scheduled", component="controller", attempt=attempt)

    async def _reconnect_after(self, delay: float, attempt: int) -> None:
        """Reconnect task body. Stays in state.reconnect_task until the initialize finishes,
        so stop() can cancel it mid-flight."""
        try:
            await asyncio.sleep(delay)
            if self.state.status is SessionStatus.READY:
                lifecycle_log.info(f"RECONNECT | SKIPPED | attempt={attempt} | already ready")
                return
            lifecycle_log.info(f"RECONNECT | FIRE | attempt={attempt}")
            await self._initialize(f"reconnect attempt {attempt}")
        finally:
            # A failed initialize may already have replaced us with the next attempt.
            if self.state.reconnect_task is asyncio.current_task():
                self.state.reconnect_task = None

    async def _initialize(self, reason: str) -> bool:
        st = self.state
        if self._stopped:
            log.info(f"Controller stopped, not initializing ({reason})")
            return False
        if st.initializing:
            log.info(f"Initialize already in flight, skipping ({reason})")
            return False
        st.initializing = True
        try:
            await self.client.initialize_session()
        except Exception as e:
            error = e
        else:
            return True
        finally:
            st.initializing = False

        st.last_error = f"initialize: {error}"
        log.error(f"Session initialize failed ({reason}): {error}")
        perf.error("initialize_failed", component="controller")
        self._schedule_reconnect(f"initialize failed ({reason})")
        return False

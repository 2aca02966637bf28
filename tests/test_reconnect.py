"""
Tests for the reconnect policy.

Covers:
- Linear backoff delays
- Attempt counter capped at max_reconnect_attempts, then gave_up
- Counter reset on qr / ready
- No duplicate scheduling while a reconnect is pending or initialize is in flight
- Fire-time status check (ready before fire skips reinitialize)
- Initialize failures feed back into the policy
"""
import asyncio

import pytest

from autoreply.events import DisconnectedEvent, QrEvent, ReadyEvent
from autoreply.session import SessionController, SessionStatus, backoff_delay

from conftest import drain_reconnects


class TestBackoffDelay:
    def test_linear(self):
        assert [backoff_delay(5, n) for n in range(1, 6)] == [5, 10, 15, 20, 25]

    def test_non_decreasing(self):
        delays = [backoff_delay(2.5, n) for n in range(1, 10)]
        assert delays == sorted(delays)

    def test_zero_base(self):
        assert backoff_delay(0, 4) == 0


@pytest.mark.asyncio
class TestReconnectScheduling:
    async def test_disconnect_schedules_first_attempt(self, controller, fake_client):
        await controller.handle_event(ReadyEvent())
        await controller.handle_event(DisconnectedEvent(reason="LOGOUT"))
        assert controller.state.reconnect_attempts == 1
        assert controller.state.reconnect_pending
        await drain_reconnects(controller)
        assert fake_client.initialize_calls == 1
        assert controller.state.initializing is False

    async def test_delay_uses_attempt_number(self, fake_client, store):
        ctl = SessionController(fake_client, store, reconnect_base_delay=5, max_reconnect_attempts=5)
        await ctl.handle_event(DisconnectedEvent(reason="x"))
        assert ctl.state.last_reconnect_delay == 5
        await ctl.stop()

    async def test_attempts_capped_then_gives_up(self, controller, fake_client):
        delays = []
        for _ in range(3):
            await controller.handle_event(DisconnectedEvent(reason="CONFLICT"))
            delays.append(controller.state.last_reconnect_delay)
            await drain_reconnects(controller)

        await controller.handle_event(DisconnectedEvent(reason="CONFLICT"))
        st = controller.state
        assert st.reconnect_attempts == 3
        assert st.gave_up is True
        assert not st.reconnect_pending
        assert fake_client.initialize_calls == 3
        assert delays == sorted(delays)

    async def test_no_more_attempts_after_giving_up(self, controller, fake_client):
        for _ in range(6):
            await controller.handle_event(DisconnectedEvent(reason="x"))
            await drain_reconnects(controller)
        assert controller.state.reconnect_attempts == 3
        assert fake_client.initialize_calls == 3

    async def test_delays_grow_with_attempts(self, fake_client, store):
        ctl = SessionController(fake_client, store, reconnect_base_delay=0.001, max_reconnect_attempts=4)
        delays = []
        for _ in range(4):
            await ctl.handle_event(DisconnectedEvent(reason="x"))
            delays.append(ctl.state.last_reconnect_delay)
            await drain_reconnects(ctl)
        assert delays == [0.001, 0.002, 0.003, 0.004]
        await ctl.stop()

    async def test_ready_resets_counter(self, controller):
        await controller.handle_event(DisconnectedEvent(reason="x"))
        await drain_reconnects(controller)
        await controller.handle_event(DisconnectedEvent(reason="x"))
        await drain_reconnects(controller)
        assert controller.state.reconnect_attempts == 2
        await controller.handle_event(ReadyEvent())
        assert controller.state.reconnect_attempts == 0

    async def test_qr_resets_counter_and_gave_up(self, controller):
        for _ in range(4):
            await controller.handle_event(DisconnectedEvent(reason="x"))
            await drain_reconnects(controller)
        assert controller.state.gave_up is True
        await controller.handle_event(QrEvent(payload="2@fresh"))
        assert controller.state.reconnect_attempts == 0
        assert controller.state.gave_up is False


@pytest.mark.asyncio
class TestReconnectGuards:
    async def test_no_duplicate_while_pending(self, fake_client, store):
        ctl = SessionController(fake_client, store, reconnect_base_delay=10, max_reconnect_attempts=5)
        await ctl.handle_event(DisconnectedEvent(reason="a"))
        first = ctl.state.reconnect_task
        await ctl.handle_event(DisconnectedEvent(reason="b"))
        assert ctl.state.reconnect_task is first
        assert ctl.state.reconnect_attempts == 1
        await ctl.stop()
        assert fake_client.initialize_calls == 0

    async def test_skipped_while_initializing(self, controller):
        controller.state.initializing = True
        await controller.handle_event(DisconnectedEvent(reason="x"))
        assert controller.state.reconnect_attempts == 0
        assert not controller.state.reconnect_pending

    async def test_ready_before_fire_skips_reinitialize(self, fake_client, store):
        ctl = SessionController(fake_client, store, reconnect_base_delay=0.05, max_reconnect_attempts=5)
        await ctl.handle_event(DisconnectedEvent(reason="x"))
        await ctl.handle_event(ReadyEvent())
        await drain_reconnects(ctl)
        assert fake_client.initialize_calls == 0
        assert ctl.state.status is SessionStatus.READY

    async def test_fires_when_not_ready(self, fake_client, store):
        ctl = SessionController(fake_client, store, reconnect_base_delay=0.01, max_reconnect_attempts=5)
        await ctl.handle_event(DisconnectedEvent(reason="x"))
        await ctl.handle_event(QrEvent(payload="2@abc"))
        await drain_reconnects(ctl)
        assert fake_client.initialize_calls == 1

    async def test_stop_cancels_pending(self, fake_client, store):
        ctl = SessionController(fake_client, store, reconnect_base_delay=10, max_reconnect_attempts=5)
        await ctl.handle_event(DisconnectedEvent(reason="x"))
        task = ctl.state.reconnect_task
        await ctl.stop()
        assert task.cancelled()
        assert ctl.state.reconnect_task is None


@pytest.mark.asyncio
class TestInitializeFailures:
    async def test_failed_initialize_reschedules_until_cap(self, controller, fake_client):
        fake_client.fail_initialize = True
        await controller.handle_event(DisconnectedEvent(reason="x"))
        await drain_reconnects(controller)
        st = controller.state
        assert fake_client.initialize_calls == 3
        assert st.reconnect_attempts == 3
        assert st.gave_up is True
        assert st.initializing is False

    async def test_recovers_when_initialize_starts_working(self, controller, fake_client):
        fake_client.fail_initialize_count = 1
        await controller.handle_event(DisconnectedEvent(reason="x"))
        await drain_reconnects(controller)
        st = controller.state
        # attempt 1 failed, attempt 2 succeeded, nothing further scheduled
        assert fake_client.initialize_calls == 2
        assert st.reconnect_attempts == 2
        assert st.reconnect_task is None
        assert not st.reconnect_pending
        assert st.gave_up is False
        assert st.initializing is False
        await controller.handle_event(ReadyEvent())
        assert controller.state.reconnect_attempts == 0


@pytest.mark.asyncio
class TestStopDuringReconnect:
    async def test_stop_cancels_in_flight_initialize(self, fake_client, store):
        fake_client.initialize_delay = 0.2
        fake_client.fail_initialize = True
        ctl = SessionController(fake_client, store, reconnect_base_delay=0.01, max_reconnect_attempts=5)
        await ctl.handle_event(DisconnectedEvent(reason="x"))
        task = ctl.state.reconnect_task
        while fake_client.initialize_calls == 0:
            await asyncio.sleep(0.005)
        assert ctl.state.initializing is True
        assert ctl.state.reconnect_task is task

        await ctl.stop()
        await asyncio.sleep(0.5)
        assert task.cancelled()
        assert fake_client.initialize_calls == 1
        assert ctl.state.reconnect_attempts == 1
        assert ctl.state.reconnect_task is None
        assert ctl.state.initializing is False

    async def test_no_reconnect_scheduled_after_stop(self, controller, fake_client):
        await controller.stop()
        await controller.handle_event(DisconnectedEvent(reason="x"))
        assert controller.state.reconnect_attempts == 0
        assert not controller.state.reconnect_pending
        assert controller.state.status is SessionStatus.DISCONNECTED
        assert await controller.start() is False
        assert fake_client.initialize_calls == 0

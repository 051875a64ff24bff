"""
Tests for the inactivity monitor: firing, throttling, disabling and the
visibility catch-up, all on virtual time.
"""
import asyncio
import threading
from unittest import mock

import pytest

from conftest import ManualScheduler
from ppswz_portal.session_timeout import (ACTIVITY_EVENTS, VISIBILITY_EVENT, ActivityChannel,
                                          AsyncioScheduler, InactivityMonitor, MonitorState,
                                          ThreadingScheduler)


class StickyScheduler(ManualScheduler):
    """Handles that ignore cancel(), like a timer thread already running."""

    def call_later(self, delay, callback, *args):
        handle = super().call_later(delay, callback, *args)
        handle.cancel = lambda: None
        return handle


def make_monitor(scheduler, timeout_minutes=1, clock=None, **kwargs):
    channel = ActivityChannel("test")
    on_timeout = mock.Mock()
    monitor = InactivityMonitor(channel, on_timeout, timeout_minutes=timeout_minutes,
                                scheduler=scheduler, clock=clock or scheduler.now, **kwargs)
    return channel, monitor, on_timeout


class TestScenarios:

    def test_fires_once_after_timeout_without_activity(self, scheduler):
        _, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(59.9)
        on_timeout.assert_not_called()

        scheduler.advance_to(60.1)
        on_timeout.assert_called_once_with()

        scheduler.advance_to(1000)
        assert on_timeout.call_count == 1

    def test_click_pushes_the_deadline_back(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(50)
        channel.emit("click")

        scheduler.advance_to(60)
        on_timeout.assert_not_called()

        # The throttled reset ran at t=51, so the deadline is t=111.
        scheduler.advance_to(110.9)
        on_timeout.assert_not_called()
        scheduler.advance_to(111.1)
        on_timeout.assert_called_once_with()

    def test_mousemove_burst_causes_a_single_reset(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=5)

        with mock.patch.object(monitor, "reset_timeout", wraps=monitor.reset_timeout) as reset_spy:
            for _ in range(50):
                channel.emit("mousemove")
                scheduler.advance(0.01)
            scheduler.advance_to(1.5)
            assert reset_spy.call_count == 1

        scheduler.advance_to(300.9)
        on_timeout.assert_not_called()
        scheduler.advance_to(301.1)
        on_timeout.assert_called_once_with()

    def test_disable_silences_the_monitor(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(10)
        monitor.set_enabled(False)
        scheduler.advance_to(1000)

        on_timeout.assert_not_called()
        assert monitor.state is MonitorState.DISABLED
        assert channel.receiver_count("click") == 0


class TestActivity:

    def test_steady_activity_never_times_out(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        for _ in range(20):
            scheduler.advance(30)
            channel.emit("keydown")

        on_timeout.assert_not_called()

    @pytest.mark.parametrize("event", ACTIVITY_EVENTS)
    def test_every_monitored_event_resets(self, scheduler, event):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(45)
        channel.emit(event)
        scheduler.advance_to(100)

        on_timeout.assert_not_called()
        assert monitor.last_activity == pytest.approx(46)

    def test_state_moves_through_throttle_window(self, scheduler):
        channel, monitor, _ = make_monitor(scheduler, timeout_minutes=1)
        assert monitor.state is MonitorState.ARMED

        channel.emit("scroll")
        assert monitor.state is MonitorState.THROTTLED

        scheduler.advance(1.0)
        assert monitor.state is MonitorState.ARMED

    def test_activity_after_timeout_starts_a_new_episode(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(61)
        assert on_timeout.call_count == 1
        assert monitor.state is MonitorState.EXPIRED

        scheduler.advance_to(70)
        channel.emit("click")
        scheduler.advance_to(130)
        assert on_timeout.call_count == 1
        scheduler.advance_to(131.5)
        assert on_timeout.call_count == 2

    def test_last_activity_never_moves_backwards(self, scheduler):
        wall = [100.0]
        channel, monitor, _ = make_monitor(scheduler, clock=lambda: wall[0])

        wall[0] = 40.0
        monitor.reset_timeout()

        assert monitor.last_activity == 100.0

    def test_stale_timer_cannot_fire(self):
        scheduler = StickyScheduler()
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(30)
        channel.emit("click")
        scheduler.advance_to(61)
        on_timeout.assert_not_called()

        scheduler.advance_to(91.5)
        on_timeout.assert_called_once_with()

    def test_stale_throttle_after_reenable_is_ignored(self):
        scheduler = StickyScheduler()
        channel, monitor, _ = make_monitor(scheduler, timeout_minutes=1)

        channel.emit("click")
        scheduler.advance_to(0.2)
        monitor.disable()
        monitor.enable()
        scheduler.advance_to(0.5)
        channel.emit("click")

        scheduler.advance_to(1.2)
        assert monitor.state is MonitorState.THROTTLED
        assert monitor.last_activity == pytest.approx(0.2)

        scheduler.advance_to(1.6)
        assert monitor.state is MonitorState.ARMED
        assert monitor.last_activity == pytest.approx(1.5)


class TestVisibility:

    def test_catch_up_fires_immediately_when_timer_was_late(self, scheduler):
        wall = [0.0]
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1, clock=lambda: wall[0])

        channel.emit(VISIBILITY_EVENT, state="hidden")
        wall[0] = 90.0  # page hidden, timers not delivered
        channel.emit(VISIBILITY_EVENT, state="visible")

        on_timeout.assert_called_once_with()

        # The delayed countdown must not fire a second time.
        scheduler.advance(120)
        assert on_timeout.call_count == 1

    def test_visible_before_deadline_rearms_full_duration(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(30)
        channel.emit(VISIBILITY_EVENT, state="visible")

        scheduler.advance_to(61)
        on_timeout.assert_not_called()
        scheduler.advance_to(90.5)
        on_timeout.assert_called_once_with()

    def test_hidden_transition_is_ignored(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(30)
        channel.emit(VISIBILITY_EVENT, state="hidden")
        scheduler.advance_to(60.5)

        on_timeout.assert_called_once_with()

    def test_no_second_fire_after_timer_already_fired(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(61)
        channel.emit(VISIBILITY_EVENT, state="visible")

        assert on_timeout.call_count == 1


class TestLifecycle:

    def test_disable_cancels_pending_throttle(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        channel.emit("mousedown")
        monitor.disable()

        assert scheduler.pending == 0
        scheduler.advance(500)
        on_timeout.assert_not_called()

    def test_reenable_starts_fresh(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, timeout_minutes=1)

        scheduler.advance_to(30)
        monitor.disable()
        scheduler.advance_to(100)
        monitor.enable()

        scheduler.advance_to(159)
        on_timeout.assert_not_called()
        scheduler.advance_to(160.5)
        on_timeout.assert_called_once_with()

    def test_disabled_monitor_ignores_events(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, enabled=False)

        assert channel.emit("click") == 0
        assert scheduler.pending == 0
        assert monitor.state is MonitorState.DISABLED

    def test_context_manager_scopes_listeners(self, scheduler):
        channel, monitor, on_timeout = make_monitor(scheduler, enabled=False)

        with monitor:
            assert monitor.state is MonitorState.ARMED
            assert channel.receiver_count("keydown") == 1
            assert channel.receiver_count(VISIBILITY_EVENT) == 1

        assert monitor.state is MonitorState.DISABLED
        assert channel.receiver_count("keydown") == 0
        assert scheduler.pending == 0

    def test_enable_twice_keeps_one_listener(self, scheduler):
        channel, monitor, _ = make_monitor(scheduler)
        monitor.enable()

        assert channel.receiver_count("click") == 1

    def test_callback_exception_propagates(self, scheduler):
        channel = ActivityChannel("test")
        on_timeout = mock.Mock(side_effect=RuntimeError("sign out failed"))
        InactivityMonitor(channel, on_timeout, timeout_minutes=1, scheduler=scheduler, clock=scheduler.now)

        with pytest.raises(RuntimeError, match="sign out failed"):
            scheduler.advance(61)

    def test_rejects_bad_arguments(self, scheduler):
        channel = ActivityChannel("test")
        with pytest.raises(ValueError):
            InactivityMonitor(channel, lambda: None, timeout_minutes=0, scheduler=scheduler)
        with pytest.raises(ValueError):
            InactivityMonitor(channel, lambda: None, throttle_seconds=-1, scheduler=scheduler)
        with pytest.raises(TypeError):
            InactivityMonitor(channel, "not callable", scheduler=scheduler)


class TestActivityChannel:

    def test_unknown_signal_is_rejected(self):
        channel = ActivityChannel()
        with pytest.raises(ValueError):
            channel.emit("wheel")

    def test_subscription_dispose_is_idempotent(self):
        channel = ActivityChannel()
        received = []
        subscription = channel.connect("click", lambda sender, **kw: received.append(sender))

        assert channel.emit("click") == 1
        subscription.dispose()
        subscription.dispose()

        assert channel.emit("click") == 0
        assert received == [channel]

    def test_channels_do_not_share_receivers(self):
        first, second = ActivityChannel("a"), ActivityChannel("b")
        first.connect("click", lambda sender, **kw: None)

        assert second.emit("click") == 0


class TestRealSchedulers:

    def test_threading_scheduler_fires(self):
        fired = threading.Event()
        channel = ActivityChannel("threads")
        monitor = InactivityMonitor(channel, fired.set, timeout_minutes=0.0005,
                                    scheduler=ThreadingScheduler(), throttle_seconds=0.01)
        try:
            assert fired.wait(5)
        finally:
            monitor.close()

    def test_asyncio_scheduler_fires(self):
        async def run():
            fired = asyncio.Event()
            channel = ActivityChannel("loop")
            monitor = InactivityMonitor(channel, fired.set, timeout_minutes=0.0005,
                                        scheduler=AsyncioScheduler(), throttle_seconds=0.01)
            try:
                await asyncio.wait_for(fired.wait(), timeout=5)
            finally:
                monitor.close()
            return fired.is_set()

        assert asyncio.run(run())

"""
session_timeout.py
------------------
Inactivity-based session timeout. An InactivityMonitor listens to the
interaction signals of one browser session (delivered through an
ActivityChannel), keeps a countdown armed while the user is active, and
calls a callback once the countdown runs out uninterrupted.

Timers come from a scheduler object so the same monitor runs on timer
threads inside the web server, on an asyncio loop, or on virtual time in
tests.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

from blinker import NamedSignal

log = logging.getLogger(__name__)

ACTIVITY_EVENTS = (
    "mousedown",
    "mousemove",
    "keydown",
    "scroll",
    "touchstart",
    "click",
)
VISIBILITY_EVENT = "visibilitychange"

DEFAULT_TIMEOUT_MINUTES = 30
DEFAULT_THROTTLE_SECONDS = 1.0


# ------------------------------------------------------------
# Schedulers
# ------------------------------------------------------------
class ThreadingScheduler:
    """Runs delayed callbacks on daemon timer threads."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> threading.Timer:
        timer = threading.Timer(delay, callback, args)
        timer.daemon = True
        timer.start()
        return timer

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> threading.Timer:
        return self.call_later(0, callback, *args)


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop.

    Must be used from the loop's own thread.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback, *args)

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> asyncio.Handle:
        return self.loop.call_soon(callback, *args)


# ------------------------------------------------------------
# Activity channel
# ------------------------------------------------------------
class Subscription:
    """Handle returned by ActivityChannel.connect; dispose() detaches the receiver."""

    def __init__(self, signal: NamedSignal, receiver: Callable[..., Any], sender: Any) -> None:
        self._signal = signal
        self._receiver = receiver
        self._sender = sender
        self.active = True

    def dispose(self) -> None:
        if not self.active:
            return
        self._signal.disconnect(self._receiver, sender=self._sender)
        self.active = False


class ActivityChannel:
    """
    Named interaction signals for a single browser session.

    The web layer emits what the browser reports (pointer, keyboard and
    scroll events, visibility changes); monitors subscribe to it the way
    page scripts add document listeners.
    """

    SIGNALS = ACTIVITY_EVENTS + (VISIBILITY_EVENT,)

    def __init__(self, name: str = "session") -> None:
        self.name = name
        self._signals = {signal: NamedSignal(signal) for signal in self.SIGNALS}

    def connect(self, signal: str, receiver: Callable[..., Any]) -> Subscription:
        named = self._get(signal)
        named.connect(receiver, sender=self, weak=False)
        return Subscription(named, receiver, self)

    def emit(self, signal: str, **kwargs: Any) -> int:
        """Deliver a signal to its receivers; returns how many were notified."""
        return len(self._get(signal).send(self, **kwargs))

    def receiver_count(self, signal: str) -> int:
        return len(list(self._get(signal).receivers_for(self)))

    def _get(self, signal: str) -> NamedSignal:
        try:
            return self._signals[signal]
        except KeyError:
            raise ValueError(f"Unknown activity signal: {signal!r}") from None

    def __repr__(self) -> str:
        return f"ActivityChannel({self.name!r})"


# ------------------------------------------------------------
# Monitor
# ------------------------------------------------------------
class MonitorState(str, Enum):
    DISABLED = "disabled"
    ARMED = "armed"
    THROTTLED = "throttled"
    EXPIRED = "expired"


class InactivityMonitor:
    """
    Calls ``on_timeout`` once the channel has seen no activity for
    ``timeout_minutes``.

    Activity bursts are throttled: the first event of a burst schedules a
    single reset ``throttle_seconds`` later and later events are dropped
    until it runs. When the page becomes visible again the elapsed wall
    clock time is checked directly, because countdowns of a hidden page may
    be delivered late.

    After firing the monitor stays enabled but idle; the owner is expected
    to disable it (sign out) or fresh activity starts a new episode.
    Exceptions raised by ``on_timeout`` propagate to the caller that
    delivered the timer or visibility callback.
    """

    def __init__(
        self,
        channel: ActivityChannel,
        on_timeout: Callable[[], Any],
        timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
        enabled: bool = True,
        scheduler: Any = None,
        clock: Callable[[], float] = time.time,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
    ) -> None:
        if not callable(on_timeout):
            raise TypeError("on_timeout must be callable")
        if timeout_minutes <= 0:
            raise ValueError("timeout_minutes must be positive")
        if throttle_seconds < 0:
            raise ValueError("throttle_seconds must not be negative")

        self.channel = channel
        self.on_timeout = on_timeout
        self.timeout_minutes = timeout_minutes
        self.throttle_seconds = throttle_seconds
        self._scheduler = scheduler or ThreadingScheduler()
        self._clock = clock

        self._lock = threading.RLock()
        self._enabled = False
        self._expired = False
        self._last_activity = clock()
        self._timer = None
        self._timer_generation = 0
        self._throttle = None
        self._throttle_generation = 0
        self._subscriptions: list[Subscription] = []

        if enabled:
            self.enable()

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_minutes * 60

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def last_activity(self) -> float:
        return self._last_activity

    @property
    def state(self) -> MonitorState:
        with self._lock:
            if not self._enabled:
                return MonitorState.DISABLED
            if self._throttle is not None:
                return MonitorState.THROTTLED
            if self._timer is not None:
                return MonitorState.ARMED
            return MonitorState.EXPIRED

    def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self.enable()
        else:
            self.disable()

    def enable(self) -> None:
        """Attach listeners and arm a fresh countdown. No-op when already enabled."""
        with self._lock:
            if self._enabled:
                return
            self._enabled = True
            for event in ACTIVITY_EVENTS:
                self._subscriptions.append(self.channel.connect(event, self._on_activity))
            self._subscriptions.append(self.channel.connect(VISIBILITY_EVENT, self._on_visibility_change))
            self.reset_timeout()
        log.debug("Inactivity monitor enabled for %r (%s min)", self.channel, self.timeout_minutes)

    def disable(self) -> None:
        """Cancel the countdown and any pending throttled reset, detach listeners."""
        with self._lock:
            if not self._enabled:
                return
            self._enabled = False
            self._cancel_timer()
            self._throttle_generation += 1
            if self._throttle is not None:
                self._throttle.cancel()
                self._throttle = None
            for subscription in self._subscriptions:
                subscription.dispose()
            self._subscriptions = []
        log.debug("Inactivity monitor disabled for %r", self.channel)

    close = disable

    def reset_timeout(self) -> None:
        """Record activity now and re-arm the countdown."""
        with self._lock:
            self._last_activity = max(self._last_activity, self._clock())
            self._expired = False
            self._cancel_timer()
            if self._enabled:
                self._timer_generation += 1
                self._timer = self._scheduler.call_later(
                    self.timeout_seconds, self._on_timer, self._timer_generation
                )

    def elapsed(self) -> float:
        """Seconds of wall clock time since the last recorded activity."""
        return self._clock() - self._last_activity

    def __enter__(self) -> "InactivityMonitor":
        self.enable()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.disable()

    # --- signal receivers ---

    def _on_activity(self, sender: Any, **kwargs: Any) -> None:
        with self._lock:
            if not self._enabled or self._throttle is not None:
                return
            self._throttle_generation += 1
            self._throttle = self._scheduler.call_later(
                self.throttle_seconds, self._throttled_reset, self._throttle_generation
            )

    def _throttled_reset(self, generation: int) -> None:
        with self._lock:
            if not self._enabled or generation != self._throttle_generation:
                return
            self._throttle = None
            self.reset_timeout()

    def _on_visibility_change(self, sender: Any, state: str = "visible", **kwargs: Any) -> None:
        with self._lock:
            if not self._enabled or state != "visible":
                return
            if self.elapsed() < self.timeout_seconds:
                self.reset_timeout()
                return
            # Countdown may not have been delivered while hidden.
            self._cancel_timer()
            if self._expired:
                return
            self._expired = True
        log.info("Inactivity timeout caught up on visibility change for %r", self.channel)
        self.on_timeout()

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if not self._enabled or generation != self._timer_generation or self._expired:
                return
            self._timer = None
            self._expired = True
        log.info("Inactivity timeout reached for %r", self.channel)
        self.on_timeout()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

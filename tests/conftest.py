"""
Shared fixtures: a virtual-time scheduler for the session timeout tests and
a portal app backed by a temporary SQLite database.
"""
import heapq
import itertools

import pytest

from ppswz_portal import database
from ppswz_portal.app import create_app
from ppswz_portal.auth import get_registry


class ManualHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by advance(); its clock only moves when told to."""

    def __init__(self, start=0.0):
        self.time = start
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.time

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.time + delay, callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def call_soon(self, callback, *args):
        return self.call_later(0, callback, *args)

    def advance(self, seconds):
        target = self.time + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.time = when
            handle.callback(*handle.args)
        self.time = target

    def advance_to(self, when):
        self.advance(when - self.time)

    def run_pending(self):
        self.advance(0)

    @property
    def pending(self):
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def app(tmp_path, scheduler):
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
        'DATABASE_PATH': str(tmp_path / 'portal.db'),
        'ADVERTISEMENT_IMAGE_DIR': str(tmp_path / 'advertisements'),
        'SESSION_TIMEOUT_MINUTES': 1,
    }, scheduler=scheduler)
    registry = get_registry(app)
    registry.clock = scheduler.now
    yield app
    registry.teardown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def registry(app):
    return get_registry(app)


@pytest.fixture
def member(app):
    """A signed-up member account: (user_id, email, password)."""
    user_id = get_registry(app).auth_service.sign_up("amina@example.com", "secret123", "Amina Said")
    return user_id, "amina@example.com", "secret123"


@pytest.fixture
def admin(app):
    user_id = get_registry(app).auth_service.sign_up("admin@ppswz.or.tz", "adminpass", "Site Admin")
    database.set_user_role(user_id, "admin")
    return user_id, "admin@ppswz.or.tz", "adminpass"


def login(client, email, password):
    return client.post('/auth', data={'mode': 'login', 'email': email, 'password': password})

"""
auth.py
-------
Handles user authentication for the portal: account creation, password
sign-in, sign-out and role lookup. Each signed-in browser session gets an
AuthState holder owned by the SessionRegistry, which also runs that
session's inactivity monitor. Provides login_required / admin_required
wrappers for restricting dashboard access.
"""

import logging
import secrets
import sqlite3
import threading
import time
from functools import wraps

from blinker import NamedSignal
from flask import current_app, flash, g, jsonify, redirect, request, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from . import database
from .session_timeout import ActivityChannel, InactivityMonitor, ThreadingScheduler

log = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

LOGOUT_REASON = "logout"
INACTIVITY_REASON = "inactivity"
TIMEOUT_MESSAGE = "Session expired due to inactivity. Please log in again."

REGISTRY_EXTENSION = "ppswz_sessions"


class AuthError(Exception):
    """Raised when a sign-up or sign-in request cannot be honoured."""


def _public_profile(profile):
    return {key: value for key, value in profile.items() if key != "password_hash"}


class AuthService:
    """Credential checks and session bookkeeping on top of the portal database."""

    def sign_up(self, email, password, full_name=None):
        if database.get_profile_by_email(email):
            raise AuthError("An account with this email already exists")
        try:
            user_id = database.create_profile(email, generate_password_hash(password), full_name)
        except sqlite3.IntegrityError as e:
            raise AuthError("An account with this email already exists") from e
        database.log_activity("user_registered", f"New account: {email}", user_id=user_id)
        log.info(f"Registered new user {user_id}")
        return user_id

    def sign_in(self, email, password):
        """Verify credentials and open a session; returns (profile, token)."""
        profile = database.get_profile_by_email(email)
        if profile is None or not check_password_hash(profile["password_hash"], password):
            raise AuthError("Invalid login credentials")

        token = secrets.token_urlsafe(32)
        database.create_auth_session(token, profile["id"])
        database.log_activity("login", "Signed in", user_id=profile["id"])
        return _public_profile(profile), token

    def get_session(self, token):
        """Return (profile, session_row) for a live session, or None."""
        row = database.get_auth_session(token)
        if row is None or row["revoked_at"] is not None:
            return None
        profile = database.get_profile(row["user_id"])
        if profile is None:
            return None
        return _public_profile(profile), row

    def sign_out(self, token, user_id=None, reason=LOGOUT_REASON):
        if not database.revoke_auth_session(token, reason):
            return False
        if reason == INACTIVITY_REASON:
            database.log_activity("session_timeout", "Signed out after inactivity", user_id=user_id)
        else:
            database.log_activity("logout", "Signed out", user_id=user_id)
        return True

    def fetch_user_role(self, user_id):
        try:
            return database.get_user_role(user_id)
        except sqlite3.Error as e:
            log.error(f"Error fetching user role: {e}")
            return None


class AuthState:
    """Auth state of one browser session: who is signed in, with which role."""

    def __init__(self, user, token):
        self.user = user
        self.token = token
        self.role = None
        self.loading = True
        self.channel = ActivityChannel(name=f"session:{user['id']}")
        self.monitor = None
        self._lock = threading.Lock()

    def resolve(self, fetch):
        """Load the role with fetch(user_id) unless it is already known; returns the role."""
        with self._lock:
            if self.loading:
                self.role = fetch(self.user_id)
                self.loading = False
            return self.role

    def set_role(self, role):
        with self._lock:
            self.role = role
            self.loading = False

    @property
    def user_id(self):
        return self.user["id"]

    @property
    def is_admin(self):
        return self.role == "admin"

    def __repr__(self):
        return f"AuthState(user={self.user_id!r}, role={self.role!r}, loading={self.loading})"


class SessionRegistry:
    """
    Owns the AuthState of every signed-in session and the inactivity
    monitor attached to it.

    Listeners of ``auth_state_changed`` receive ``event`` (SIGNED_IN or
    SIGNED_OUT) and ``state``. The registry's own listener does not look
    up the role while the signal is being dispatched; it posts the lookup
    to the scheduler instead. Call ``resolve_role`` when the role is needed
    before that task has run.
    """

    def __init__(self, auth_service, scheduler=None, timeout_minutes=30, throttle_seconds=1.0,
                 clock=time.time):
        self.auth_service = auth_service
        self.scheduler = scheduler or ThreadingScheduler()
        self.timeout_minutes = timeout_minutes
        self.throttle_seconds = throttle_seconds
        self.clock = clock
        self.auth_state_changed = NamedSignal("auth-state-changed")
        self._states = {}
        self._lock = threading.RLock()
        self._initialized = False

    def init(self):
        if self._initialized:
            return
        self.auth_state_changed.connect(self._on_auth_state_change, sender=self, weak=False)
        self._initialized = True

    def teardown(self):
        """Close every monitor and forget all sessions (application stop)."""
        with self._lock:
            states = list(self._states.values())
            self._states.clear()
        for state in states:
            state.monitor.close()
        if self._initialized:
            self.auth_state_changed.disconnect(self._on_auth_state_change, sender=self)
            self._initialized = False

    def __len__(self):
        return len(self._states)

    def get(self, token):
        with self._lock:
            return self._states.get(token)

    def sign_in(self, email, password):
        user, token = self.auth_service.sign_in(email, password)
        return self._open(user, token)

    def restore(self, token):
        """Rebuild the state of a live session unknown to this process (e.g. after a restart)."""
        existing = self.get(token)
        if existing is not None:
            return existing
        found = self.auth_service.get_session(token)
        if found is None:
            return None
        user, _row = found
        return self._open(user, token)

    def sign_out(self, token, reason=LOGOUT_REASON):
        with self._lock:
            state = self._states.pop(token, None)
        user_id = state.user_id if state else None
        try:
            self.auth_service.sign_out(token, user_id=user_id, reason=reason)
        except sqlite3.Error as e:
            log.error(f"Error signing out session: {e}")
        finally:
            if state is not None:
                state.monitor.close()
                self.auth_state_changed.send(self, event=SIGNED_OUT, state=state)
        return state

    def expire(self, token):
        log.info("Session expired due to inactivity")
        return self.sign_out(token, reason=INACTIVITY_REASON)

    def resolve_role(self, state):
        return state.resolve(self.auth_service.fetch_user_role)

    def apply_role(self, user_id, role):
        """Push a role change to the live sessions of user_id."""
        with self._lock:
            states = [state for state in self._states.values() if state.user_id == user_id]
        for state in states:
            state.set_role(role)
        return len(states)

    def _open(self, user, token):
        state = AuthState(user, token)
        state.monitor = InactivityMonitor(
            state.channel,
            on_timeout=lambda: self.expire(token),
            timeout_minutes=self.timeout_minutes,
            enabled=False,
            scheduler=self.scheduler,
            clock=self.clock,
            throttle_seconds=self.throttle_seconds,
        )
        with self._lock:
            existing = self._states.get(token)
            if existing is not None:
                return existing
            self._states[token] = state
        state.monitor.enable()
        self.auth_state_changed.send(self, event=SIGNED_IN, state=state)
        return state

    def _on_auth_state_change(self, sender, event, state, **kwargs):
        if event == SIGNED_IN:
            self.scheduler.call_soon(self._load_role, state)
        else:
            state.role = None

    def _load_role(self, state):
        if state.loading:
            self.resolve_role(state)


# ------------------------------------------------------------
# View helpers
# ------------------------------------------------------------
def get_registry(app=None):
    return (app or current_app).extensions[REGISTRY_EXTENSION]


def current_auth():
    return g.get("auth")


def wants_json():
    return request.is_json or request.accept_mimetypes.best == "application/json"


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if current_auth() is None:
            if wants_json():
                return jsonify({"success": False, "error": "Authentication required"}), 401
            flash("Please log in to continue.", "info")
            return redirect(url_for("portal.auth_page", next=request.path))
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        state = current_auth()
        get_registry().resolve_role(state)
        if not state.is_admin:
            if wants_json():
                return jsonify({"success": False, "error": "Admin access required"}), 403
            flash("Admin access required.", "error")
            return redirect(url_for("portal.dashboard"))
        return view(*args, **kwargs)
    return wrapped

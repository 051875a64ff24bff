"""
database.py
-----------
Creates and manages the SQLite database used by the PPSWZ portal. Defines
functions for member profiles and roles, auth sessions, membership
applications, contact messages, advertisements and the activity log, plus
the aggregate queries behind the admin dashboard.
"""

import json
import os
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone

from . import config
from .utils import utc_now_iso

DATABASE_PATH = config.DATABASE_PATH

ROLES = ("admin", "user")
APPLICATION_STATUSES = ("pending", "approved", "rejected")


def configure(path):
    """Point the module at another database file (tests, CLI overrides)."""
    global DATABASE_PATH
    DATABASE_PATH = path


def get_db():
    db_dir = os.path.dirname(DATABASE_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _rows(rows):
    return [dict(row) for row in rows]


def init_db():
    conn = get_db()
    cursor = conn.cursor()

    cursor.executescript("""
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            full_name TEXT,
            phone TEXT,
            location TEXT,
            profession TEXT,
            organization TEXT,
            bio TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS user_roles (
            user_id TEXT PRIMARY KEY REFERENCES profiles(id) ON DELETE CASCADE,
            role TEXT NOT NULL DEFAULT 'user'
        );

        CREATE TABLE IF NOT EXISTS auth_sessions (
            token TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            created_at TEXT NOT NULL,
            revoked_at TEXT,
            revoke_reason TEXT
        );

        CREATE TABLE IF NOT EXISTS membership_applications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT REFERENCES profiles(id) ON DELETE SET NULL,
            membership_type TEXT NOT NULL,
            full_name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            profession TEXT NOT NULL,
            organization TEXT,
            experience_years INTEGER,
            motivation TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            created_at TEXT NOT NULL,
            reviewed_at TEXT
        );

        CREATE TABLE IF NOT EXISTS contact_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            message TEXT NOT NULL,
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS advertisements (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            content TEXT NOT NULL,
            image_url TEXT,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            priority INTEGER NOT NULL DEFAULT 0,
            created_by TEXT REFERENCES profiles(id) ON DELETE SET NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS activity_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT REFERENCES profiles(id) ON DELETE SET NULL,
            action TEXT NOT NULL,
            description TEXT,
            metadata TEXT,
            created_at TEXT NOT NULL
        );
    """)

    conn.commit()
    conn.close()


# ------------------------------------------------------------
# Profile and Role Functions
# ------------------------------------------------------------
def create_profile(email, password_hash, full_name=None, role="user"):
    """Insert a profile with its role row; returns the new user id."""
    user_id = str(uuid.uuid4())
    now = utc_now_iso()
    conn = get_db()
    cursor = conn.cursor()

    cursor.execute("""
        INSERT INTO profiles (id, email, password_hash, full_name, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (user_id, email.lower(), password_hash, full_name, now, now))
    cursor.execute("INSERT INTO user_roles (user_id, role) VALUES (?, ?)", (user_id, role))

    conn.commit()
    conn.close()
    return user_id


def get_profile(user_id):
    conn = get_db()
    row = conn.execute("SELECT * FROM profiles WHERE id = ?", (user_id,)).fetchone()
    conn.close()
    return dict(row) if row else None


def get_profile_by_email(email):
    conn = get_db()
    row = conn.execute("SELECT * FROM profiles WHERE email = ?", (email.lower(),)).fetchone()
    conn.close()
    return dict(row) if row else None


def update_profile(user_id, **fields):
    """Update editable profile columns; unknown keys are ignored."""
    editable = ("full_name", "phone", "location", "profession", "organization", "bio")
    updates = {key: value for key, value in fields.items() if key in editable}
    if not updates:
        return False

    assignments = ", ".join(f"{key} = ?" for key in updates)
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute(
        f"UPDATE profiles SET {assignments}, updated_at = ? WHERE id = ?",
        (*updates.values(), utc_now_iso(), user_id),
    )
    conn.commit()
    changed = cursor.rowcount > 0
    conn.close()
    return changed


def list_profiles_with_roles():
    """All profiles joined with their role, newest first (password hashes excluded)."""
    conn = get_db()
    rows = conn.execute("""
        SELECT p.id, p.email, p.full_name, p.phone, p.location, p.profession,
               p.organization, p.bio, p.created_at, COALESCE(r.role, 'user') AS role
        FROM profiles p
        LEFT JOIN user_roles r ON r.user_id = p.id
        ORDER BY p.created_at DESC
    """).fetchall()
    conn.close()
    return _rows(rows)


def get_user_role(user_id):
    conn = get_db()
    row = conn.execute("SELECT role FROM user_roles WHERE user_id = ?", (user_id,)).fetchone()
    conn.close()
    return row["role"] if row else None


def set_user_role(user_id, role):
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO user_roles (user_id, role) VALUES (?, ?)
        ON CONFLICT(user_id) DO UPDATE SET role = excluded.role
    """, (user_id, role))
    conn.commit()
    conn.close()


# ------------------------------------------------------------
# Auth Session Functions
# ------------------------------------------------------------
def create_auth_session(token, user_id):
    conn = get_db()
    conn.execute(
        "INSERT INTO auth_sessions (token, user_id, created_at) VALUES (?, ?, ?)",
        (token, user_id, utc_now_iso()),
    )
    conn.commit()
    conn.close()


def get_auth_session(token):
    conn = get_db()
    row = conn.execute("SELECT * FROM auth_sessions WHERE token = ?", (token,)).fetchone()
    conn.close()
    return dict(row) if row else None


def revoke_auth_session(token, reason):
    """Mark a session revoked; returns False when it was missing or already revoked."""
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        UPDATE auth_sessions SET revoked_at = ?, revoke_reason = ?
        WHERE token = ? AND revoked_at IS NULL
    """, (utc_now_iso(), reason, token))
    conn.commit()
    revoked = cursor.rowcount > 0
    conn.close()
    return revoked


# ------------------------------------------------------------
# Membership Application Functions
# ------------------------------------------------------------
def create_membership_application(application, user_id=None):
    """Store a validated application dict with status 'pending'."""
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO membership_applications (
            user_id, membership_type, full_name, email, phone, profession,
            organization, experience_years, motivation, status, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
    """, (
        user_id,
        application["membership_type"],
        application["full_name"],
        application["email"],
        application.get("phone"),
        application["profession"],
        application.get("organization"),
        application.get("experience_years"),
        application["motivation"],
        utc_now_iso(),
    ))
    conn.commit()
    application_id = cursor.lastrowid
    conn.close()
    return application_id


def get_membership_applications(user_id=None, limit=100):
    conn = get_db()
    if user_id is None:
        rows = conn.execute(
            "SELECT * FROM membership_applications ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM membership_applications WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
    conn.close()
    return _rows(rows)


def set_application_status(application_id, status):
    if status not in APPLICATION_STATUSES:
        raise ValueError(f"Unknown application status: {status}")
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute(
        "UPDATE membership_applications SET status = ?, reviewed_at = ? WHERE id = ?",
        (status, utc_now_iso(), application_id),
    )
    conn.commit()
    changed = cursor.rowcount > 0
    conn.close()
    return changed


# ------------------------------------------------------------
# Contact Message Functions
# ------------------------------------------------------------
def create_contact_message(name, email, message, phone=None):
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO contact_messages (name, email, phone, message, is_read, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (name, email, phone, message, False, utc_now_iso()))
    conn.commit()
    message_id = cursor.lastrowid
    conn.close()
    return message_id


def get_contact_messages(limit=50):
    conn = get_db()
    rows = conn.execute(
        "SELECT * FROM contact_messages ORDER BY created_at DESC, id DESC LIMIT ?", (limit,)
    ).fetchall()
    conn.close()
    return _rows(rows)


def mark_message_read(message_id):
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("UPDATE contact_messages SET is_read = 1 WHERE id = ?", (message_id,))
    conn.commit()
    changed = cursor.rowcount > 0
    conn.close()
    return changed


# ------------------------------------------------------------
# Advertisement Functions
# ------------------------------------------------------------
def create_advertisement(title, content, image_url=None, is_active=True, priority=0, created_by=None):
    now = utc_now_iso()
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO advertisements (title, content, image_url, is_active, priority, created_by, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """, (title, content, image_url, is_active, priority, created_by, now, now))
    conn.commit()
    ad_id = cursor.lastrowid
    conn.close()
    return ad_id


def update_advertisement(ad_id, title, content, image_url=None, is_active=True, priority=0):
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        UPDATE advertisements
        SET title = ?, content = ?, image_url = ?, is_active = ?, priority = ?, updated_at = ?
        WHERE id = ?
    """, (title, content, image_url, is_active, priority, utc_now_iso(), ad_id))
    conn.commit()
    changed = cursor.rowcount > 0
    conn.close()
    return changed


def get_advertisement(ad_id):
    conn = get_db()
    row = conn.execute("SELECT * FROM advertisements WHERE id = ?", (ad_id,)).fetchone()
    conn.close()
    return dict(row) if row else None


def get_advertisements(active_only=False):
    """Advertisements ordered by priority, then newest first."""
    query = "SELECT * FROM advertisements"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY priority DESC, created_at DESC, id DESC"
    conn = get_db()
    rows = conn.execute(query).fetchall()
    conn.close()
    return _rows(rows)


def toggle_advertisement(ad_id):
    """Flip is_active; returns the new value or None if the ad does not exist."""
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute(
        "UPDATE advertisements SET is_active = NOT is_active, updated_at = ? WHERE id = ?",
        (utc_now_iso(), ad_id),
    )
    conn.commit()
    if cursor.rowcount == 0:
        conn.close()
        return None
    row = conn.execute("SELECT is_active FROM advertisements WHERE id = ?", (ad_id,)).fetchone()
    conn.close()
    return bool(row["is_active"])


def delete_advertisement(ad_id):
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("DELETE FROM advertisements WHERE id = ?", (ad_id,))
    conn.commit()
    deleted = cursor.rowcount > 0
    conn.close()
    return deleted


# ------------------------------------------------------------
# Activity Log Functions
# ------------------------------------------------------------
def log_activity(action, description=None, user_id=None, metadata=None):
    """Append an activity log entry"""
    conn = get_db()
    cursor = conn.cursor()
    cursor.execute("""
        INSERT INTO activity_logs (user_id, action, description, metadata, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, (user_id, action, description, json.dumps(metadata) if metadata else None, utc_now_iso()))
    conn.commit()
    conn.close()


def get_activities(user_id=None, action=None, limit=config.MAX_ACTIVITY_ENTRIES):
    """Get activity log entries, newest first, optionally filtered by user and action"""
    clauses = []
    params = []
    if user_id is not None:
        clauses.append("user_id = ?")
        params.append(user_id)
    if action:
        clauses.append("action = ?")
        params.append(action)

    query = "SELECT * FROM activity_logs"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(limit)

    conn = get_db()
    rows = conn.execute(query, params).fetchall()
    conn.close()

    activities = _rows(rows)
    for activity in activities:
        activity["metadata"] = json.loads(activity["metadata"]) if activity["metadata"] else None
    return activities


def get_activity_actions():
    conn = get_db()
    rows = conn.execute("SELECT DISTINCT action FROM activity_logs ORDER BY action").fetchall()
    conn.close()
    return [row["action"] for row in rows]


# ------------------------------------------------------------
# Dashboard Statistics
# ------------------------------------------------------------
def get_dashboard_stats(now=None):
    """Get the admin overview counters"""
    now = now or datetime.now(timezone.utc)
    week_ago = (now - timedelta(days=7)).isoformat()
    month_ago = (now - timedelta(days=30)).isoformat()
    today = now.date().isoformat()

    try:
        conn = get_db()
        cur = conn.cursor()

        cur.execute("""
            SELECT
                COUNT(*) AS total_members,
                SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS new_this_week,
                SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END) AS new_this_month
            FROM profiles
        """, (week_ago, month_ago))
        members = cur.fetchone()

        cur.execute("SELECT COUNT(*) AS n FROM activity_logs WHERE substr(created_at, 1, 10) = ?", (today,))
        activities_today = cur.fetchone()["n"]

        cur.execute("SELECT COUNT(*) AS n FROM membership_applications WHERE status = 'pending'")
        pending_applications = cur.fetchone()["n"]

        cur.execute("SELECT COUNT(*) AS n FROM user_roles WHERE role = 'admin'")
        admin_count = cur.fetchone()["n"]

        cur.execute("SELECT COUNT(*) AS n FROM contact_messages WHERE is_read = 0")
        unread_messages = cur.fetchone()["n"]

        conn.close()

        return {
            'total_members': members['total_members'] or 0,
            'new_this_week': members['new_this_week'] or 0,
            'new_this_month': members['new_this_month'] or 0,
            'activities_today': activities_today,
            'pending_applications': pending_applications,
            'admin_count': admin_count,
            'unread_messages': unread_messages,
        }
    except sqlite3.Error:
        # Return default stats on error
        return {
            'total_members': 0,
            'new_this_week': 0,
            'new_this_month': 0,
            'activities_today': 0,
            'pending_applications': 0,
            'admin_count': 0,
            'unread_messages': 0,
        }

"""
utils.py
--------
Helper functions shared across the portal: logging setup, directory setup
and timestamp formatting for the dashboards.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path


def setup_logging(log_file=None, level=logging.INFO):
    """Setup logging configuration"""
    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s',
                                  datefmt='%Y-%m-%d %H:%M:%S')

    if log_file:
        ensure_directory(Path(log_file).parent)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Also log to console
    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)


def ensure_directory(dir_path):
    """Ensure a directory exists, create if it doesn't"""
    Path(dir_path).mkdir(parents=True, exist_ok=True)


def utc_now_iso():
    """Get current UTC timestamp in ISO format"""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(ts_str):
    ts = datetime.fromisoformat(ts_str.replace('Z', '+00:00'))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def compute_time_ago(ts_str, now=None):
    """Relative time for the activity panel: 'Just now', '5 min ago', '3 hours ago' or a date."""
    try:
        ts = parse_timestamp(ts_str)
    except (AttributeError, TypeError, ValueError):
        return ""

    now = now or datetime.now(timezone.utc)
    secs = max(0, int((now - ts).total_seconds()))
    if secs < 60:
        return "Just now"
    if secs < 3600:
        return f"{secs // 60} min ago"
    if secs < 86400:
        return f"{secs // 3600} hours ago"
    return ts.strftime("%b %d, %H:%M")

"""
Portal Configuration
Centralized settings for the PPSWZ membership portal
"""

import os

BASE_DIR = os.path.dirname(__file__)

# Flask settings
SECRET_KEY = os.environ.get('PPSWZ_SECRET_KEY', 'dev-secret-change-me')
MAX_CONTENT_LENGTH = 16 * 1024 * 1024  # 16MB for file uploads

# Storage
DATABASE_PATH = os.environ.get('PPSWZ_DATABASE_PATH', os.path.join(BASE_DIR, 'data', 'portal.db'))
ADVERTISEMENT_IMAGE_DIR = os.path.join(BASE_DIR, 'static', 'advertisements')
ADVERTISEMENT_IMAGE_MAX_SIZE = (1200, 800)
ADVERTISEMENT_IMAGE_QUALITY = 85

# Session timeout settings
SESSION_TIMEOUT_MINUTES = float(os.environ.get('PPSWZ_SESSION_TIMEOUT_MINUTES', '30'))
ACTIVITY_THROTTLE_SECONDS = 1.0

# Activity logging settings
MAX_ACTIVITY_ENTRIES = 100
ACTIVITY_REFRESH_INTERVAL = 10000  # ms

# Logging
LOG_FILE = os.environ.get('PPSWZ_LOG_FILE', os.path.join(BASE_DIR, 'data', 'portal.log'))
LOG_LEVEL = os.environ.get('PPSWZ_LOG_LEVEL', 'INFO')

# battlebucks/config.py - Environment driven settings for the tournament backend.
# Values come from the process environment, optionally seeded from a .env file.

import os
from dotenv import load_dotenv # For loading environment variables from .env file

load_dotenv() # Loads variables from .env file into os.environ


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default=''):
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(',') if item.strip()]


class Config:
    """Settings read once from the environment. Tests build their own instances."""

    def __init__(self, **overrides):
        self.SECRET_KEY = os.getenv('FLASK_SECRET_KEY', 'dev-only-secret-change-me')
        self.STORE_BACKEND = os.getenv('STORE_BACKEND', 'firestore')
        self.FIREBASE_SERVICE_ACCOUNT_KEY_JSON = os.getenv('FIREBASE_SERVICE_ACCOUNT_KEY_JSON')

        # ADMIN_UID kept for older deployments that configured a single admin.
        self.ADMIN_UIDS = _env_list('ADMIN_UIDS') or _env_list('ADMIN_UID')

        self.TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN', '')
        self.TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')

        self.CORS_ORIGINS = _env_list('CORS_ORIGINS', 'http://localhost:3000')

        self.LEDGER_STRICT_REVERT = _env_flag('LEDGER_STRICT_REVERT', True)
        self.LEDGER_TRANSACTION_ATTEMPTS = int(os.getenv('LEDGER_TRANSACTION_ATTEMPTS', '5'))
        self.SLOT_AUDIT_INTERVAL_MINUTES = int(os.getenv('SLOT_AUDIT_INTERVAL_MINUTES', '30'))

        self.PORT = int(os.getenv('PORT', '5000'))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown config setting '{key}'")
            setattr(self, key, value)

    def is_admin(self, user_id):
        """Checks if the given user_id is one of the configured admin UIDs."""
        if not self.ADMIN_UIDS:
            print("WARNING: ADMIN_UIDS is empty. Admin functionality is disabled.")
            return False
        return user_id in self.ADMIN_UIDS

    @property
    def telegram_enabled(self):
        return bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)

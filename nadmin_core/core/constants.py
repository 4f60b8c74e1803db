"""
Constants for the nadmin core

Module: core.constants
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Session and CSRF settings
  - Remember-me duration, activity debounce, sliding window
  - Cookie and header names shared with the HTTP layer
  - Origin allow-list defaults

[2025-11-28 v0.1.0] Initial constants definition
  - Store file locations and autosave interval
  - Collection names and TTLs
  - Password policy thresholds

SECURITY NOTES:
- Session and CSRF tokens are 256-bit (32 random bytes, hex-encoded)
- Thresholds below are defaults, not invariants; see SessionSettings
"""

from datetime import timedelta
from typing import Final

# ============================================================================
# Identity
# ============================================================================

CORE_NAME: Final[str] = "nadmin-core"
CORE_VERSION: Final[str] = "0.2.0"

# ============================================================================
# Store
# ============================================================================

DB_NAME: Final[str] = "nadmin.db"
DEV_DB_DIR: Final[str] = "./data"
CONTAINER_DB_PATH: Final[str] = "/app/data/nadmin.db"
STORE_FORMAT_VERSION: Final[int] = 1

# Autosave interval (seconds)
DEFAULT_AUTOSAVE_INTERVAL: Final[float] = 4.0

# Collection names
CONFIG_COLLECTION: Final[str] = "config"
SESSIONS_COLLECTION: Final[str] = "sessions"
PROJECT_CACHE_COLLECTION: Final[str] = "projectCache"
AUDIT_LOG_COLLECTION: Final[str] = "auditLog"

# Collection TTLs
SESSIONS_TTL: Final[timedelta] = timedelta(days=30)
SESSIONS_TTL_INTERVAL: Final[timedelta] = timedelta(minutes=1)
AUDIT_LOG_TTL: Final[timedelta] = timedelta(days=30)
AUDIT_LOG_TTL_INTERVAL: Final[timedelta] = timedelta(hours=1)
PROJECT_CACHE_MAX_AGE: Final[timedelta] = timedelta(minutes=5)

# ============================================================================
# Reserved config keys
# ============================================================================

ADMIN_PASSWORD_HASH_KEY: Final[str] = "admin_password_hash"
SESSION_DURATION_HOURS_KEY: Final[str] = "SESSION_DURATION_HOURS"
DEVELOPMENT_MODE_KEY: Final[str] = "development_mode"

# ============================================================================
# Sessions
# ============================================================================

ADMIN_USER_ID: Final[str] = "admin"
TOKEN_BYTES: Final[int] = 32

DEFAULT_SESSION_DURATION_HOURS: Final[int] = 7 * 24
REMEMBER_ME_DURATION: Final[timedelta] = timedelta(days=30)
ACTIVITY_DEBOUNCE: Final[timedelta] = timedelta(minutes=1)
SESSION_EXTEND_AFTER: Final[timedelta] = timedelta(hours=1)
MAX_SESSIONS_PER_IP: Final[int] = 5
DEFAULT_SESSION_CLEANUP_INTERVAL: Final[float] = 15 * 60.0

# ============================================================================
# Cookies, headers, origins
# ============================================================================

SESSION_COOKIE_NAME: Final[str] = "nself-session"
CSRF_COOKIE_NAME: Final[str] = "nself-csrf"
CSRF_HEADER_NAME: Final[str] = "x-csrf-token"
CSRF_COOKIE_MAX_AGE: Final[int] = 24 * 60 * 60

SAFE_METHODS: Final[frozenset] = frozenset({"GET", "HEAD"})
ORIGIN_SAFE_METHODS: Final[frozenset] = frozenset({"GET", "HEAD", "OPTIONS"})

LOOPBACK_HOSTS: Final[frozenset] = frozenset({"localhost", "127.0.0.1", "::1"})
LOCAL_DOMAIN_SUFFIX: Final[str] = ".local"
DEFAULT_ADMIN_DOMAINS: Final[tuple] = ("admin.local.nself.org",)

# ============================================================================
# Passwords
# ============================================================================

DEFAULT_BCRYPT_ROUNDS: Final[int] = 12
BCRYPT_MAX_BYTES: Final[int] = 72
DEV_MIN_PASSWORD_LENGTH: Final[int] = 3
PROD_MIN_PASSWORD_LENGTH: Final[int] = 12
MAX_SEQUENTIAL_RUN: Final[int] = 4
MAX_REPEATED_RUN: Final[int] = 4
SPECIAL_CHARACTERS: Final[str] = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?`~"

COMMON_PASSWORDS: Final[frozenset] = frozenset({
    "123456",
    "12345678",
    "123456789",
    "1234567890",
    "admin",
    "admin123",
    "administrator",
    "changeme",
    "default",
    "letmein",
    "password",
    "password1",
    "password123",
    "p@ssw0rd",
    "p@ssw0rd123",
    "qwerty",
    "qwerty123",
    "secret",
    "welcome",
    "welcome123",
    "nself",
    "nselfadmin",
})

# ============================================================================
# Logging
# ============================================================================

LOG_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_INFO: Final[str] = "INFO"


def get_default_config() -> dict:
    """
    Get default core configuration

    Returns:
        dict: Default configuration
    """
    return {
        "core": {
            "name": CORE_NAME,
            "version": CORE_VERSION,
        },
        "store": {
            "dev_path": f"{DEV_DB_DIR}/{DB_NAME}",
            "container_path": CONTAINER_DB_PATH,
            "autosave_interval": DEFAULT_AUTOSAVE_INTERVAL,
        },
        "sessions": {
            "duration_hours": DEFAULT_SESSION_DURATION_HOURS,
            "remember_me_days": REMEMBER_ME_DURATION.days,
            "max_per_ip": MAX_SESSIONS_PER_IP,
            "cleanup_interval": DEFAULT_SESSION_CLEANUP_INTERVAL,
        },
        "security": {
            "bcrypt_rounds": DEFAULT_BCRYPT_ROUNDS,
            "admin_domains": list(DEFAULT_ADMIN_DOMAINS),
        },
        "logging": {
            "level": LOG_LEVEL_INFO,
        },
    }


# ============================================================================
# Unit Tests
# ============================================================================

if __name__ == "__main__":
    import unittest

    class TestConstants(unittest.TestCase):
        """Test suite for constants"""

        def test_default_config(self):
            """Test default configuration structure"""
            config = get_default_config()
            self.assertIn("store", config)
            self.assertIn("sessions", config)
            self.assertIn("security", config)
            self.assertEqual(config["sessions"]["remember_me_days"], 30)

        def test_password_lengths_ordered(self):
            """Test development policy is the relaxed one"""
            self.assertLess(DEV_MIN_PASSWORD_LENGTH, PROD_MIN_PASSWORD_LENGTH)
            self.assertLessEqual(PROD_MIN_PASSWORD_LENGTH, BCRYPT_MAX_BYTES)

        def test_common_passwords_lowercase(self):
            """Test deny-list entries are stored lowercased"""
            for password in COMMON_PASSWORDS:
                self.assertEqual(password, password.lower())

    unittest.main()

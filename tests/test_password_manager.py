"""
Password Manager Tests

Module: tests.test_password_manager

Covers:
- Development and production password policy
- One-time admin password setup
- Password change
- Login verification and its audit trail
"""

import asyncio
import os
import shutil
import tempfile
import threading
import unittest
from unittest.mock import patch

import bcrypt

from nadmin_core.core.constants import ADMIN_PASSWORD_HASH_KEY
from nadmin_core.persistence import AuditAction, AuditLog, ConfigStore, DocumentStore
from nadmin_core.security.authentication import (
    PasswordManager,
    PasswordRule,
    validate_password,
)
from nadmin_core.security.authentication.password_manager import (
    ALREADY_SET_ERROR,
    NOT_SET_ERROR,
    WRONG_PASSWORD_ERROR,
)

STRONG_PASSWORD = "Tr0ub4dor&Horse!"


class TestPasswordPolicy(unittest.TestCase):
    """validate_password rules"""

    def test_dev_accepts_short_passwords(self):
        """Test development only enforces a minimum length"""
        self.assertTrue(validate_password("abc", is_dev=True).valid)
        self.assertTrue(validate_password("admin", is_dev=True).valid)

        result = validate_password("ab", is_dev=True)
        self.assertFalse(result.valid)
        self.assertEqual(result.violations, [PasswordRule.DEV_TOO_SHORT])

    def test_empty_rejected(self):
        """Test empty passwords fail in both modes"""
        for is_dev in (True, False):
            result = validate_password("", is_dev=is_dev)
            self.assertFalse(result.valid)
            self.assertEqual(result.errors, ["Password cannot be empty"])

    def test_too_long_rejected(self):
        """Test passwords over the bcrypt limit fail in both modes"""
        self.assertIn(PasswordRule.TOO_LONG, validate_password("a" * 73, is_dev=True).violations)
        self.assertTrue(validate_password("a" * 72, is_dev=True).valid)
        # multi-byte characters count in bytes
        self.assertIn(PasswordRule.TOO_LONG, validate_password("é" * 37, is_dev=True).violations)
        self.assertIn(
            PasswordRule.TOO_LONG,
            validate_password("Aa1!" + "Xk9#" * 18, is_dev=False).violations,
        )

    def test_prod_reports_every_violation(self):
        """Test a short password without special characters lists both failures"""
        result = validate_password("Xkq7Wmzp", is_dev=False)
        self.assertFalse(result.valid)
        self.assertEqual(result.violations, [PasswordRule.TOO_SHORT, PasswordRule.NO_SPECIAL])
        self.assertIn("Password must be at least 12 characters long", result.errors)

    def test_prod_character_classes(self):
        """Test missing character classes are each reported"""
        result = validate_password("kqzmwxpvtrnb", is_dev=False)
        self.assertEqual(
            result.violations,
            [PasswordRule.NO_UPPERCASE, PasswordRule.NO_DIGIT, PasswordRule.NO_SPECIAL],
        )

    def test_prod_common_passwords(self):
        """Test deny-listed passwords are rejected regardless of case"""
        for candidate in ("password123", "Admin123", "CHANGEME"):
            result = validate_password(candidate, is_dev=False)
            self.assertFalse(result.valid)
            self.assertEqual(result.violations, [PasswordRule.COMMON])
            self.assertEqual(
                result.errors, ["Password is too common. Please choose a stronger password"]
            )

    def test_prod_sequential_characters(self):
        """Test ascending letter and digit runs are rejected"""
        self.assertEqual(
            validate_password("Xyz!Abcd9#Kq", is_dev=False).violations,
            [PasswordRule.SEQUENTIAL],
        )
        self.assertEqual(
            validate_password("Kq#Wm1234zXp", is_dev=False).violations,
            [PasswordRule.SEQUENTIAL],
        )

    def test_prod_repeated_characters(self):
        """Test long runs of one character are rejected"""
        self.assertEqual(
            validate_password("Kq7#Maaaa9Wz", is_dev=False).violations,
            [PasswordRule.REPEATED],
        )
        self.assertTrue(validate_password("Kq7#Maaa9Wzx", is_dev=False).valid)

    def test_prod_strong_password(self):
        """Test a strong password passes"""
        result = validate_password(STRONG_PASSWORD, is_dev=False)
        self.assertTrue(result.valid)
        self.assertEqual(result.errors, [])


class TestPasswordManager(unittest.TestCase):
    """Admin password lifecycle"""

    def setUp(self):
        """Setup before each test"""
        self.test_dir = tempfile.mkdtemp()
        self.store_path = os.path.join(self.test_dir, "nadmin.db")

    def tearDown(self):
        """Cleanup after each test"""
        if os.path.exists(self.test_dir):
            shutil.rmtree(self.test_dir)

    def run_with_manager(self, body):
        async def test():
            store = DocumentStore(self.store_path)
            config = ConfigStore(store)
            audit = AuditLog(store)
            manager = PasswordManager(config, audit, bcrypt_rounds=4)
            try:
                await body(manager, config, audit)
            finally:
                await store.close()

        asyncio.run(test())

    def test_setup_stores_bcrypt_hash(self):
        """Test setup stores a bcrypt hash, never the plaintext"""
        async def body(manager, config, audit):
            self.assertFalse(await manager.has_admin_password())
            result = await manager.setup_admin_password(STRONG_PASSWORD, is_dev=False)
            self.assertTrue(result.success)
            self.assertIsNone(result.error)

            stored = await config.get(ADMIN_PASSWORD_HASH_KEY)
            self.assertTrue(stored.startswith("$2b$04$"))
            self.assertNotIn(STRONG_PASSWORD, stored)
            self.assertTrue(await manager.has_admin_password())
            self.assertEqual(await audit.count(action=AuditAction.PASSWORD_SET), 1)

        self.run_with_manager(body)

    def test_setup_only_once(self):
        """Test a second setup is refused and audited"""
        async def body(manager, config, audit):
            await manager.setup_admin_password("first", is_dev=True)
            result = await manager.setup_admin_password("second", is_dev=True)
            self.assertFalse(result.success)
            self.assertEqual(result.error, ALREADY_SET_ERROR)
            self.assertTrue(await manager.verify_admin_login("first"))

            failures = await audit.query(action=AuditAction.PASSWORD_SETUP_FAILED)
            self.assertEqual(len(failures), 1)
            self.assertFalse(failures[0].success)

        self.run_with_manager(body)

    def test_setup_rejects_weak_password(self):
        """Test setup returns every policy violation"""
        async def body(manager, config, audit):
            result = await manager.setup_admin_password("Xkq7Wmzp", is_dev=False)
            self.assertFalse(result.success)
            self.assertEqual(
                result.errors,
                [PasswordRule.TOO_SHORT.value, PasswordRule.NO_SPECIAL.value],
            )
            self.assertFalse(await manager.has_admin_password())

        self.run_with_manager(body)

    def test_verify_admin_login(self):
        """Test login checks and their audit entries"""
        async def body(manager, config, audit):
            self.assertFalse(await manager.verify_admin_login("anything", ip="127.0.0.1"))

            await manager.setup_admin_password(STRONG_PASSWORD, is_dev=False)
            self.assertTrue(await manager.verify_admin_login(STRONG_PASSWORD, ip="127.0.0.1"))
            self.assertFalse(await manager.verify_admin_login("wrong", ip="127.0.0.1"))
            self.assertFalse(await manager.verify_admin_login(""))
            self.assertFalse(await manager.verify_admin_login("x" * 100))

            attempts = await audit.query(action=AuditAction.LOGIN_ATTEMPT)
            self.assertEqual(len(attempts), 5)
            self.assertEqual(sum(1 for a in attempts if a.success), 1)
            self.assertEqual(attempts[-1].details["reason"], "no_password_set")
            self.assertEqual(attempts[-1].details["ip"], "127.0.0.1")

        self.run_with_manager(body)

    def test_bcrypt_runs_off_event_loop(self):
        """Test hashing and verification run in executor threads"""
        threads = []
        real_hashpw = bcrypt.hashpw
        real_checkpw = bcrypt.checkpw

        def hashpw(*args):
            threads.append(threading.current_thread())
            return real_hashpw(*args)

        def checkpw(*args):
            threads.append(threading.current_thread())
            return real_checkpw(*args)

        async def body(manager, config, audit):
            with patch.object(bcrypt, "hashpw", side_effect=hashpw), \
                    patch.object(bcrypt, "checkpw", side_effect=checkpw):
                await manager.setup_admin_password(STRONG_PASSWORD, is_dev=False)
                self.assertTrue(await manager.verify_admin_login(STRONG_PASSWORD))

            self.assertEqual(len(threads), 2)
            for thread in threads:
                self.assertIsNot(thread, threading.main_thread())

        self.run_with_manager(body)

    def test_malformed_hash_fails_closed(self):
        """Test a corrupted stored hash never authenticates"""
        async def body(manager, config, audit):
            await config.set(ADMIN_PASSWORD_HASH_KEY, "not-a-bcrypt-hash")
            self.assertFalse(await manager.verify_admin_login("not-a-bcrypt-hash"))

        self.run_with_manager(body)

    def test_change_admin_password(self):
        """Test rotation requires the current password"""
        async def body(manager, config, audit):
            result = await manager.change_admin_password("old", "new", is_dev=True)
            self.assertEqual(result.error, NOT_SET_ERROR)

            await manager.setup_admin_password("old-password", is_dev=True)

            result = await manager.change_admin_password("wrong", "new-password", is_dev=True)
            self.assertFalse(result.success)
            self.assertEqual(result.error, WRONG_PASSWORD_ERROR)

            result = await manager.change_admin_password("old-password", "Xkq7Wmzp", is_dev=False)
            self.assertFalse(result.success)
            self.assertIn(PasswordRule.NO_SPECIAL.value, result.errors)

            result = await manager.change_admin_password("old-password", STRONG_PASSWORD, is_dev=False)
            self.assertTrue(result.success)
            self.assertTrue(await manager.verify_admin_login(STRONG_PASSWORD))
            self.assertFalse(await manager.verify_admin_login("old-password"))

            self.assertEqual(await audit.count(action=AuditAction.PASSWORD_CHANGED), 1)
            self.assertEqual(await audit.count(action=AuditAction.PASSWORD_CHANGE_FAILED), 3)

        self.run_with_manager(body)


if __name__ == "__main__":
    unittest.main()

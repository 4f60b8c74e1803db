"""
Password Manager - Admin password policy, setup and login verification

Module: security.authentication.password_manager
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Production policy
  - Common password deny-list
  - Sequential and repeated character checks
  - Explicit rotation path (change_admin_password)

[2025-11-28 v0.1.0] Initial implementation
  - bcrypt password hashing
  - One-time admin password setup
  - Login verification with audit trail

ARCHITECTURE:
PasswordManager provides:
  - Environment-aware strength policy returning every violated rule
  - A single password record (config key admin_password_hash)
  - Fail-closed login verification

SECURITY NOTES:
- Only the bcrypt hash is stored; plaintext never reaches the store or logs
- Every login attempt is audited with its outcome
- bcrypt ignores input beyond 72 bytes, so longer passwords are rejected
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import bcrypt

from ...core.constants import (
    ADMIN_PASSWORD_HASH_KEY,
    ADMIN_USER_ID,
    BCRYPT_MAX_BYTES,
    COMMON_PASSWORDS,
    DEFAULT_BCRYPT_ROUNDS,
    DEV_MIN_PASSWORD_LENGTH,
    MAX_REPEATED_RUN,
    MAX_SEQUENTIAL_RUN,
    PROD_MIN_PASSWORD_LENGTH,
    SPECIAL_CHARACTERS,
)
from ...persistence.audit_store import AuditAction, AuditLog
from ...persistence.config_store import ConfigStore


class PasswordRule(Enum):
    """Policy violations, with the message reported to callers"""
    EMPTY = "Password cannot be empty"
    TOO_LONG = f"Password must be at most {BCRYPT_MAX_BYTES} bytes"
    DEV_TOO_SHORT = f"Password must be at least {DEV_MIN_PASSWORD_LENGTH} characters long"
    TOO_SHORT = f"Password must be at least {PROD_MIN_PASSWORD_LENGTH} characters long"
    COMMON = "Password is too common. Please choose a stronger password"
    NO_UPPERCASE = "Password must contain at least one uppercase letter"
    NO_LOWERCASE = "Password must contain at least one lowercase letter"
    NO_DIGIT = "Password must contain at least one number"
    NO_SPECIAL = "Password must contain at least one special character"
    SEQUENTIAL = "Password contains sequential characters"
    REPEATED = "Password contains too many repeated characters"


ALREADY_SET_ERROR = "Password already set"
NOT_SET_ERROR = "No password configured"
WRONG_PASSWORD_ERROR = "Current password is incorrect"


@dataclass
class PasswordValidation:
    """Outcome of a policy check"""
    valid: bool
    violations: List[PasswordRule] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [v.value for v in self.violations]


@dataclass
class PasswordResult:
    """Outcome of a setup or change request"""
    success: bool
    errors: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None


def _has_sequential_run(password: str, run: int) -> bool:
    """True if password holds `run` consecutive ascending characters (abcd, 1234)"""
    lowered = password.lower()
    streak = 1
    for prev, cur in zip(lowered, lowered[1:]):
        if cur.isalnum() and prev.isalnum() and ord(cur) - ord(prev) == 1:
            streak += 1
            if streak >= run:
                return True
        else:
            streak = 1
    return False


def _has_repeated_run(password: str, run: int) -> bool:
    """True if one character repeats `run` or more times in a row"""
    streak = 1
    for prev, cur in zip(password, password[1:]):
        streak = streak + 1 if cur == prev else 1
        if streak >= run:
            return True
    return False


def _bcrypt_hash(password: str, rounds: int) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode()


def _bcrypt_check(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def validate_password(password: str, is_dev: bool) -> PasswordValidation:
    """
    Check a candidate password against the policy

    Development mode only enforces a minimum length. Production rejects
    deny-listed passwords outright and then reports every character-class
    and pattern rule the password breaks.

    Args:
        password: Candidate password
        is_dev: Development mode

    Returns:
        PasswordValidation listing every violated rule
    """
    if not password:
        return PasswordValidation(False, [PasswordRule.EMPTY])

    violations: List[PasswordRule] = []
    if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
        violations.append(PasswordRule.TOO_LONG)

    if is_dev:
        if len(password) < DEV_MIN_PASSWORD_LENGTH:
            violations.append(PasswordRule.DEV_TOO_SHORT)
        return PasswordValidation(not violations, violations)

    if password.lower() in COMMON_PASSWORDS:
        violations.append(PasswordRule.COMMON)
        return PasswordValidation(False, violations)

    if len(password) < PROD_MIN_PASSWORD_LENGTH:
        violations.append(PasswordRule.TOO_SHORT)
    if not any(c.isupper() for c in password):
        violations.append(PasswordRule.NO_UPPERCASE)
    if not any(c.islower() for c in password):
        violations.append(PasswordRule.NO_LOWERCASE)
    if not any(c.isdigit() for c in password):
        violations.append(PasswordRule.NO_DIGIT)
    if not any(c in SPECIAL_CHARACTERS for c in password):
        violations.append(PasswordRule.NO_SPECIAL)
    if _has_sequential_run(password, MAX_SEQUENTIAL_RUN):
        violations.append(PasswordRule.SEQUENTIAL)
    if _has_repeated_run(password, MAX_REPEATED_RUN):
        violations.append(PasswordRule.REPEATED)

    return PasswordValidation(not violations, violations)


class PasswordManager:
    """
    Manages the single admin password.

    The password record can be created once with setup_admin_password();
    afterwards it only changes through change_admin_password().
    """

    def __init__(
        self,
        config: ConfigStore,
        audit: AuditLog,
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
    ):
        """
        Initialize password manager

        Args:
            config: Config store holding the password hash
            audit: Audit log for setup and login attempts
            bcrypt_rounds: Cost factor for bcrypt (4-31)
        """
        self.logger = logging.getLogger("security.password_manager")
        self.config = config
        self.audit = audit
        self.bcrypt_rounds = bcrypt_rounds

    def validate_password(self, password: str, is_dev: bool) -> PasswordValidation:
        return validate_password(password, is_dev)

    async def has_admin_password(self) -> bool:
        return bool(await self.config.get(ADMIN_PASSWORD_HASH_KEY))

    async def setup_admin_password(self, password: str, is_dev: bool) -> PasswordResult:
        """
        Set the admin password for the first time

        Args:
            password: New plaintext password
            is_dev: Development mode (relaxed policy)

        Returns:
            PasswordResult; fails if a password already exists or the
            policy rejects the password
        """
        if await self.has_admin_password():
            self.logger.warning("Password setup rejected: password already set")
            await self.audit.add(
                AuditAction.PASSWORD_SETUP_FAILED,
                {"reason": ALREADY_SET_ERROR},
                success=False,
                user_id=ADMIN_USER_ID,
            )
            return PasswordResult(False, [ALREADY_SET_ERROR])

        validation = validate_password(password, is_dev)
        if not validation.valid:
            await self.audit.add(
                AuditAction.PASSWORD_SETUP_FAILED,
                {"reason": "weak_password", "rules": [v.name for v in validation.violations]},
                success=False,
                user_id=ADMIN_USER_ID,
            )
            return PasswordResult(False, validation.errors)

        await self.config.set(ADMIN_PASSWORD_HASH_KEY, await self._hash_password(password))
        await self.audit.add(
            AuditAction.PASSWORD_SET,
            {"method": "initial_setup"},
            success=True,
            user_id=ADMIN_USER_ID,
        )
        self.logger.info("Admin password configured")
        return PasswordResult(True)

    async def change_admin_password(
        self,
        current_password: str,
        new_password: str,
        is_dev: bool,
    ) -> PasswordResult:
        """
        Rotate the admin password

        Args:
            current_password: Existing password (must verify)
            new_password: Replacement password
            is_dev: Development mode (relaxed policy)

        Returns:
            PasswordResult
        """
        stored = await self.config.get(ADMIN_PASSWORD_HASH_KEY)
        if not stored:
            reason = NOT_SET_ERROR
        elif not await self._verify_password(current_password, stored):
            reason = WRONG_PASSWORD_ERROR
        else:
            reason = None

        if reason is not None:
            await self.audit.add(
                AuditAction.PASSWORD_CHANGE_FAILED,
                {"reason": reason},
                success=False,
                user_id=ADMIN_USER_ID,
            )
            return PasswordResult(False, [reason])

        validation = validate_password(new_password, is_dev)
        if not validation.valid:
            await self.audit.add(
                AuditAction.PASSWORD_CHANGE_FAILED,
                {"reason": "weak_password", "rules": [v.name for v in validation.violations]},
                success=False,
                user_id=ADMIN_USER_ID,
            )
            return PasswordResult(False, validation.errors)

        await self.config.set(ADMIN_PASSWORD_HASH_KEY, await self._hash_password(new_password))
        await self.audit.add(
            AuditAction.PASSWORD_CHANGED,
            {"method": "rotation"},
            success=True,
            user_id=ADMIN_USER_ID,
        )
        self.logger.info("Admin password changed")
        return PasswordResult(True)

    async def verify_admin_login(self, password: str, ip: Optional[str] = None) -> bool:
        """
        Check a login password against the stored hash

        Fails closed when no password is configured. Every attempt is
        audited.

        Args:
            password: Submitted password
            ip: Client address, recorded in the audit entry

        Returns:
            True if the password matches
        """
        stored = await self.config.get(ADMIN_PASSWORD_HASH_KEY)
        if not stored:
            valid = False
            reason = "no_password_set"
        else:
            valid = await self._verify_password(password, stored)
            reason = None if valid else "invalid_password"

        details = {"ip": ip}
        if reason:
            details["reason"] = reason
        await self.audit.add(
            AuditAction.LOGIN_ATTEMPT, details, success=valid, user_id=ADMIN_USER_ID
        )

        if valid:
            self.logger.info("Admin login succeeded")
        else:
            self.logger.warning(f"Admin login failed ({reason}, ip={ip})")
        return valid

    async def _hash_password(self, password: str) -> str:
        """
        Hash password using bcrypt (runs in the executor)

        Returns:
            bcrypt hash (bytes decoded to string)
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, _bcrypt_hash, password, self.bcrypt_rounds
        )

    async def _verify_password(self, password: str, password_hash: str) -> bool:
        """
        Verify password against hash (runs in the executor)

        Returns:
            True if password matches, False otherwise (including malformed
            hashes and inputs bcrypt refuses)
        """
        if not password:
            return False
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _bcrypt_check, password, password_hash)

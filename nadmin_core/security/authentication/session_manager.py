"""
Session Manager - Authentication session lifecycle

Module: security.authentication.session_manager
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Session hardening
  - CSRF token bound to each session, rotated on refresh
  - Remember-me sessions (30 days)
  - Sliding expiration with activity debounce
  - Per-IP active session cap

[2025-11-28 v0.1.0] Initial implementation
  - Session storage in the sessions collection
  - Passive expiry on read, active cleanup sweep
  - Revocation

ARCHITECTURE:
Session state machine:
  created -> active (read / extended) -> revoked | expired

SessionManager provides:
  - Opaque 256-bit session tokens (hex)
  - Expiry derived from the configured duration or the remember-me duration
  - lastActive debounce and sliding extension on read
  - Audit entries for every state change

SECURITY NOTES:
- Expired sessions are removed on read and reported exactly like unknown ones
- Tokens are only ever logged as an 8-character prefix
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ...core.constants import (
    ACTIVITY_DEBOUNCE,
    DEFAULT_SESSION_DURATION_HOURS,
    MAX_SESSIONS_PER_IP,
    REMEMBER_ME_DURATION,
    SESSION_DURATION_HOURS_KEY,
    SESSION_EXTEND_AFTER,
    SESSIONS_COLLECTION,
    SESSIONS_TTL,
    TOKEN_BYTES,
)
from ...persistence.audit_store import AuditAction, AuditLog
from ...persistence.config_store import ConfigStore
from ...persistence.document_store import Collection, DocumentStore, UniqueConstraintError


class SessionError(Exception):
    """Base session error"""
    pass


class SessionLimitError(SessionError):
    """Too many active sessions for one client address"""

    def __init__(self, ip: str, limit: int):
        self.ip = ip
        self.limit = limit
        self.reason = f"Too many active sessions for {ip} (limit {limit})"
        super().__init__(self.reason)


@dataclass
class SessionSettings:
    """Session timing defaults; none of these are hard invariants"""
    default_duration_hours: float = DEFAULT_SESSION_DURATION_HOURS
    remember_me_duration: timedelta = REMEMBER_ME_DURATION
    activity_debounce: timedelta = ACTIVITY_DEBOUNCE
    extend_after: timedelta = SESSION_EXTEND_AFTER
    max_sessions_per_ip: int = MAX_SESSIONS_PER_IP


def generate_token() -> str:
    """256-bit random token, hex-encoded"""
    return secrets.token_hex(TOKEN_BYTES)


def _short(token: Optional[str]) -> str:
    return f"{token[:8]}..." if token else "<none>"


class SessionItem:
    """Represents a stored session"""

    def __init__(
        self,
        token: str,
        user_id: str,
        created_at: datetime,
        expires_at: datetime,
        last_active: datetime,
        csrf_token: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        remember_me: bool = False,
    ):
        self.token = token
        self.user_id = user_id
        self.created_at = created_at
        self.expires_at = expires_at
        self.last_active = last_active
        self.csrf_token = csrf_token
        self.ip = ip
        self.user_agent = user_agent
        self.remember_me = remember_me

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "token": self.token,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "last_active": self.last_active.isoformat(),
            "csrf_token": self.csrf_token,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "remember_me": self.remember_me,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionItem":
        """Create from a stored document"""
        created_at = datetime.fromisoformat(data["created_at"])
        return cls(
            token=data["token"],
            user_id=data["user_id"],
            created_at=created_at,
            expires_at=datetime.fromisoformat(data["expires_at"]),
            last_active=(
                datetime.fromisoformat(data["last_active"])
                if data.get("last_active") else created_at
            ),
            csrf_token=data["csrf_token"],
            ip=data.get("ip"),
            user_agent=data.get("user_agent"),
            remember_me=data.get("remember_me", False),
        )

    def __repr__(self) -> str:
        return (
            f"SessionItem(user_id={self.user_id!r}, token={_short(self.token)}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


class SessionManager:
    """
    Creates, validates, extends and revokes authentication sessions.

    All state lives in the store's sessions collection; the manager keeps
    nothing between calls.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: ConfigStore,
        audit: AuditLog,
        settings: Optional[SessionSettings] = None,
    ):
        """
        Initialize session manager

        Args:
            store: Store holding the sessions collection
            config: Config store (runtime session duration override)
            audit: Audit log for state changes
            settings: Timing and limit settings
        """
        self.logger = logging.getLogger("security.session_manager")
        self.store = store
        self.config = config
        self.audit = audit
        self.settings = settings or SessionSettings()

    async def _collection(self) -> Collection:
        await self.store.initialize()
        return self.store.get_collection(SESSIONS_COLLECTION)

    async def session_duration_hours(self) -> float:
        """
        Configured session duration, falling back to the default

        Capped at the sessions collection TTL, past which the store reaps
        idle sessions regardless of their expiry.
        """
        hours = self.settings.default_duration_hours
        custom = await self.config.get(SESSION_DURATION_HOURS_KEY)
        if isinstance(custom, (int, float)) and not isinstance(custom, bool) and custom > 0:
            hours = custom

        max_hours = SESSIONS_TTL.total_seconds() / 3600
        if hours > max_hours:
            self.logger.warning(
                f"Session duration {hours}h exceeds the {max_hours:g}h retention, capping"
            )
            return max_hours
        return hours

    async def _duration_for(self, remember_me: bool) -> timedelta:
        if remember_me:
            return min(self.settings.remember_me_duration, SESSIONS_TTL)
        return timedelta(hours=await self.session_duration_hours())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        user_id: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        remember_me: bool = False,
    ) -> str:
        """
        Create a session after a successful login

        Args:
            user_id: Principal the session belongs to
            ip: Client address
            user_agent: Client user agent
            remember_me: Use the remember-me duration

        Returns:
            Session token

        Raises:
            SessionLimitError: If ip already holds the maximum number of
                active sessions
        """
        collection = await self._collection()
        now = self.store.now()

        limit = self.settings.max_sessions_per_ip
        if ip and limit:
            active = collection.find(
                lambda d: datetime.fromisoformat(d["expires_at"]) >= now, ip=ip
            )
            if len(active) >= limit:
                error = SessionLimitError(ip, limit)
                self.logger.warning(error.reason)
                await self.audit.add(
                    AuditAction.SESSION_LIMIT_EXCEEDED,
                    {"ip": ip, "active": len(active), "limit": limit},
                    success=False,
                    user_id=user_id,
                )
                raise error

        session = SessionItem(
            token=generate_token(),
            user_id=user_id,
            created_at=now,
            expires_at=now + await self._duration_for(remember_me),
            last_active=now,
            csrf_token=generate_token(),
            ip=ip,
            user_agent=user_agent,
            remember_me=remember_me,
        )

        while True:
            try:
                collection.insert(session.to_dict())
                break
            except UniqueConstraintError:
                session.token = generate_token()

        await self.audit.add(
            AuditAction.SESSION_CREATED,
            {"ip": ip, "remember_me": remember_me},
            success=True,
            user_id=user_id,
        )
        self.logger.info(f"Session created for {user_id}: {_short(session.token)}")
        return session.token

    async def get_session(self, token: str) -> Optional[SessionItem]:
        """
        Resolve a session token

        Expired sessions are deleted and reported as None. lastActive is
        refreshed when more than activity_debounce has passed; expiry is
        pushed forward when more than extend_after has passed. Both checks
        use the lastActive value from before this call.

        Args:
            token: Session token

        Returns:
            SessionItem, or None if unknown or expired
        """
        if not token:
            return None
        collection = await self._collection()
        doc = collection.find_one(token=token)
        if doc is None:
            return None

        session = SessionItem.from_dict(doc)
        now = self.store.now()
        if session.is_expired(now):
            collection.remove(doc)
            self.logger.debug(f"Session expired: {_short(token)}")
            return None

        elapsed = now - session.last_active
        changed = False
        if elapsed > self.settings.activity_debounce:
            session.last_active = now
            changed = True
        if elapsed > self.settings.extend_after:
            session.expires_at = now + await self._duration_for(session.remember_me)
            changed = True

        if changed:
            doc.update(session.to_dict())
            collection.update(doc)
        return session

    async def refresh_session(self, token: str) -> Optional[SessionItem]:
        """
        Extend a session and rotate its CSRF token

        Returns:
            Refreshed SessionItem, or None if unknown or expired
        """
        session = await self.get_session(token)
        if session is None:
            return None

        collection = await self._collection()
        doc = collection.find_one(token=token)
        if doc is None:
            return None

        now = self.store.now()
        session.expires_at = now + await self._duration_for(session.remember_me)
        session.last_active = now
        session.csrf_token = generate_token()
        doc.update(session.to_dict())
        collection.update(doc)

        await self.audit.add(
            AuditAction.SESSION_REFRESHED,
            {"expires_at": session.expires_at.isoformat()},
            success=True,
            user_id=session.user_id,
        )
        self.logger.debug(f"Session refreshed: {_short(token)}")
        return session

    async def revoke_session(self, token: str) -> bool:
        """Revoke a session; False if it was not found"""
        return await self._remove(token, AuditAction.SESSION_REVOKED)

    async def delete_session(self, token: str) -> bool:
        """Delete a session on logout; False if it was not found"""
        return await self._remove(token, AuditAction.SESSION_DELETED)

    async def _remove(self, token: str, action: AuditAction) -> bool:
        if not token:
            return False
        collection = await self._collection()
        doc = collection.find_one(token=token)
        if doc is None:
            self.logger.debug(f"Session not found: {_short(token)}")
            return False

        collection.remove(doc)
        await self.audit.add(
            action,
            {"ip": doc.get("ip")},
            success=True,
            user_id=doc.get("user_id"),
        )
        self.logger.info(f"Session {action.value.split('_')[-1]}: {_short(token)}")
        return True

    async def revoke_all_sessions_except(self, user_id: str, keep_token: str) -> int:
        """
        Revoke every session of user_id except keep_token

        Returns:
            Number of sessions revoked
        """
        collection = await self._collection()
        revoked = collection.remove_where(
            lambda d: d.get("user_id") == user_id and d.get("token") != keep_token
        )
        await self.audit.add(
            AuditAction.SESSIONS_REVOKED,
            {"count": revoked, "kept": _short(keep_token)},
            success=True,
            user_id=user_id,
        )
        self.logger.info(f"Revoked {revoked} sessions for {user_id}")
        return revoked

    async def cleanup_expired_sessions(self) -> int:
        """
        Remove every session whose expiry has passed

        Returns:
            Number of sessions removed
        """
        collection = await self._collection()
        now = self.store.now()
        removed = collection.remove_where(
            lambda d: datetime.fromisoformat(d["expires_at"]) < now
        )
        if removed > 0:
            await self.audit.add(
                AuditAction.SESSIONS_CLEANUP, {"count": removed}, success=True
            )
            self.logger.info(f"Cleanup removed {removed} expired sessions")
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_all_sessions(self, user_id: str) -> List[SessionItem]:
        """
        List live sessions of a user

        Returns:
            SessionItems, most recently active first
        """
        collection = await self._collection()
        now = self.store.now()
        sessions = [
            SessionItem.from_dict(d) for d in collection.find(user_id=user_id)
        ]
        sessions = [s for s in sessions if not s.is_expired(now)]
        sessions.sort(key=lambda s: s.last_active, reverse=True)
        return sessions

    async def count_sessions(self) -> int:
        """Number of stored (not yet reaped) sessions"""
        collection = await self._collection()
        return collection.count()

"""
Audit Log - Append-only audit trail

Module: persistence.audit_store
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Moved onto the shared document store
  - Entries live in the auditLog collection (30-day TTL)
  - Newest-first queries with offset/limit pagination
  - Writes never raise into the caller

[2025-11-28 v0.1.0] Initial implementation
  - Append-only audit logging
  - Action tracking
  - Timestamped entries

ARCHITECTURE:
AuditLog provides:
  - Immutable audit trail (no delete API; retention is the collection TTL)
  - Structured entries: action, details, success, user_id
  - Filtering by action and user
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.constants import AUDIT_LOG_COLLECTION
from .document_store import Collection, DocumentStore, StoreError


class AuditAction(Enum):
    """Actions written by the core"""
    SESSION_CREATED = "session_created"
    SESSION_REFRESHED = "session_refreshed"
    SESSION_DELETED = "session_deleted"
    SESSION_REVOKED = "session_revoked"
    SESSIONS_REVOKED = "sessions_revoked"
    SESSIONS_CLEANUP = "sessions_cleanup"
    SESSION_LIMIT_EXCEEDED = "session_limit_exceeded"
    PASSWORD_SET = "password_set"
    PASSWORD_SETUP_FAILED = "password_setup_failed"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_CHANGE_FAILED = "password_change_failed"
    LOGIN_ATTEMPT = "login_attempt"


@dataclass
class AuditFilter:
    """Optional query filter"""
    action: Optional[str] = None
    user_id: Optional[str] = None


class AuditLogItem:
    """Represents an audit log entry"""

    def __init__(
        self,
        action: str,
        timestamp: datetime,
        success: bool = True,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
    ):
        self.action = action
        self.timestamp = timestamp
        self.success = success
        self.details = details if details is not None else {}
        self.user_id = user_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "details": self.details,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogItem":
        """Create from a stored document"""
        return cls(
            action=data["action"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            success=data.get("success", True),
            details=data.get("details", {}),
            user_id=data.get("user_id"),
        )

    def __repr__(self) -> str:
        status = "ok" if self.success else "failed"
        return f"AuditLogItem({self.action}, {status}, {self.timestamp.isoformat()})"


class AuditLog:
    """
    Append-only audit trail.

    add() is best-effort from the caller's point of view: a store failure
    is logged and reported as None instead of being raised.
    """

    def __init__(self, store: DocumentStore):
        self.logger = logging.getLogger("persistence.audit_log")
        self.store = store

    async def _collection(self) -> Collection:
        await self.store.initialize()
        return self.store.get_collection(AUDIT_LOG_COLLECTION)

    async def add(
        self,
        action: Any,
        details: Optional[Dict[str, Any]] = None,
        success: bool = True,
        user_id: Optional[str] = None,
    ) -> Optional[AuditLogItem]:
        """
        Append an audit entry

        Args:
            action: AuditAction or free-form action name
            details: JSON-compatible details (non-serializable values are
                stored as strings; details json cannot encode at all, such
                as tuple keys, are kept as their repr)
            success: Outcome of the audited operation
            user_id: Acting user

        Returns:
            The stored AuditLogItem, or None if the write failed
        """
        name = action.value if isinstance(action, AuditAction) else str(action)
        try:
            normalized = json.loads(json.dumps(details or {}, default=str))
        except (TypeError, ValueError) as e:
            self.logger.error(f"Audit details for '{name}' are not JSON-encodable: {e}")
            normalized = {"unencodable": repr(details)}

        entry = AuditLogItem(
            action=name,
            timestamp=self.store.now(),
            success=success,
            details=normalized,
            user_id=user_id,
        )

        try:
            collection = await self._collection()
            collection.insert(entry.to_dict())
        except StoreError as e:
            self.logger.error(f"Audit entry '{name}' was not recorded: {e}", exc_info=True)
            return None

        if not success:
            self.logger.info(f"Audit: {name} failed (user={user_id})")
        return entry

    async def query(
        self,
        limit: int = 100,
        offset: int = 0,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        filter: Optional[AuditFilter] = None,
    ) -> List[AuditLogItem]:
        """
        Query audit entries, newest first

        Args:
            limit: Max results
            offset: Entries to skip
            action: Only entries with this action
            user_id: Only entries for this user
            filter: AuditFilter alternative to action/user_id

        Returns:
            List of AuditLogItem objects
        """
        if filter is not None:
            action = action or filter.action
            user_id = user_id or filter.user_id
        if isinstance(action, AuditAction):
            action = action.value

        query: Dict[str, Any] = {}
        if action:
            query["action"] = action
        if user_id:
            query["user_id"] = user_id

        collection = await self._collection()
        docs = collection.find(**query)
        docs.sort(
            key=lambda d: (datetime.fromisoformat(d["timestamp"]), d["_id"]),
            reverse=True,
        )

        offset = max(offset, 0)
        page = docs[offset:offset + max(limit, 0)]
        return [AuditLogItem.from_dict(d) for d in page]

    async def count(self, action: Optional[str] = None, user_id: Optional[str] = None) -> int:
        """Count entries matching the optional filters"""
        query: Dict[str, Any] = {}
        if action:
            query["action"] = action.value if isinstance(action, AuditAction) else action
        if user_id:
            query["user_id"] = user_id
        collection = await self._collection()
        return collection.count(**query)

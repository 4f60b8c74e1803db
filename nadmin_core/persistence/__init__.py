"""
Persistence module - embedded document store and its collections

Provides:
- DocumentStore: Lazily-initialized, autosaving JSON document store
- ConfigStore: Key/value configuration
- ProjectCacheStore: Short-lived project information cache
- AuditLog: Append-only audit trail
"""

from .document_store import (
    DEFAULT_COLLECTIONS,
    Collection,
    CollectionSpec,
    DocumentNotFoundError,
    DocumentStore,
    StoreError,
    StoreFormatError,
    StoreIOError,
    StoreNotInitializedError,
    UniqueConstraintError,
)
from .config_store import ConfigStore, ConfigItem, ConfigValueError, KNOWN_CONFIG_KEYS
from .cache_store import ProjectCacheStore
from .audit_store import AuditLog, AuditLogItem, AuditAction, AuditFilter

__all__ = [
    "DEFAULT_COLLECTIONS",
    "Collection",
    "CollectionSpec",
    "DocumentNotFoundError",
    "DocumentStore",
    "StoreError",
    "StoreFormatError",
    "StoreIOError",
    "StoreNotInitializedError",
    "UniqueConstraintError",
    "ConfigStore",
    "ConfigItem",
    "ConfigValueError",
    "KNOWN_CONFIG_KEYS",
    "ProjectCacheStore",
    "AuditLog",
    "AuditLogItem",
    "AuditAction",
    "AuditFilter",
]

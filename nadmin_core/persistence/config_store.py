"""
Config Store - Key/value configuration on top of the document store

Module: persistence.config_store
Date: 2025-11-28
Version: 0.1.0

ARCHITECTURE:
ConfigStore provides:
  - Upsert semantics keyed by a unique `key` field
  - JSON-serializable values only
  - Declared value types for the keys the core itself reads
  - Lazy store initialization on first use
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..core.constants import (
    ADMIN_PASSWORD_HASH_KEY,
    CONFIG_COLLECTION,
    DEVELOPMENT_MODE_KEY,
    SESSION_DURATION_HOURS_KEY,
)
from .document_store import Collection, DocumentStore


class ConfigValueError(ValueError):
    """Value cannot be stored under the given key"""
    pass


# Keys read by the core, with the Python types their values must have
KNOWN_CONFIG_KEYS: Dict[str, Tuple[type, ...]] = {
    ADMIN_PASSWORD_HASH_KEY: (str,),
    SESSION_DURATION_HOURS_KEY: (int, float),
    DEVELOPMENT_MODE_KEY: (bool,),
}


@dataclass
class ConfigItem:
    """A stored configuration entry"""
    key: str
    value: Any
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "key": self.key,
            "value": self.value,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigItem":
        """Create from a stored document"""
        return cls(
            key=data["key"],
            value=data.get("value"),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


def check_config_value(key: str, value: Any) -> Any:
    """
    Validate a value before it is stored

    Returns:
        The value as it will read back from disk (tuples become lists,
        dict keys become strings)

    Raises:
        ConfigValueError: If the value is not JSON-serializable or has the
            wrong type for a known key
    """
    if not isinstance(key, str) or not key:
        raise ConfigValueError("Config key must be a non-empty string")

    expected = KNOWN_CONFIG_KEYS.get(key)
    if expected is not None:
        # bool is an int subclass; only accept it where bool is declared
        if isinstance(value, bool) and bool not in expected:
            raise ConfigValueError(f"Config '{key}' does not accept booleans")
        if not isinstance(value, expected):
            names = ", ".join(t.__name__ for t in expected)
            raise ConfigValueError(f"Config '{key}' must be of type {names}")

    try:
        return json.loads(json.dumps(value, allow_nan=False))
    except (TypeError, ValueError) as e:
        raise ConfigValueError(f"Config '{key}' is not JSON-serializable: {e}")


class ConfigStore:
    """
    Configuration key/value pairs.

    Values for keys in KNOWN_CONFIG_KEYS are type-checked on write; any
    other key accepts an arbitrary JSON-serializable payload.
    """

    def __init__(self, store: DocumentStore):
        self.logger = logging.getLogger("persistence.config_store")
        self.store = store

    async def _collection(self) -> Collection:
        await self.store.initialize()
        return self.store.get_collection(CONFIG_COLLECTION)

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get a config value

        Args:
            key: Config key
            default: Returned when the key is absent

        Returns:
            Stored value or default
        """
        item = await self.get_item(key)
        return default if item is None else item.value

    async def get_item(self, key: str) -> Optional[ConfigItem]:
        """Get the full config entry, or None if absent"""
        collection = await self._collection()
        doc = collection.find_one(key=key)
        return ConfigItem.from_dict(doc) if doc else None

    async def has(self, key: str) -> bool:
        collection = await self._collection()
        return collection.count(key=key) > 0

    async def set(self, key: str, value: Any) -> ConfigItem:
        """
        Insert or update a config value

        Args:
            key: Config key
            value: JSON-serializable value

        Returns:
            Stored ConfigItem

        Raises:
            ConfigValueError: If the value is rejected
        """
        value = check_config_value(key, value)
        collection = await self._collection()
        item = ConfigItem(key=key, value=value, updated_at=self.store.now())

        existing = collection.find_one(key=key)
        if existing:
            existing.update(item.to_dict())
            collection.update(existing)
            self.logger.debug(f"Config updated: {key}")
        else:
            collection.insert(item.to_dict())
            self.logger.debug(f"Config created: {key}")

        self.store.schedule_save()
        return item

    async def delete(self, key: str) -> bool:
        """
        Delete a config value

        Returns:
            True if the key existed, False otherwise
        """
        collection = await self._collection()
        doc = collection.find_one(key=key)
        if doc is None:
            return False
        collection.remove(doc)
        self.store.schedule_save()
        self.logger.debug(f"Config deleted: {key}")
        return True

    async def is_development_mode(self) -> bool:
        """Development mode flag; defaults to True when never set"""
        return await self.get(DEVELOPMENT_MODE_KEY) is not False
